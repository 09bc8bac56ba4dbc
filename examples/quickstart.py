from __future__ import annotations

import os

import httpx


def main() -> int:
    # Assumes the registry is running and seeded:
    #   python -m registry.seed      (prints the HEALTH commissioner's api_key)
    #   python -m registry
    registry_url = os.getenv("VC_REGISTRY_URL", "http://127.0.0.1:3000")
    api_key = os.getenv("VC_REGISTRY_API_KEY")
    if not api_key:
        print("Set VC_REGISTRY_API_KEY to the HEALTH commissioner key printed by the seed script")
        return 1
    auth = {"Authorization": f"Bearer {api_key}"}

    with httpx.Client(base_url=registry_url, timeout=10.0) as c:
        r = c.post("/v1/applications", json={
            "application_type": "BIRTH",
            "applicant_name": "Priya Sharma",
            "applicant_did": "did:key:z6MkquickstartHolder",
            "details": {
                "childName": "Aarav",
                "dateOfBirth": "2023-05-15",
                "gender": "M",
                "placeOfBirth": "City Hospital",
                "fatherName": "Rohan Sharma",
                "motherName": "Priya Sharma",
            },
            "disclosed_fields": ["childName", "dateOfBirth"],
        })
        r.raise_for_status()
        application_id = r.json()["id"]
        print("Application submitted:", application_id)

        c.post(f"/v1/applications/{application_id}/forward", json={}, headers=auth).raise_for_status()
        c.post(
            f"/v1/applications/{application_id}/decision",
            json={"decision": "approve"},
            headers=auth,
        ).raise_for_status()

        r = c.post(
            "/v1/credentials/issue",
            json={"application_id": application_id},
            headers={**auth, "Idempotency-Key": f"issue-{application_id}"},
        )
        r.raise_for_status()
        credential = r.json()
        print("Credential issued:", credential["credential_id"], "anchor tx", credential["anchor_tx_ref"])

        r = c.post(
            f"/v1/credentials/{credential['credential_id']}/present",
            json={"fields": ["childName"]},
            headers=auth,
        )
        r.raise_for_status()
        proof = r.json()["disclosure_proof"]

        r = c.post("/v1/credentials/verify", json={
            "credential_id": credential["credential_id"],
            "disclosure_proof": proof,
            "verifier": "quickstart",
        })
        r.raise_for_status()
        result = r.json()
        print("Verification:", result["result"], result["disclosed_values"])

    return 0 if result["valid"] else 2


if __name__ == "__main__":
    raise SystemExit(main())
