from __future__ import annotations

import sqlite3
from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from registry import ratelimit
from registry.issuers import register_issuer
from registry.models import Credential

BIRTH = {
    "application_type": "BIRTH",
    "applicant_name": "Priya Sharma",
    "applicant_did": "did:key:z6MkHolder",
    "details": {
        "childName": "Aarav",
        "dateOfBirth": "2023-05-15",
        "gender": "M",
        "placeOfBirth": "City Hospital",
        "fatherName": "Rohan Sharma",
        "motherName": "Priya Sharma",
    },
}


@pytest.fixture()
def client(registry_app):
    return TestClient(registry_app)


@pytest.fixture()
def headers(commissioner, auth_header):
    return auth_header(commissioner[1])


def _approved(client: TestClient, headers: dict[str, str]) -> str:
    r = client.post("/v1/applications", json=BIRTH)
    assert r.status_code == 201, r.text
    app_id = r.json()["id"]
    assert client.post(f"/v1/applications/{app_id}/forward", json={}, headers=headers).status_code == 200
    r = client.post(f"/v1/applications/{app_id}/decision", json={"decision": "approve"}, headers=headers)
    assert r.status_code == 200, r.text
    assert r.json()["status"] == "APPROVED"
    return app_id


def _issued(client: TestClient, headers: dict[str, str]) -> str:
    app_id = _approved(client, headers)
    r = client.post("/v1/credentials/issue", json={"application_id": app_id}, headers=headers)
    assert r.status_code == 201, r.text
    return r.json()["credential_id"]


class TestHealth:
    def test_health(self, client):
        r = client.get("/health")
        assert r.status_code == 200
        assert r.json()["service"] == "vc-registry"
        assert r.headers["X-Request-Id"].startswith("req_")


class TestApplications:
    def test_submit_defaults(self, client):
        r = client.post("/v1/applications", json=BIRTH)
        assert r.status_code == 201
        body = r.json()
        assert body["status"] == "PENDING"
        assert body["department"] == "HEALTH"
        assert body["disclosed_fields"] == ["childName", "dateOfBirth"]

    def test_submit_missing_field(self, client):
        details = {k: v for k, v in BIRTH["details"].items() if k != "childName"}
        r = client.post("/v1/applications", json={**BIRTH, "details": details})
        assert r.status_code == 400
        assert "childName" in r.json()["detail"]

    def test_submit_bad_did(self, client):
        r = client.post("/v1/applications", json={**BIRTH, "applicant_did": "holder"})
        assert r.status_code == 422

    def test_listing_requires_auth(self, client):
        assert client.get("/v1/applications").status_code == 401
        r = client.get("/v1/applications", headers={"Authorization": "Bearer vci_nope"})
        assert r.status_code == 401

    def test_list_and_review(self, client, headers):
        app_id = client.post("/v1/applications", json=BIRTH).json()["id"]
        r = client.get("/v1/applications", params={"status": "PENDING"}, headers=headers)
        assert [a["id"] for a in r.json()] == [app_id]

        r = client.post(f"/v1/applications/{app_id}/review", headers=headers)
        assert r.json()["status"] == "UNDER_REVIEW"
        r = client.post(f"/v1/applications/{app_id}/review", headers=headers)
        assert r.status_code == 400

    def test_decision_requires_forwarding(self, client, headers):
        app_id = client.post("/v1/applications", json=BIRTH).json()["id"]
        r = client.post(f"/v1/applications/{app_id}/decision", json={"decision": "approve"}, headers=headers)
        assert r.status_code == 400

    def test_other_department_forbidden(self, client, session, services, auth_header):
        _, key = register_issuer(
            session, services,
            name="Revenue Commissioner", did="did:web:registry.test:revenue", department="REVENUE",
        )
        app_id = client.post("/v1/applications", json=BIRTH).json()["id"]
        r = client.post(f"/v1/applications/{app_id}/forward", json={}, headers=auth_header(key))
        assert r.status_code == 403


class TestIssueEndpoint:
    def test_issue_and_fetch(self, client, headers):
        app_id = _approved(client, headers)
        r = client.post("/v1/credentials/issue", json={"application_id": app_id}, headers=headers)
        assert r.status_code == 201
        body = r.json()
        assert body["credential_id"] == f"cred-{app_id}"
        assert len(body["field_commitments"]) == 6

        r = client.get(f"/v1/credentials/{body['credential_id']}")
        assert r.json()["content_hash"] == body["content_hash"]
        r = client.get(f"/v1/applications/{app_id}", headers=headers)
        assert r.json()["status"] == "ISSUED"
        assert r.json()["credential_id"] == body["credential_id"]

    def test_issue_twice_conflicts(self, client, headers):
        app_id = _approved(client, headers)
        assert client.post("/v1/credentials/issue", json={"application_id": app_id}, headers=headers).status_code == 201
        r = client.post("/v1/credentials/issue", json={"application_id": app_id}, headers=headers)
        assert r.status_code == 409

    def test_idempotent_retry_replays(self, client, headers):
        app_id = _approved(client, headers)
        h = {**headers, "Idempotency-Key": "issue-once"}
        first = client.post("/v1/credentials/issue", json={"application_id": app_id}, headers=h)
        second = client.post("/v1/credentials/issue", json={"application_id": app_id}, headers=h)
        assert first.status_code == second.status_code == 201
        assert second.headers.get("Idempotent-Replay") == "true"
        assert second.json()["credential_id"] == first.json()["credential_id"]

        r = client.post("/v1/credentials/issue", json={"application_id": "other"}, headers=h)
        assert r.status_code == 409
        assert r.json()["error"]["code"] == "IDEMPOTENCY_CONFLICT"

    def test_issue_unapproved(self, client, headers):
        app_id = client.post("/v1/applications", json=BIRTH).json()["id"]
        r = client.post("/v1/credentials/issue", json={"application_id": app_id}, headers=headers)
        assert r.status_code == 400

    def test_issue_unknown(self, client, headers):
        r = client.post("/v1/credentials/issue", json={"application_id": "missing"}, headers=headers)
        assert r.status_code == 404

    def test_officer_cannot_issue(self, client, session, services, headers, auth_header):
        _, key = register_issuer(
            session, services,
            name="Health Officer", did="did:web:registry.test:health-officer",
            department="HEALTH", role="officer",
        )
        app_id = _approved(client, headers)
        r = client.post("/v1/credentials/issue", json={"application_id": app_id}, headers=auth_header(key))
        assert r.status_code == 403

    def test_batch_issue(self, client, headers):
        ok = _approved(client, headers)
        pending = client.post("/v1/applications", json=BIRTH).json()["id"]
        r = client.post("/v1/credentials/batch-issue", json={"application_ids": [ok, pending]}, headers=headers)
        body = r.json()
        assert (body["succeeded"], body["failed"]) == (1, 1)
        assert body["results"][1]["code"] == "IssuanceStateError"

    def test_registry_write_failure_is_retryable(self, client, headers, monkeypatch):
        app_id = _approved(client, headers)
        real_flush = Session.flush
        failures: list[str] = []

        def flaky_flush(self, objects=None):
            if not failures and any(isinstance(obj, Credential) for obj in self.new):
                failures.append("flush")
                raise OperationalError("INSERT INTO credentials", {}, sqlite3.OperationalError("database is locked"))
            return real_flush(self, objects)

        monkeypatch.setattr(Session, "flush", flaky_flush)

        r = client.post("/v1/credentials/issue", json={"application_id": app_id}, headers=headers)
        assert r.status_code == 503
        assert client.get(f"/v1/credentials/cred-{app_id}").status_code == 404

        r = client.post("/v1/credentials/issue", json={"application_id": app_id}, headers=headers)
        assert r.status_code == 201, r.text
        cred_id = r.json()["credential_id"]
        assert client.post("/v1/credentials/verify", json={"credential_id": cred_id}).json()["result"] == "VALID"


class TestCredentialListing:
    def test_requires_auth(self, client):
        assert client.get("/v1/credentials").status_code == 401

    def test_lists_department_credentials_newest_first(self, client, session, headers):
        older = _issued(client, headers)
        newer = _issued(client, headers)
        with session.begin():
            session.get(Credential, older).created_at = datetime(2026, 1, 1, tzinfo=timezone.utc)
            session.get(Credential, newer).created_at = datetime(2026, 2, 1, tzinfo=timezone.utc)

        r = client.get("/v1/credentials", headers=headers)
        assert r.status_code == 200
        assert [c["credential_id"] for c in r.json()] == [newer, older]

    def test_pagination(self, client, headers):
        issued = {_issued(client, headers) for _ in range(3)}

        first = client.get("/v1/credentials", params={"limit": 2}, headers=headers).json()
        rest = client.get("/v1/credentials", params={"limit": 2, "offset": 2}, headers=headers).json()
        assert len(first) == 2
        assert len(rest) == 1
        assert {c["credential_id"] for c in first + rest} == issued

        assert client.get("/v1/credentials", params={"limit": 0}, headers=headers).status_code == 422
        assert client.get("/v1/credentials", params={"offset": -1}, headers=headers).status_code == 422

    def test_status_filter(self, client, headers):
        kept = _issued(client, headers)
        revoked = _issued(client, headers)
        client.post(f"/v1/credentials/{revoked}/revoke", json={"reason": "issued in error"}, headers=headers)

        r = client.get("/v1/credentials", params={"status": "REVOKED"}, headers=headers)
        assert [c["credential_id"] for c in r.json()] == [revoked]
        r = client.get("/v1/credentials", params={"status": "ISSUED"}, headers=headers)
        assert [c["credential_id"] for c in r.json()] == [kept]
        assert client.get("/v1/credentials", params={"status": "LOST"}, headers=headers).status_code == 400

    def test_other_department_sees_nothing(self, client, session, services, headers, auth_header):
        _issued(client, headers)
        _, key = register_issuer(
            session, services,
            name="Revenue Commissioner", did="did:web:registry.test:revenue", department="REVENUE",
        )
        r = client.get("/v1/credentials", headers=auth_header(key))
        assert r.status_code == 200
        assert r.json() == []


class TestVerifyEndpoint:
    def test_verify_is_public(self, client, headers):
        cred_id = _issued(client, headers)
        r = client.post("/v1/credentials/verify", json={"credential_id": cred_id})
        assert r.status_code == 200
        assert r.json()["result"] == "VALID"

    def test_present_then_verify(self, client, headers):
        cred_id = _issued(client, headers)
        r = client.post(f"/v1/credentials/{cred_id}/present", json={"fields": ["childName"]}, headers=headers)
        assert r.status_code == 200
        proof = r.json()["disclosure_proof"]

        r = client.post("/v1/credentials/verify", json={"credential_id": cred_id, "disclosure_proof": proof, "verifier": "bank"})
        assert r.json()["disclosed_values"] == {"childName": "Aarav"}

        proof["public_signals"]["disclosed_values"]["childName"] = "Vivaan"
        r = client.post("/v1/credentials/verify", json={"credential_id": cred_id, "disclosure_proof": proof})
        assert r.json()["result"] == "INVALID_DISCLOSURE"

    def test_unknown_credential(self, client):
        r = client.post("/v1/credentials/verify", json={"credential_id": "cred-missing"})
        assert r.status_code == 200
        assert r.json()["result"] == "NOT_FOUND"

    def test_rate_limited(self, client, registry_env, monkeypatch):
        monkeypatch.setattr(registry_env[0].settings, "verify_rate_limit_per_minute", 2)
        ratelimit.reset()
        codes = [client.post("/v1/credentials/verify", json={"credential_id": "x"}).status_code for _ in range(3)]
        assert codes == [200, 200, 429]
        ratelimit.reset()


class TestRevokeEndpoint:
    def test_revoke_then_verify(self, client, headers):
        cred_id = _issued(client, headers)
        r = client.post(f"/v1/credentials/{cred_id}/revoke", json={"reason": "issued in error"}, headers=headers)
        assert r.status_code == 200
        assert r.json()["status"] == "REVOKED"

        assert client.post("/v1/credentials/verify", json={"credential_id": cred_id}).json()["result"] == "REVOKED"
        r = client.post(f"/v1/credentials/{cred_id}/revoke", json={"reason": "again"}, headers=headers)
        assert r.status_code == 409

    def test_batch_revoke(self, client, headers):
        cred_id = _issued(client, headers)
        items = [{"credential_id": cred_id, "reason": "x"}, {"credential_id": "cred-missing", "reason": "y"}]
        body = client.post("/v1/credentials/batch-revoke", json={"items": items}, headers=headers).json()
        assert (body["succeeded"], body["failed"]) == (1, 1)


class TestContentAndStats:
    def test_download_document(self, client, headers):
        cred_id = _issued(client, headers)
        r = client.get(f"/v1/credentials/{cred_id}/content")
        assert r.status_code == 200
        assert r.headers["content-disposition"] == f'attachment; filename="{cred_id}.json"'
        assert r.json()["credentialSubject"]["details"]["childName"] == "Aarav"
        assert "fatherName" not in r.json()["credentialSubject"]["details"]

    def test_stats(self, client, headers):
        cred_id = _issued(client, headers)
        client.post("/v1/credentials/verify", json={"credential_id": cred_id})
        client.post("/v1/credentials/verify", json={"credential_id": "cred-missing"})

        r = client.get("/v1/stats", headers=headers)
        assert r.status_code == 200
        body = r.json()
        assert body["applications"] == {"ISSUED": 1}
        assert body["credentials"] == {"ISSUED": 1}
        assert body["verifications"]["total"] == 2
        assert body["verifications"]["by_result"] == {"VALID": 1, "NOT_FOUND": 1}
