"""Credential payloads and documents built from registry records.

Issuance and verification both go through :func:`build_payload`; any
difference in how the payload is assembled would surface as a hash
mismatch, so nothing here may depend on configuration or the clock.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from registry.models import Application, Credential, Issuer

APPLICATION_TYPES: dict[str, list[str]] = {
    "BIRTH": ["childName", "dateOfBirth", "gender", "placeOfBirth", "fatherName", "motherName"],
    "DEATH": ["deceasedName", "dateOfDeath", "placeOfDeath", "causeOfDeath"],
    "TRADE_LICENSE": ["businessName", "businessType", "businessAddress", "licenseDuration"],
    "NOC": ["purpose", "propertyAddress", "applicantType"],
}

DEFAULT_DISCLOSED: dict[str, list[str]] = {
    "BIRTH": ["childName", "dateOfBirth"],
    "DEATH": ["deceasedName", "dateOfDeath"],
    "TRADE_LICENSE": ["businessName", "businessType"],
    "NOC": ["purpose"],
}

CREDENTIAL_TYPE_NAMES = {
    "BIRTH": "BirthCertificateCredential",
    "DEATH": "DeathCertificateCredential",
    "TRADE_LICENSE": "TradeLicenseCredential",
    "NOC": "NoObjectionCertificateCredential",
}

VC_CONTEXT = ["https://www.w3.org/2018/credentials/v1"]


def validate_details(application_type: str, details: dict[str, Any], disclosed: list[str]) -> None:
    """Raise ``ValueError`` unless *details* fits *application_type*."""
    fields = APPLICATION_TYPES.get(application_type)
    if fields is None:
        raise ValueError(f"Unknown application type {application_type}")
    missing = [f for f in fields if details.get(f) in (None, "")]
    if missing:
        raise ValueError(f"Missing required fields for {application_type}: {missing}")
    unknown = sorted(set(details) - set(fields))
    if unknown:
        raise ValueError(f"Unexpected fields for {application_type}: {unknown}")
    not_committed = sorted(set(disclosed) - set(fields))
    if not_committed:
        raise ValueError(f"Cannot disclose fields outside {application_type}: {not_committed}")


_DOCUMENT_EXTRAS = ("fieldCommitments", "disclosureProof", "proof")


def credential_id_for(application_id: str) -> str:
    return f"cred-{application_id}"


def _utc(dt: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored in UTC.
    return dt.replace(tzinfo=timezone.utc) if dt.tzinfo is None else dt.astimezone(timezone.utc)


def format_timestamp(dt: datetime) -> str:
    return _utc(dt).strftime("%Y-%m-%dT%H:%M:%SZ")


def committed_values(application: Application) -> dict[str, Any]:
    """Every detail field of the application is committed."""
    return {name: application.details[name] for name in sorted(application.details)}


def build_payload(
    application: Application,
    issuer: Issuer,
    credential_id: str,
    issuance_date: str,
    commitment_root: str,
    disclosed_fields: list[str],
    expires_at: datetime | None = None,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "@context": list(VC_CONTEXT),
        "id": f"urn:credential:{credential_id}",
        "type": ["VerifiableCredential", CREDENTIAL_TYPE_NAMES[application.application_type]],
        "issuer": {
            "id": issuer.did,
            "name": issuer.name,
            "department": issuer.department,
        },
        "issuanceDate": issuance_date,
        "credentialSubject": {
            "id": application.applicant_did,
            "applicant": application.applicant_name,
            "applicationId": application.id,
            "type": application.application_type,
            "department": application.department,
            "details": {name: application.details[name] for name in sorted(disclosed_fields)},
        },
        "commitmentRoot": commitment_root,
    }
    if expires_at is not None:
        payload["expirationDate"] = format_timestamp(expires_at)
    return payload


def payload_for_record(
    record: Credential,
    application: Application,
    issuer: Issuer,
    commitment_root: str | None = None,
) -> dict[str, Any]:
    """Rebuild the payload a stored credential was signed over."""
    return build_payload(
        application,
        issuer,
        record.credential_id,
        record.issuance_date,
        commitment_root or record.commitment_root,
        record.disclosed_fields,
        record.expires_at,
    )


def build_document(
    payload: dict[str, Any],
    signature: str,
    issuer: Issuer,
    field_commitments: list[dict[str, str]],
    disclosure_proof: dict[str, Any],
) -> dict[str, Any]:
    """The full credential document placed in the content store."""
    return {
        **payload,
        "fieldCommitments": field_commitments,
        "disclosureProof": disclosure_proof,
        "proof": {
            "type": "DelegatedSignature",
            "created": payload["issuanceDate"],
            "proofPurpose": "assertionMethod",
            "verificationMethod": f"{issuer.did}#{issuer.signing_key_ref}",
            "signatureValue": signature,
        },
    }


def payload_from_document(document: dict[str, Any]) -> dict[str, Any]:
    """Strip the proof material ``build_document`` added back off a stored document."""
    return {key: value for key, value in document.items() if key not in _DOCUMENT_EXTRAS}
