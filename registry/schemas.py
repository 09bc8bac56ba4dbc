from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

ApplicationType = Literal["BIRTH", "DEATH", "TRADE_LICENSE", "NOC"]


# --- Applications ---


class ApplicationCreateRequest(BaseModel):
    application_type: ApplicationType
    applicant_name: str = Field(..., min_length=1)
    applicant_did: str = Field(..., pattern=r"^did:[a-z0-9]+:.+$")
    department: str | None = None
    details: dict[str, Any]
    disclosed_fields: list[str] | None = None


class ApplicationResponse(BaseModel):
    id: str
    application_type: str
    applicant_name: str
    applicant_did: str
    department: str
    details: dict[str, Any]
    disclosed_fields: list[str]
    status: str
    decision_note: str | None = None
    credential_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class ForwardRequest(BaseModel):
    note: str | None = None


class DecisionRequest(BaseModel):
    decision: Literal["approve", "reject"]
    note: str | None = None


# --- Credentials ---


class IssueRequest(BaseModel):
    application_id: str = Field(..., min_length=1)


class BatchIssueRequest(BaseModel):
    application_ids: list[str] = Field(..., min_length=1, max_length=100)


class FieldCommitmentItem(BaseModel):
    field_name: str
    commitment: str


class CredentialResponse(BaseModel):
    credential_id: str
    application_id: str
    status: str
    content_hash: str
    commitment_root: str
    field_commitments: list[FieldCommitmentItem]
    signature: str
    content_pointer: str
    issuer_did: str
    holder_did: str
    disclosed_fields: list[str]
    issuance_date: str
    expires_at: datetime | None = None
    anchor_tx_ref: str | None = None
    revoked_reason: str | None = None
    revoked_at: datetime | None = None


class BatchItemResult(BaseModel):
    id: str
    status: Literal["SUCCESS", "FAILED"]
    credential_id: str | None = None
    error: str | None = None
    code: str | None = None


class BatchResponse(BaseModel):
    results: list[BatchItemResult]
    succeeded: int
    failed: int


class VerifyRequest(BaseModel):
    credential_id: str = Field(..., min_length=1)
    disclosure_proof: dict[str, Any] | None = None
    verifier: str | None = None


class PresentRequest(BaseModel):
    fields: list[str] = Field(default_factory=list)


class PresentResponse(BaseModel):
    credential_id: str
    disclosure_proof: dict[str, Any]


class RevokeRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)


class BatchRevokeItem(BaseModel):
    credential_id: str = Field(..., min_length=1)
    reason: str = Field(..., min_length=1, max_length=500)


class BatchRevokeRequest(BaseModel):
    items: list[BatchRevokeItem] = Field(..., min_length=1, max_length=100)


# --- Stats ---


class StatsVerifications(BaseModel):
    total: int
    last_24h: int
    by_result: dict[str, int]


class StatsResponse(BaseModel):
    applications: dict[str, int]
    credentials: dict[str, int]
    verifications: StatsVerifications


# --- Health ---


class HealthResponse(BaseModel):
    status: str = "ok"
    service: str = "vc-registry"
    version: str = "0.1.0"
