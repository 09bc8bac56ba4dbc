from __future__ import annotations

import enum
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator


class FieldCommitment(BaseModel):
    model_config = ConfigDict(frozen=True)

    field_name: str = Field(..., min_length=1)
    commitment: str = Field(..., pattern=r"^[0-9a-f]{64}$")


class PublicSignals(BaseModel):
    """What a verifier sees: the root, which fields are open, and their values."""

    model_config = ConfigDict(frozen=True)

    commitment_root: str
    field_names: list[str]
    disclosure_flags: list[int]
    disclosed_values: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _shape(self) -> PublicSignals:
        if len(self.field_names) != len(self.disclosure_flags):
            raise ValueError("field_names and disclosure_flags differ in length")
        if self.field_names != sorted(self.field_names):
            raise ValueError("field_names must be sorted")
        if any(flag not in (0, 1) for flag in self.disclosure_flags):
            raise ValueError("disclosure flags must be 0 or 1")
        flagged = {n for n, f in zip(self.field_names, self.disclosure_flags) if f}
        if set(self.disclosed_values) != flagged:
            raise ValueError("disclosed_values must cover exactly the flagged fields")
        return self

    @property
    def disclosed_fields(self) -> list[str]:
        return [n for n, f in zip(self.field_names, self.disclosure_flags) if f]


class DisclosureProof(BaseModel):
    model_config = ConfigDict(frozen=True)

    scheme: str
    proof: dict[str, Any]
    public_signals: PublicSignals


class AnchorStatus(enum.IntEnum):
    VALID = 0
    NOT_FOUND = 1
    REVOKED = 2
    EXPIRED = 3
    HASH_MISMATCH = 4


class AnchorIssueRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    credential_id: str = Field(..., min_length=1)
    content_hash: str
    commitment_root: str
    content_pointer: str
    issuer_id: str
    holder_id: str
    expiry: int = 0
    schema_name: str = ""


class AnchorReceipt(BaseModel):
    model_config = ConfigDict(frozen=True)

    credential_id: str
    tx_ref: str | None = None
    status: Literal["SUCCESS", "FAILED"] = "SUCCESS"
    error: str | None = None


class AnchorEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    credential_id: str
    content_hash: str
    commitment_root: str
    content_pointer: str
    issuer_id: str
    holder_id: str
    expiry: int = 0
    schema_name: str = ""
    revoked: bool = False
    revoked_reason: str | None = None
    issued_at: datetime
    revoked_at: datetime | None = None
    tx_ref: str | None = None
