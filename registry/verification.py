from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field, ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from registry.documents import committed_values, payload_for_record
from registry.models import Credential, VerificationLog
from registry.services import Services
from vccore.canonical import canonicalize, content_hash
from vccore.commitments import FieldCommitmentBuilder
from vccore.errors import AnchorError, CanonicalizationError, SigningError
from vccore.models import AnchorStatus, DisclosureProof

logger = logging.getLogger(__name__)

RESULT_PRECEDENCE = [
    "NOT_FOUND",
    "REVOKED",
    "EXPIRED",
    "HASH_MISMATCH",
    "INVALID_SIGNATURE",
    "INVALID_DISCLOSURE",
    "VALID",
]


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _utc(dt: datetime) -> datetime:
    return dt.replace(tzinfo=timezone.utc) if dt.tzinfo is None else dt


class VerificationResult(BaseModel):
    credential_id: str
    result: str
    valid: bool
    checks: dict[str, bool | None] = Field(default_factory=dict)
    errors: list[str] = Field(default_factory=list)
    anchor_status: str | None = None
    disclosed_values: dict[str, Any] | None = None
    verified_at: datetime


def _decide(checks: dict[str, bool | None], anchor_status: AnchorStatus | None) -> str:
    if not checks.get("record_found") or anchor_status == AnchorStatus.NOT_FOUND:
        return "NOT_FOUND"
    if checks.get("not_revoked") is False:
        return "REVOKED"
    if checks.get("not_expired") is False:
        return "EXPIRED"
    if checks.get("hash_match") is False or checks.get("anchor_match") is False:
        return "HASH_MISMATCH"
    if checks.get("signature_valid") is False:
        return "INVALID_SIGNATURE"
    if checks.get("disclosure_valid") is False:
        return "INVALID_DISCLOSURE"
    return "VALID"


class VerificationEngine:
    """Recomputes a credential from registry data and checks it end to end.

    :meth:`verify` never raises.  A collaborator that fails marks its check
    false and the failure is reported in ``errors``.  Each attempt is
    appended to the verification log; the log is never consulted here.
    """

    def __init__(self, services: Services) -> None:
        self.services = services

    def verify(
        self,
        session: Session,
        credential_id: str,
        disclosure_proof: DisclosureProof | dict | None = None,
        verifier: str = "anonymous",
    ) -> VerificationResult:
        checks: dict[str, bool | None] = {"record_found": False}
        errors: list[str] = []
        anchor_status: AnchorStatus | None = None
        disclosed: dict[str, Any] | None = None

        try:
            anchor_status, disclosed = self._run(session, credential_id, disclosure_proof, checks, errors)
        except Exception as exc:
            logger.exception("Verification of %s failed unexpectedly", credential_id)
            errors.append(f"internal: {exc}")
            if checks.get("record_found"):
                checks.setdefault("hash_match", False)

        result = _decide(checks, anchor_status)
        outcome = VerificationResult(
            credential_id=credential_id,
            result=result,
            valid=result == "VALID",
            checks=checks,
            errors=errors,
            anchor_status=anchor_status.name if anchor_status is not None else None,
            disclosed_values=disclosed if result == "VALID" else None,
            verified_at=_now(),
        )
        self._log(session, outcome, verifier)
        return outcome

    def _run(
        self,
        session: Session,
        credential_id: str,
        disclosure_proof: DisclosureProof | dict | None,
        checks: dict[str, bool | None],
        errors: list[str],
    ) -> tuple[AnchorStatus | None, dict[str, Any] | None]:
        svc = self.services

        with session.begin():
            record = session.get(Credential, credential_id)
            if record is None:
                return None, None
            application = record.application
            issuer = record.issuer
        checks["record_found"] = True

        if record.status == "REVOKED":
            checks["not_revoked"] = False
            return None, None

        checks["not_expired"] = record.expires_at is None or _utc(record.expires_at) > _now()

        # Commitment root from the application's current values.
        root = record.commitment_root
        root_match: bool | None = None
        try:
            blindings = svc.secret_store.get(record.blinding_ref)
            _, root = FieldCommitmentBuilder().build(committed_values(application), blindings)
            root_match = root == record.commitment_root
        except (SigningError, ValueError) as exc:
            logger.warning("Could not recompute commitment root for %s: %s", credential_id, exc)
            errors.append(f"commitment_root: {exc}")

        try:
            payload = payload_for_record(record, application, issuer, commitment_root=root)
            canonical = canonicalize(payload)
            recomputed_hash = content_hash(payload)
        except CanonicalizationError as exc:
            errors.append(f"canonicalization: {exc}")
            checks["hash_match"] = False
            return None, None
        checks["hash_match"] = recomputed_hash == record.content_hash and root_match is not False

        anchor_status: AnchorStatus | None = None
        try:
            anchored, anchor_status = svc.anchor.verify(credential_id, recomputed_hash)
        except AnchorError as exc:
            logger.warning("Anchor unavailable while verifying %s: %s", credential_id, exc)
            errors.append(f"anchor: {exc}")
            checks["anchor_match"] = False
        else:
            checks["anchor_match"] = anchored
            if anchor_status == AnchorStatus.REVOKED:
                checks["not_revoked"] = False
            elif anchor_status == AnchorStatus.EXPIRED:
                checks["not_expired"] = False
            else:
                checks["not_revoked"] = True
        checks.setdefault("not_revoked", True)

        try:
            checks["signature_valid"] = svc.signer.verify(canonical, record.signature, issuer.signing_key_ref)
        except SigningError as exc:
            logger.warning("Signer unavailable while verifying %s: %s", credential_id, exc)
            errors.append(f"signature: {exc}")
            checks["signature_valid"] = False

        disclosed = None
        if disclosure_proof is not None:
            checks["disclosure_valid"] = False
            proof = disclosure_proof
            if not isinstance(proof, DisclosureProof):
                try:
                    proof = DisclosureProof.model_validate(proof)
                except ValidationError as exc:
                    errors.append(f"disclosure: malformed proof ({exc.error_count()} errors)")
                    proof = None
            if proof is not None:
                if proof.public_signals.commitment_root != record.commitment_root:
                    errors.append("disclosure: proof is for a different commitment root")
                elif svc.verifier.verify(proof):
                    checks["disclosure_valid"] = True
                    disclosed = dict(proof.public_signals.disclosed_values)
                else:
                    errors.append("disclosure: proof rejected")

        return anchor_status, disclosed

    def _log(self, session: Session, outcome: VerificationResult, verifier: str) -> None:
        try:
            with session.begin():
                session.add(VerificationLog(
                    credential_id=outcome.credential_id,
                    verifier=verifier,
                    result=outcome.result,
                    checks=outcome.checks,
                    errors=outcome.errors,
                    verified_at=outcome.verified_at,
                ))
        except SQLAlchemyError:
            logger.exception("Could not append verification log for %s", outcome.credential_id)
