from __future__ import annotations

import json
import logging
import threading
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from registry.documents import (
    build_document,
    build_payload,
    committed_values,
    credential_id_for,
    format_timestamp,
    payload_from_document,
)
from registry.models import Application, Credential, Issuer
from registry.services import Services
from vccore.canonical import canonicalize, content_hash
from vccore.commitments import FieldCommitmentBuilder
from vccore.errors import (
    AnchorError,
    ApplicationNotFoundError,
    ContentStoreError,
    CredentialNotFoundError,
    CredentialProtocolError,
    DuplicateIssuanceError,
    IssuanceStateError,
    RegistryPersistenceError,
    SigningError,
)
from vccore.models import AnchorEntry, AnchorIssueRequest

logger = logging.getLogger(__name__)

ISSUABLE_STATUS = "APPROVED"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _lock(stmt):
    return stmt.with_for_update()


class _KeyedLock:
    """One mutex per key, dropped once nobody holds or waits on it."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, list] = {}

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            entry = self._locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
        entry[0].acquire()
        try:
            yield
        finally:
            entry[0].release()
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]


_subject_locks = _KeyedLock()


def blinding_handle(credential_id: str, commitment_root: str) -> str:
    """Secret store handle for the blinding factors behind one anchored root."""
    return f"blind_{credential_id}_{commitment_root[:16]}"


@dataclass
class IssuanceOutcome:
    application_id: str
    credential: Credential | None = None
    error: CredentialProtocolError | None = None


class IssuanceCoordinator:
    """Runs the issuance pipeline for approved applications.

    Nothing is written to the registry database until the anchor has
    accepted the credential.  A failure in any earlier step leaves the
    application ``APPROVED`` and discards the stashed blinding factors.
    Once the anchor holds the credential its blinding factors are kept,
    and a retry rebuilds a lost registry row from the anchor entry and
    the stored document.
    """

    def __init__(self, services: Services, *, validity_days: int = 0) -> None:
        self.services = services
        self.validity_days = validity_days

    def issue(self, session: Session, application_id: str, issuer: Issuer) -> Credential:
        with _subject_locks.hold(application_id):
            return self._issue_locked(session, application_id, issuer)

    def issue_many(self, session: Session, application_ids: Sequence[str], issuer: Issuer) -> list[IssuanceOutcome]:
        outcomes: list[IssuanceOutcome] = []
        for application_id in application_ids:
            try:
                outcomes.append(IssuanceOutcome(application_id, credential=self.issue(session, application_id, issuer)))
            except CredentialProtocolError as exc:
                logger.warning("Batch issuance failed for %s: %s", application_id, exc)
                outcomes.append(IssuanceOutcome(application_id, error=exc))
        return outcomes

    def _precheck(self, session: Session, application_id: str) -> Application:
        with session.begin():
            application = session.get(Application, application_id)
            if application is None:
                raise ApplicationNotFoundError(f"Application {application_id} not found")
            existing = session.execute(
                select(Credential.credential_id).where(Credential.subject_id == application_id)
            ).scalar_one_or_none()
            if existing is not None:
                raise DuplicateIssuanceError(application_id, existing)
            if application.status != ISSUABLE_STATUS:
                raise IssuanceStateError(
                    f"Application {application_id} is {application.status}, expected {ISSUABLE_STATUS}"
                )
            return application

    def _issue_locked(self, session: Session, application_id: str, issuer: Issuer) -> Credential:
        svc = self.services
        application = self._precheck(session, application_id)
        credential_id = credential_id_for(application_id)

        entry = svc.anchor.get_entry(credential_id)
        if entry is not None:
            if entry.issuer_id != issuer.did:
                raise DuplicateIssuanceError(application_id, credential_id)
            return self._restore(session, application, issuer, entry)

        now = _now().replace(microsecond=0)
        issuance_date = format_timestamp(now)
        expires_at = now + timedelta(days=self.validity_days) if self.validity_days > 0 else None

        values = committed_values(application)
        builder = FieldCommitmentBuilder()
        blindings = builder.generate_blindings(values)
        commitments, root = builder.build(values, blindings)

        disclosed = sorted(application.disclosed_fields)
        payload = build_payload(application, issuer, credential_id, issuance_date, root, disclosed, expires_at)
        canonical = canonicalize(payload)
        payload_hash = content_hash(payload)

        proof = svc.prover.prove(values, blindings, disclosed, root)

        blinding_ref = blinding_handle(credential_id, root)
        svc.secret_store.put(blinding_ref, blindings)
        try:
            signature = svc.signer.sign(canonical, issuer.signing_key_ref)

            field_commitments = [c.model_dump() for c in commitments]
            document = build_document(payload, signature, issuer, field_commitments, proof.model_dump())
            pointer = svc.content_store.put(canonicalize(document))

            try:
                receipt = svc.anchor.issue(
                    AnchorIssueRequest(
                        credential_id=credential_id,
                        content_hash=payload_hash,
                        commitment_root=root,
                        content_pointer=pointer,
                        issuer_id=issuer.did,
                        holder_id=application.applicant_did,
                        expiry=int(expires_at.timestamp()) if expires_at else 0,
                        schema_name=application.application_type,
                    ),
                    caller=issuer.did,
                )
            except AnchorError as exc:
                if exc.code == "ALREADY_ISSUED":
                    raise DuplicateIssuanceError(application_id, credential_id) from exc
                raise
        except CredentialProtocolError:
            # The handle embeds this attempt's root, so no anchored credential points at it.
            self._discard_blindings(blinding_ref)
            raise

        record = Credential(
            credential_id=credential_id,
            subject_id=application_id,
            issuer_id=issuer.id,
            content_hash=payload_hash,
            commitment_root=root,
            field_commitments=field_commitments,
            signature=signature,
            content_pointer=pointer,
            issuer_did=issuer.did,
            holder_did=application.applicant_did,
            status="ISSUED",
            disclosed_fields=disclosed,
            blinding_ref=blinding_ref,
            issuance_date=issuance_date,
            expires_at=expires_at,
            anchor_tx_ref=receipt.tx_ref,
        )
        self._persist(session, application_id, record)

        logger.info(
            "Issued credential %s for application %s (anchor tx %s)",
            credential_id, application_id, receipt.tx_ref,
        )
        return record

    def _restore(self, session: Session, application: Application, issuer: Issuer, entry: AnchorEntry) -> Credential:
        """Rebuild the registry row of a credential the anchor holds but the registry lost."""
        raw = self.services.content_store.get(entry.content_pointer)
        try:
            document = json.loads(raw)
            payload = payload_from_document(document)
            signature = document["proof"]["signatureValue"]
        except (ValueError, KeyError, TypeError) as exc:
            raise ContentStoreError(f"Stored document for {entry.credential_id} is unreadable") from exc
        if content_hash(payload) != entry.content_hash:
            raise ContentStoreError(
                f"Stored document for {entry.credential_id} does not match the anchored content hash"
            )

        record = Credential(
            credential_id=entry.credential_id,
            subject_id=application.id,
            issuer_id=issuer.id,
            content_hash=entry.content_hash,
            commitment_root=entry.commitment_root,
            field_commitments=document.get("fieldCommitments", []),
            signature=signature,
            content_pointer=entry.content_pointer,
            issuer_did=entry.issuer_id,
            holder_did=entry.holder_id,
            status="REVOKED" if entry.revoked else "ISSUED",
            disclosed_fields=sorted(payload["credentialSubject"]["details"]),
            blinding_ref=blinding_handle(entry.credential_id, entry.commitment_root),
            issuance_date=payload["issuanceDate"],
            expires_at=datetime.fromtimestamp(entry.expiry, timezone.utc) if entry.expiry else None,
            anchor_tx_ref=entry.tx_ref,
            revoked_reason=entry.revoked_reason,
            revoked_at=entry.revoked_at,
        )
        self._persist(session, application.id, record)

        logger.warning(
            "Restored registry record for anchored credential %s (application %s)",
            entry.credential_id, application.id,
        )
        return record

    def _persist(self, session: Session, application_id: str, record: Credential) -> None:
        try:
            with session.begin():
                current = session.execute(
                    _lock(select(Application).where(Application.id == application_id))
                ).scalar_one()
                current.status = "ISSUED"
                session.add(current)
                session.add(record)
                session.flush()
        except IntegrityError as exc:
            raise DuplicateIssuanceError(application_id, record.credential_id) from exc
        except SQLAlchemyError as exc:
            logger.error(
                "Credential %s is anchored but the registry write failed: %s", record.credential_id, exc
            )
            raise RegistryPersistenceError(
                f"Credential {record.credential_id} is anchored but could not be recorded; "
                "retrying the issuance restores the record"
            ) from exc

    def _discard_blindings(self, blinding_ref: str) -> None:
        try:
            self.services.secret_store.delete(blinding_ref)
        except SigningError:
            logger.warning("Could not discard blinding factors %s", blinding_ref, exc_info=True)

    def revoke(self, session: Session, credential_id: str, reason: str, issuer: Issuer) -> Credential:
        with session.begin():
            record = session.get(Credential, credential_id)
        if record is None:
            raise CredentialNotFoundError(f"Credential {credential_id} not found")

        receipt = self.services.anchor.revoke(credential_id, reason, caller=issuer.did)

        with session.begin():
            record = session.execute(
                _lock(select(Credential).where(Credential.credential_id == credential_id))
            ).scalar_one()
            record.status = "REVOKED"
            record.revoked_reason = reason
            record.revoked_at = _now()
            session.add(record)

        logger.info("Revoked credential %s (anchor tx %s)", credential_id, receipt.tx_ref)
        return record

    def revoke_many(
        self, session: Session, items: Sequence[tuple[str, str]], issuer: Issuer
    ) -> list[tuple[str, Credential | None, CredentialProtocolError | None]]:
        results: list[tuple[str, Credential | None, CredentialProtocolError | None]] = []
        for credential_id, reason in items:
            try:
                results.append((credential_id, self.revoke(session, credential_id, reason, issuer), None))
            except CredentialProtocolError as exc:
                logger.warning("Batch revocation failed for %s: %s", credential_id, exc)
                results.append((credential_id, None, exc))
        return results
