from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from sqlalchemy import select
from sqlalchemy.orm import Session

from registry import config
from registry.auth import authenticate_issuer, require_commissioner
from registry.config import get_session
from registry.issuance import IssuanceCoordinator
from registry.models import Application, Credential, Issuer
from registry.presentation import present
from registry.ratelimit import check_verify_rate_limit
from registry.schemas import (
    BatchIssueRequest,
    BatchItemResult,
    BatchResponse,
    BatchRevokeRequest,
    CredentialResponse,
    FieldCommitmentItem,
    IssueRequest,
    PresentRequest,
    PresentResponse,
    RevokeRequest,
    VerifyRequest,
)
from registry.services import get_services
from registry.verification import VerificationEngine, VerificationResult
from vccore.errors import (
    AnchorError,
    ApplicationNotFoundError,
    CanonicalizationError,
    ContentStoreError,
    CredentialNotFoundError,
    CredentialProtocolError,
    DuplicateIssuanceError,
    IssuanceStateError,
    ProofGenerationError,
    RegistryPersistenceError,
    SigningError,
)

router = APIRouter()

CREDENTIAL_STATUSES = ("ISSUED", "REVOKED")

_ANCHOR_STATUS = {
    "NOT_FOUND": 404,
    "ALREADY_ISSUED": 409,
    "ALREADY_REVOKED": 409,
    "UNAUTHORIZED": 403,
    "PAUSED": 503,
}


def _status_for(exc: CredentialProtocolError) -> int:
    if isinstance(exc, (ApplicationNotFoundError, CredentialNotFoundError)):
        return 404
    if isinstance(exc, DuplicateIssuanceError):
        return 409
    if isinstance(exc, (IssuanceStateError, CanonicalizationError)):
        return 400
    if isinstance(exc, ProofGenerationError):
        return 422
    if isinstance(exc, SigningError):
        if exc.reason == "unauthorized":
            return 403
        return 503 if exc.transient else 502
    if isinstance(exc, AnchorError):
        if exc.code in _ANCHOR_STATUS:
            return _ANCHOR_STATUS[exc.code]
        return 503 if exc.retryable else 502
    if isinstance(exc, ContentStoreError):
        return 502
    if isinstance(exc, RegistryPersistenceError):
        return 503
    return 500


def _code_for(exc: CredentialProtocolError) -> str:
    if isinstance(exc, AnchorError):
        return exc.code
    if isinstance(exc, SigningError):
        return exc.reason.upper()
    return type(exc).__name__


def _http_error(exc: CredentialProtocolError) -> HTTPException:
    return HTTPException(status_code=_status_for(exc), detail=str(exc))


def _credential_response(record: Credential) -> CredentialResponse:
    return CredentialResponse(
        credential_id=record.credential_id,
        application_id=record.subject_id,
        status=record.status,
        content_hash=record.content_hash,
        commitment_root=record.commitment_root,
        field_commitments=[FieldCommitmentItem(**fc) for fc in record.field_commitments],
        signature=record.signature,
        content_pointer=record.content_pointer,
        issuer_did=record.issuer_did,
        holder_did=record.holder_did,
        disclosed_fields=record.disclosed_fields,
        issuance_date=record.issuance_date,
        expires_at=record.expires_at,
        anchor_tx_ref=record.anchor_tx_ref,
        revoked_reason=record.revoked_reason,
        revoked_at=record.revoked_at,
    )


def _coordinator() -> IssuanceCoordinator:
    return IssuanceCoordinator(get_services(), validity_days=config.settings.credential_validity_days)


def _load_credential(session: Session, credential_id: str) -> Credential:
    with session.begin():
        record = session.get(Credential, credential_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Credential not found")
    return record


@router.post("/credentials/issue", status_code=201, response_model=CredentialResponse, tags=["Credentials"])
def issue_credential(
    req: IssueRequest,
    issuer: Issuer = Depends(require_commissioner),
    session: Session = Depends(get_session),
) -> CredentialResponse:
    with session.begin():
        app = session.get(Application, req.application_id)
        if app is not None and app.department != issuer.department:
            raise HTTPException(status_code=403, detail="Application belongs to another department")
    try:
        record = _coordinator().issue(session, req.application_id, issuer)
    except CredentialProtocolError as exc:
        raise _http_error(exc) from exc
    return _credential_response(record)


@router.post("/credentials/batch-issue", response_model=BatchResponse, tags=["Credentials"])
def batch_issue(
    req: BatchIssueRequest,
    issuer: Issuer = Depends(require_commissioner),
    session: Session = Depends(get_session),
) -> BatchResponse:
    outcomes = _coordinator().issue_many(session, req.application_ids, issuer)
    results = []
    for outcome in outcomes:
        if outcome.credential is not None:
            results.append(BatchItemResult(
                id=outcome.application_id,
                status="SUCCESS",
                credential_id=outcome.credential.credential_id,
            ))
        else:
            results.append(BatchItemResult(
                id=outcome.application_id,
                status="FAILED",
                error=str(outcome.error),
                code=_code_for(outcome.error),
            ))
    succeeded = sum(1 for r in results if r.status == "SUCCESS")
    return BatchResponse(results=results, succeeded=succeeded, failed=len(results) - succeeded)


@router.post(
    "/credentials/verify",
    response_model=VerificationResult,
    tags=["Credentials"],
    dependencies=[Depends(check_verify_rate_limit)],
)
def verify_credential(req: VerifyRequest, session: Session = Depends(get_session)) -> VerificationResult:
    engine = VerificationEngine(get_services())
    return engine.verify(
        session,
        req.credential_id,
        disclosure_proof=req.disclosure_proof,
        verifier=req.verifier or "anonymous",
    )


@router.post("/credentials/batch-revoke", response_model=BatchResponse, tags=["Credentials"])
def batch_revoke(
    req: BatchRevokeRequest,
    issuer: Issuer = Depends(require_commissioner),
    session: Session = Depends(get_session),
) -> BatchResponse:
    items = [(item.credential_id, item.reason) for item in req.items]
    results = []
    for credential_id, record, error in _coordinator().revoke_many(session, items, issuer):
        if record is not None:
            results.append(BatchItemResult(id=credential_id, status="SUCCESS", credential_id=credential_id))
        else:
            results.append(BatchItemResult(
                id=credential_id,
                status="FAILED",
                credential_id=credential_id,
                error=str(error),
                code=_code_for(error),
            ))
    succeeded = sum(1 for r in results if r.status == "SUCCESS")
    return BatchResponse(results=results, succeeded=succeeded, failed=len(results) - succeeded)


@router.get("/credentials", response_model=list[CredentialResponse], tags=["Credentials"])
def list_credentials(
    status: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    issuer: Issuer = Depends(authenticate_issuer),
    session: Session = Depends(get_session),
) -> list[CredentialResponse]:
    if status is not None and status not in CREDENTIAL_STATUSES:
        raise HTTPException(status_code=400, detail=f"Unknown status {status}")
    stmt = (
        select(Credential)
        .join(Application, Credential.subject_id == Application.id)
        .where(Application.department == issuer.department)
    )
    if status is not None:
        stmt = stmt.where(Credential.status == status)
    stmt = stmt.order_by(Credential.created_at.desc(), Credential.credential_id.desc()).offset(offset).limit(limit)
    with session.begin():
        records = session.execute(stmt).scalars().all()
        return [_credential_response(r) for r in records]


@router.get("/credentials/{credential_id}", response_model=CredentialResponse, tags=["Credentials"])
def get_credential(credential_id: str, session: Session = Depends(get_session)) -> CredentialResponse:
    return _credential_response(_load_credential(session, credential_id))


@router.get("/credentials/{credential_id}/content", tags=["Credentials"])
def download_credential(credential_id: str, session: Session = Depends(get_session)) -> Response:
    record = _load_credential(session, credential_id)
    try:
        content = get_services().content_store.get(record.content_pointer)
    except ContentStoreError as exc:
        raise _http_error(exc) from exc
    return Response(
        content=content,
        media_type="application/json",
        headers={"Content-Disposition": f'attachment; filename="{credential_id}.json"'},
    )


@router.post("/credentials/{credential_id}/present", response_model=PresentResponse, tags=["Credentials"])
def present_credential(
    credential_id: str,
    req: PresentRequest,
    issuer: Issuer = Depends(authenticate_issuer),
    session: Session = Depends(get_session),
) -> PresentResponse:
    with session.begin():
        record = session.get(Credential, credential_id)
        department = record.application.department if record is not None else None
    if record is None:
        raise HTTPException(status_code=404, detail="Credential not found")
    if department != issuer.department:
        raise HTTPException(status_code=403, detail="Credential belongs to another department")
    try:
        proof = present(session, get_services(), credential_id, req.fields)
    except CredentialProtocolError as exc:
        raise _http_error(exc) from exc
    return PresentResponse(credential_id=credential_id, disclosure_proof=proof.model_dump())


@router.post("/credentials/{credential_id}/revoke", response_model=CredentialResponse, tags=["Credentials"])
def revoke_credential(
    credential_id: str,
    req: RevokeRequest,
    issuer: Issuer = Depends(require_commissioner),
    session: Session = Depends(get_session),
) -> CredentialResponse:
    try:
        record = _coordinator().revoke(session, credential_id, req.reason, issuer)
    except CredentialProtocolError as exc:
        raise _http_error(exc) from exc
    return _credential_response(record)
