from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select
from sqlalchemy.orm import Session

from registry.auth import authenticate_issuer, require_commissioner
from registry.config import get_session
from registry.documents import DEFAULT_DISCLOSED, validate_details
from registry.issuers import department_for
from registry.models import Application, Credential, Issuer
from registry.schemas import (
    ApplicationCreateRequest,
    ApplicationResponse,
    DecisionRequest,
    ForwardRequest,
)


router = APIRouter()

APPLICATION_STATUSES = (
    "PENDING",
    "UNDER_REVIEW",
    "FORWARDED_TO_COMMISSIONER",
    "APPROVED",
    "REJECTED",
    "ISSUED",
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _lock(stmt):
    return stmt.with_for_update()


def _application_response(app: Application, credential_id: str | None = None) -> ApplicationResponse:
    return ApplicationResponse(
        id=app.id,
        application_type=app.application_type,
        applicant_name=app.applicant_name,
        applicant_did=app.applicant_did,
        department=app.department,
        details=app.details,
        disclosed_fields=app.disclosed_fields,
        status=app.status,
        decision_note=app.decision_note,
        credential_id=credential_id,
        created_at=app.created_at,
        updated_at=app.updated_at,
    )


def _load_for_issuer(session: Session, application_id: str, issuer: Issuer) -> Application:
    app = session.execute(
        _lock(select(Application).where(Application.id == application_id))
    ).scalar_one_or_none()
    if app is None:
        raise HTTPException(status_code=404, detail="Application not found")
    if app.department != issuer.department:
        raise HTTPException(status_code=403, detail="Application belongs to another department")
    return app


@router.post("/applications", status_code=201, response_model=ApplicationResponse, tags=["Applications"])
def submit_application(req: ApplicationCreateRequest, session: Session = Depends(get_session)) -> ApplicationResponse:
    disclosed = sorted(set(req.disclosed_fields if req.disclosed_fields is not None else DEFAULT_DISCLOSED[req.application_type]))
    try:
        validate_details(req.application_type, req.details, disclosed)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    with session.begin():
        app = Application(
            application_type=req.application_type,
            applicant_name=req.applicant_name,
            applicant_did=req.applicant_did,
            department=req.department or department_for(req.application_type),
            details=dict(req.details),
            disclosed_fields=disclosed,
            status="PENDING",
        )
        session.add(app)
        session.flush()
        return _application_response(app)


@router.get("/applications", response_model=list[ApplicationResponse], tags=["Applications"])
def list_applications(
    status: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    issuer: Issuer = Depends(authenticate_issuer),
    session: Session = Depends(get_session),
) -> list[ApplicationResponse]:
    if status is not None and status not in APPLICATION_STATUSES:
        raise HTTPException(status_code=400, detail=f"Unknown status {status}")
    stmt = select(Application).where(Application.department == issuer.department)
    if status is not None:
        stmt = stmt.where(Application.status == status)
    stmt = stmt.order_by(Application.created_at.desc()).limit(limit)
    with session.begin():
        apps = session.execute(stmt).scalars().all()
        return [_application_response(a) for a in apps]


@router.get("/applications/{application_id}", response_model=ApplicationResponse, tags=["Applications"])
def get_application(
    application_id: str,
    issuer: Issuer = Depends(authenticate_issuer),
    session: Session = Depends(get_session),
) -> ApplicationResponse:
    with session.begin():
        app = session.get(Application, application_id)
        if app is None or app.department != issuer.department:
            raise HTTPException(status_code=404, detail="Application not found")
        credential_id = session.execute(
            select(Credential.credential_id).where(Credential.subject_id == application_id)
        ).scalar_one_or_none()
        return _application_response(app, credential_id)


@router.post("/applications/{application_id}/review", response_model=ApplicationResponse, tags=["Applications"])
def review_application(
    application_id: str,
    issuer: Issuer = Depends(authenticate_issuer),
    session: Session = Depends(get_session),
) -> ApplicationResponse:
    with session.begin():
        app = _load_for_issuer(session, application_id, issuer)
        if app.status != "PENDING":
            raise HTTPException(status_code=400, detail=f"Cannot review an application in status {app.status}")
        app.status = "UNDER_REVIEW"
        app.updated_at = _now()
        session.add(app)
        return _application_response(app)


@router.post("/applications/{application_id}/forward", response_model=ApplicationResponse, tags=["Applications"])
def forward_application(
    application_id: str,
    req: ForwardRequest,
    issuer: Issuer = Depends(authenticate_issuer),
    session: Session = Depends(get_session),
) -> ApplicationResponse:
    with session.begin():
        app = _load_for_issuer(session, application_id, issuer)
        if app.status not in ("PENDING", "UNDER_REVIEW"):
            raise HTTPException(status_code=400, detail=f"Cannot forward an application in status {app.status}")
        app.status = "FORWARDED_TO_COMMISSIONER"
        if req.note:
            app.decision_note = req.note
        app.updated_at = _now()
        session.add(app)
        return _application_response(app)


@router.post("/applications/{application_id}/decision", response_model=ApplicationResponse, tags=["Applications"])
def decide_application(
    application_id: str,
    req: DecisionRequest,
    issuer: Issuer = Depends(require_commissioner),
    session: Session = Depends(get_session),
) -> ApplicationResponse:
    with session.begin():
        app = _load_for_issuer(session, application_id, issuer)
        if app.status != "FORWARDED_TO_COMMISSIONER":
            raise HTTPException(status_code=400, detail=f"Cannot decide an application in status {app.status}")
        app.status = "APPROVED" if req.decision == "approve" else "REJECTED"
        app.decided_by = issuer.id
        app.decision_note = req.note
        app.updated_at = _now()
        session.add(app)
        return _application_response(app)
