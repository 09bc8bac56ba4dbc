from __future__ import annotations

from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Depends
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from registry.auth import authenticate_issuer
from registry.config import get_session
from registry.models import Application, Credential, Issuer, VerificationLog
from registry.schemas import StatsResponse, StatsVerifications


router = APIRouter()


def _counts(session: Session, column) -> dict[str, int]:
    rows = session.execute(select(column, func.count()).group_by(column)).all()
    return {str(key): int(n) for key, n in rows}


@router.get("/stats", response_model=StatsResponse, tags=["Stats"])
def stats(
    _issuer: Issuer = Depends(authenticate_issuer),
    session: Session = Depends(get_session),
) -> StatsResponse:
    with session.begin():
        applications = _counts(session, Application.status)
        credentials = _counts(session, Credential.status)
        by_result = _counts(session, VerificationLog.result)

        total = session.execute(select(func.count(VerificationLog.id))).scalar_one()
        since = datetime.now(timezone.utc) - timedelta(hours=24)
        last_24h = session.execute(
            select(func.count(VerificationLog.id)).where(VerificationLog.verified_at > since)
        ).scalar_one()

    return StatsResponse(
        applications=applications,
        credentials=credentials,
        verifications=StatsVerifications(total=int(total), last_24h=int(last_24h), by_result=by_result),
    )
