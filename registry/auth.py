from __future__ import annotations

import bcrypt
from fastapi import Depends, Header, HTTPException
from sqlalchemy import select
from sqlalchemy.orm import Session

from registry.config import get_session
from registry.models import Issuer


def _check_api_key(api_key: str, api_key_hash: str) -> bool:
    try:
        return bcrypt.checkpw(api_key.encode("utf-8"), api_key_hash.encode("utf-8"))
    except ValueError:
        return False


def authenticate_issuer(
    authorization: str | None = Header(default=None),
    session: Session = Depends(get_session),
) -> Issuer:
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(
            status_code=401,
            detail="Missing or invalid Authorization header. Use: Bearer vci_<your_api_key>",
        )
    api_key = authorization.split(" ", 1)[1].strip()
    if not api_key.startswith("vci_"):
        raise HTTPException(status_code=401, detail="Invalid API key format")

    with session.begin():
        issuers = session.execute(select(Issuer).where(Issuer.status == "active")).scalars().all()
        for issuer in issuers:
            if _check_api_key(api_key, issuer.api_key_hash):
                return issuer

    raise HTTPException(status_code=401, detail="Invalid API key")


def require_commissioner(issuer: Issuer = Depends(authenticate_issuer)) -> Issuer:
    if issuer.role != "commissioner":
        raise HTTPException(status_code=403, detail="Only commissioners can issue or revoke credentials")
    return issuer
