from __future__ import annotations

import logging
import secrets

import bcrypt
from sqlalchemy import select
from sqlalchemy.orm import Session

from registry import config
from registry.documents import APPLICATION_TYPES
from registry.models import Issuer
from registry.services import Services

logger = logging.getLogger(__name__)

ROLES = ("officer", "commissioner")


def _hash_api_key(api_key: str) -> str:
    return bcrypt.hashpw(
        api_key.encode("utf-8"),
        bcrypt.gensalt(rounds=config.settings.api_key_salt_rounds),
    ).decode("utf-8")


def register_issuer(
    session: Session,
    services: Services,
    *,
    name: str,
    did: str,
    department: str,
    role: str = "commissioner",
    signing_key_ref: str | None = None,
) -> tuple[Issuer, str]:
    """Create an issuer account and return it with its one-time API key.

    The issuer's signing key is created in the signer and its DID is
    authorized on the anchor before the account row is written.
    """
    if role not in ROLES:
        raise ValueError(f"Unknown issuer role {role}")
    if not department:
        raise ValueError("department is required")

    key_ref = signing_key_ref or f"issuer-{secrets.token_hex(6)}"
    services.signer.create_key(key_ref)
    services.anchor.add_issuer(did, caller=services.anchor_admin)

    api_key = f"vci_{secrets.token_hex(16)}"
    issuer = Issuer(
        name=name,
        did=did,
        department=department,
        role=role,
        signing_key_ref=key_ref,
        api_key_hash=_hash_api_key(api_key),
    )
    with session.begin():
        session.add(issuer)
        session.flush()

    logger.info("Registered issuer %s (%s) for %s", name, did, department)
    return issuer, api_key


def department_for(application_type: str) -> str:
    """Default department handling an application type."""
    if application_type not in APPLICATION_TYPES:
        raise ValueError(f"Unknown application type {application_type}")
    return {
        "BIRTH": "HEALTH",
        "DEATH": "HEALTH",
        "TRADE_LICENSE": "REVENUE",
        "NOC": "URBAN_DEVELOPMENT",
    }[application_type]


def ensure_signing_keys(session: Session, services: Services) -> int:
    """Make every active issuer's key known to the signer; returns how many."""
    with session.begin():
        key_refs = session.execute(select(Issuer.signing_key_ref).where(Issuer.status == "active")).scalars().all()
    for key_ref in key_refs:
        services.signer.create_key(key_ref)
    return len(key_refs)
