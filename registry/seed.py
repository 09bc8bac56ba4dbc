from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from registry.config import SessionLocal, engine, settings
from registry.issuers import register_issuer
from registry.models import Base, Issuer
from registry.services import Services, get_services


DEPARTMENT_COMMISSIONERS = [
    {"name": "Health Commissioner", "department": "HEALTH", "slug": "health"},
    {"name": "Revenue Commissioner", "department": "REVENUE", "slug": "revenue"},
    {"name": "Urban Development Commissioner", "department": "URBAN_DEVELOPMENT", "slug": "urban"},
]


def seed(session: Session, services: Services) -> None:
    print("Seeding department commissioners...")
    for entry in DEPARTMENT_COMMISSIONERS:
        did = f"did:web:registry.example.gov:{entry['slug']}"
        with session.begin():
            exists = session.execute(select(Issuer.id).where(Issuer.did == did)).scalar_one_or_none()
        if exists is not None:
            print(f"- {entry['name']}  already registered ({did})")
            continue

        issuer, api_key = register_issuer(
            session,
            services,
            name=entry["name"],
            did=did,
            department=entry["department"],
            role="commissioner",
            signing_key_ref=f"{entry['slug']}-commissioner",
        )
        print(f"- {issuer.name}  id={issuer.id}  did={issuer.did}  api_key={api_key}")


def main() -> int:
    if settings.auto_create_schema:
        Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        seed(session, get_services())
    finally:
        session.close()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
