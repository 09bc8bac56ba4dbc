from __future__ import annotations

import importlib
import sys
from pathlib import Path

import pytest


REPO_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(REPO_ROOT))


BIRTH_DETAILS = {
    "childName": "Aarav",
    "dateOfBirth": "2023-05-15",
    "gender": "M",
    "placeOfBirth": "City Hospital",
    "fatherName": "Rohan Sharma",
    "motherName": "Priya Sharma",
}


def _reload_registry(tmp_path: Path, monkeypatch: pytest.MonkeyPatch, **env_overrides):
    # Isolated DB and anchor ledger per test.
    monkeypatch.setenv("VC_REGISTRY_DATABASE_URL", f"sqlite:///{tmp_path / 'registry.db'}")
    monkeypatch.setenv("VC_REGISTRY_ANCHOR_DB", str(tmp_path / "anchor.db"))
    monkeypatch.setenv("VC_REGISTRY_AUTO_CREATE_SCHEMA", "true")
    monkeypatch.setenv("VC_REGISTRY_SIGNER", "local")
    monkeypatch.setenv("VC_REGISTRY_CONTENT_STORE", "memory")
    monkeypatch.setenv("VC_REGISTRY_PROVING_BACKEND", "opening")
    monkeypatch.setenv("VC_REGISTRY_API_KEY_SALT_ROUNDS", "4")
    monkeypatch.setenv("VC_REGISTRY_VERIFY_RATE_LIMIT", "0")
    monkeypatch.setenv("VC_REGISTRY_CREDENTIAL_VALIDITY_DAYS", "0")
    for k, v in env_overrides.items():
        monkeypatch.setenv(k, v)

    import registry.config as config_mod
    import registry.auth as auth_mod
    import registry.ratelimit as ratelimit_mod
    import registry.services as services_mod
    import registry.routes.applications as applications_mod
    import registry.routes.credentials as credentials_mod
    import registry.routes.stats as stats_mod
    import registry.app as app_mod

    importlib.reload(config_mod)
    importlib.reload(auth_mod)
    importlib.reload(ratelimit_mod)
    importlib.reload(applications_mod)
    importlib.reload(credentials_mod)
    importlib.reload(stats_mod)
    importlib.reload(app_mod)

    from registry.models import Base

    Base.metadata.create_all(bind=config_mod.engine)
    services = services_mod.build_services(config_mod.settings)
    services_mod.set_services(services)
    return config_mod, services, app_mod


@pytest.fixture()
def registry_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    config_mod, services, app_mod = _reload_registry(tmp_path, monkeypatch)
    yield config_mod, services, app_mod
    services.anchor.close()
    import registry.services as services_mod

    services_mod.set_services(None)


@pytest.fixture()
def services(registry_env):
    return registry_env[1]


@pytest.fixture()
def session(registry_env):
    config_mod = registry_env[0]
    s = config_mod.SessionLocal()
    try:
        yield s
    finally:
        s.close()


@pytest.fixture()
def registry_app(registry_env):
    return registry_env[2].create_app()


@pytest.fixture()
def commissioner(session, services):
    from registry.issuers import register_issuer

    issuer, api_key = register_issuer(
        session,
        services,
        name="Health Commissioner",
        did="did:web:registry.test:health",
        department="HEALTH",
        role="commissioner",
        signing_key_ref="health-commissioner",
    )
    return issuer, api_key


@pytest.fixture()
def approved_application(session):
    from registry.models import Application

    def _make(details: dict | None = None, disclosed: list[str] | None = None, status: str = "APPROVED") -> Application:
        with session.begin():
            app = Application(
                application_type="BIRTH",
                applicant_name="Priya Sharma",
                applicant_did="did:key:z6MkHolder",
                department="HEALTH",
                details=dict(details or BIRTH_DETAILS),
                disclosed_fields=sorted(disclosed if disclosed is not None else ["childName", "dateOfBirth"]),
                status=status,
            )
            session.add(app)
            session.flush()
        return app

    return _make


@pytest.fixture()
def auth_header():
    def _auth(api_key: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {api_key}"}

    return _auth
