from __future__ import annotations

import os
from collections.abc import Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker


def _get_int(name: str, default: int) -> int:
    val = os.getenv(name)
    if val is None or val == "":
        return default
    return int(val)


def _get_float(name: str, default: float) -> float:
    val = os.getenv(name)
    if val is None or val == "":
        return default
    return float(val)


def _get_bool(name: str, default: bool) -> bool:
    val = os.getenv(name)
    if val is None or val == "":
        return default
    return val.strip().lower() in {"1", "true", "yes", "y", "on"}


class Settings:
    database_url: str = os.getenv("DATABASE_URL") or os.getenv("VC_REGISTRY_DATABASE_URL", "sqlite:///./vc_registry.db")
    auto_create_schema: bool = _get_bool("VC_REGISTRY_AUTO_CREATE_SCHEMA", True)

    host: str = os.getenv("VC_REGISTRY_HOST", "127.0.0.1")
    port: int = _get_int("VC_REGISTRY_PORT", 3000)
    log_level: str = os.getenv("VC_REGISTRY_LOG_LEVEL", "info")

    api_key_salt_rounds: int = _get_int("VC_REGISTRY_API_KEY_SALT_ROUNDS", 10)

    credential_validity_days: int = _get_int("VC_REGISTRY_CREDENTIAL_VALIDITY_DAYS", 0)

    # Delegated signer: "local" or "vault"
    signer_backend: str = os.getenv("VC_REGISTRY_SIGNER", "local")
    local_signing_seed: str = os.getenv("VC_REGISTRY_LOCAL_SIGNING_SEED", "dev-only-signing-seed")
    vault_addr: str = os.getenv("VAULT_ADDR") or os.getenv("VC_REGISTRY_VAULT_ADDR", "http://127.0.0.1:8200")
    vault_token: str = os.getenv("VAULT_TOKEN") or os.getenv("VC_REGISTRY_VAULT_TOKEN", "")
    vault_transit_mount: str = os.getenv("VC_REGISTRY_VAULT_TRANSIT_MOUNT", "transit")
    vault_kv_mount: str = os.getenv("VC_REGISTRY_VAULT_KV_MOUNT", "secret")
    vault_timeout_seconds: float = _get_float("VC_REGISTRY_VAULT_TIMEOUT", 10.0)

    # Content store: "memory" or "ipfs"
    content_store_backend: str = os.getenv("VC_REGISTRY_CONTENT_STORE", "memory")
    ipfs_api_url: str = os.getenv("VC_REGISTRY_IPFS_API_URL", "http://127.0.0.1:5001")
    ipfs_timeout_seconds: float = _get_float("VC_REGISTRY_IPFS_TIMEOUT", 30.0)

    # Anchor ledger
    anchor_db_path: str = os.getenv("VC_REGISTRY_ANCHOR_DB", "./vc_anchor.db")
    anchor_admin: str = os.getenv("VC_REGISTRY_ANCHOR_ADMIN", "did:web:registry.example.gov:admin")

    # Proving backend: "opening" or "snarkjs"
    proving_backend: str = os.getenv("VC_REGISTRY_PROVING_BACKEND", "opening")
    snark_wasm_path: str = os.getenv("VC_REGISTRY_SNARK_WASM", "./circuits/disclosure.wasm")
    snark_zkey_path: str = os.getenv("VC_REGISTRY_SNARK_ZKEY", "./circuits/disclosure_final.zkey")
    snark_vkey_path: str = os.getenv("VC_REGISTRY_SNARK_VKEY", "./circuits/verification_key.json")
    snarkjs_bin: str = os.getenv("VC_REGISTRY_SNARKJS_BIN", "snarkjs")

    idempotency_ttl_hours: int = _get_int("VC_REGISTRY_IDEMPOTENCY_TTL_HOURS", 24)

    # Public verification rate limit (requests per IP per minute, 0 disables)
    verify_rate_limit_per_minute: int = _get_int("VC_REGISTRY_VERIFY_RATE_LIMIT", 60)


settings = Settings()


def _connect_args(database_url: str) -> dict:
    if database_url.startswith("sqlite:"):
        return {"check_same_thread": False}
    return {}


engine = create_engine(
    settings.database_url,
    future=True,
    pool_pre_ping=True,
    connect_args=_connect_args(settings.database_url),
)

SessionLocal = sessionmaker(
    bind=engine,
    class_=Session,
    expire_on_commit=False,
    autoflush=False,
    autobegin=False,
)


def get_session() -> Generator[Session, None, None]:
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
