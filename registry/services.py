from __future__ import annotations

import logging
from dataclasses import dataclass

from registry import config
from registry.config import Settings
from vccore.anchor import Anchor, LedgerAnchor
from vccore.backends import OpeningBackend, ProvingBackend, SnarkjsBackend
from vccore.disclosure import DisclosureProver, DisclosureVerifier
from vccore.secrets import InMemorySecretStore, SecretStore, VaultKVSecretStore
from vccore.signer import DelegatedSigner, LocalEd25519Signer, VaultTransitSigner
from vccore.storage import ContentStore, InMemoryContentStore, IpfsContentStore

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Collaborators the registry talks to, built once per process."""

    signer: DelegatedSigner
    anchor: Anchor
    content_store: ContentStore
    secret_store: SecretStore
    prover: DisclosureProver
    verifier: DisclosureVerifier
    anchor_admin: str = ""


def _proving_backends(cfg: Settings) -> list[ProvingBackend]:
    backends: list[ProvingBackend] = [OpeningBackend()]
    if cfg.proving_backend == "snarkjs":
        backends.insert(0, SnarkjsBackend(
            cfg.snark_wasm_path,
            cfg.snark_zkey_path,
            cfg.snark_vkey_path,
            snarkjs_bin=cfg.snarkjs_bin,
        ))
    elif cfg.proving_backend != "opening":
        raise ValueError(f"Unknown proving backend {cfg.proving_backend}")
    return backends


def build_services(cfg: Settings | None = None) -> Services:
    cfg = cfg or config.settings

    if cfg.signer_backend == "vault":
        signer: DelegatedSigner = VaultTransitSigner(
            cfg.vault_addr, cfg.vault_token, mount=cfg.vault_transit_mount, timeout=cfg.vault_timeout_seconds
        )
        secret_store: SecretStore = VaultKVSecretStore(
            cfg.vault_addr, cfg.vault_token, mount=cfg.vault_kv_mount, timeout=cfg.vault_timeout_seconds
        )
    elif cfg.signer_backend == "local":
        logger.warning("Using the local development signer; keys are derived from a configured seed")
        signer = LocalEd25519Signer(cfg.local_signing_seed)
        secret_store = InMemorySecretStore()
    else:
        raise ValueError(f"Unknown signer backend {cfg.signer_backend}")

    if cfg.content_store_backend == "ipfs":
        content_store: ContentStore = IpfsContentStore(cfg.ipfs_api_url, timeout=cfg.ipfs_timeout_seconds)
    elif cfg.content_store_backend == "memory":
        content_store = InMemoryContentStore()
    else:
        raise ValueError(f"Unknown content store {cfg.content_store_backend}")

    backends = _proving_backends(cfg)
    return Services(
        signer=signer,
        anchor=LedgerAnchor(cfg.anchor_db_path, admin=cfg.anchor_admin),
        content_store=content_store,
        secret_store=secret_store,
        prover=DisclosureProver(backends[0]),
        verifier=DisclosureVerifier(backends),
        anchor_admin=cfg.anchor_admin,
    )


_services: Services | None = None


def get_services() -> Services:
    global _services
    if _services is None:
        _services = build_services()
    return _services


def set_services(services: Services | None) -> None:
    global _services
    _services = services
