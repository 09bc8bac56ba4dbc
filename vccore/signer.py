"""Delegated signing.

The issuing process never holds a private key: it asks a signer for a
signature over the canonical payload, naming the issuer's key by reference.
"""

from __future__ import annotations

import base64
import hashlib
import logging
import threading
from typing import Any, Protocol

import httpx
from nacl.exceptions import BadSignatureError
from nacl.signing import SigningKey, VerifyKey

from vccore.errors import SigningError

logger = logging.getLogger(__name__)


class DelegatedSigner(Protocol):
    def create_key(self, key_ref: str) -> None: ...

    def sign(self, payload: bytes, key_ref: str) -> str: ...

    def verify(self, payload: bytes, signature: str, key_ref: str) -> bool: ...


def _join(base_url: str, path: str) -> str:
    return base_url.rstrip("/") + "/" + path.lstrip("/")


class VaultTransitSigner:
    """HashiCorp Vault Transit engine client.

    Keys are created as ``ed25519`` transit keys named after the issuer's
    ``key_ref``; Vault returns signatures as ``vault:v<n>:<base64>`` strings,
    which are stored and verified verbatim.
    """

    def __init__(
        self,
        vault_addr: str,
        token: str,
        *,
        mount: str = "transit",
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        if not vault_addr:
            raise ValueError("vault_addr is required")
        self._addr = vault_addr
        self._token = token
        self._mount = mount.strip("/")
        self._timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.Client:
        return httpx.Client(
            timeout=self._timeout,
            headers={"X-Vault-Token": self._token},
            transport=self._transport,
        )

    def _post(self, path: str, payload: dict[str, Any], key_ref: str) -> httpx.Response:
        url = _join(self._addr, f"/v1/{self._mount}/{path}")
        try:
            with self._client() as c:
                r = c.post(url, json=payload)
        except httpx.HTTPError as exc:
            logger.warning("Vault transit unreachable for key %s: %s", key_ref, exc)
            raise SigningError(f"Vault unreachable: {exc}", transient=True) from exc

        if r.status_code == 403:
            raise SigningError(f"Vault denied access to key {key_ref}", reason="unauthorized")
        if r.status_code >= 500:
            logger.warning("Vault transit returned %s for key %s", r.status_code, key_ref)
            raise SigningError(f"Vault returned {r.status_code}", transient=True)
        return r

    def create_key(self, key_ref: str) -> None:
        r = self._post(f"keys/{key_ref}", {"type": "ed25519"}, key_ref)
        if r.status_code >= 400:
            raise SigningError(f"Vault could not create key {key_ref}: {r.status_code}")

    def sign(self, payload: bytes, key_ref: str) -> str:
        body = {"input": base64.b64encode(payload).decode("ascii")}
        r = self._post(f"sign/{key_ref}", body, key_ref)
        if r.status_code in (400, 404):
            raise SigningError(f"Signing key {key_ref} is not available")
        if r.status_code >= 400:
            raise SigningError(f"Vault returned {r.status_code}")
        try:
            return r.json()["data"]["signature"]
        except (KeyError, TypeError, ValueError) as exc:
            raise SigningError("Vault returned a malformed signing response") from exc

    def verify(self, payload: bytes, signature: str, key_ref: str) -> bool:
        body = {
            "input": base64.b64encode(payload).decode("ascii"),
            "signature": signature,
        }
        r = self._post(f"verify/{key_ref}", body, key_ref)
        if r.status_code == 404:
            raise SigningError(f"Signing key {key_ref} is not available")
        if r.status_code == 400:
            # Vault answers 400 for signatures it cannot parse.
            return False
        if r.status_code >= 400:
            raise SigningError(f"Vault returned {r.status_code}")
        try:
            return bool(r.json()["data"]["valid"])
        except (KeyError, TypeError, ValueError) as exc:
            raise SigningError("Vault returned a malformed verify response") from exc


class LocalEd25519Signer:
    """In-process Ed25519 signer for development and tests.

    Each ``key_ref`` gets its own key derived from ``SHA-256(seed || key_ref)``.
    Only refs passed to :meth:`create_key` can sign.  :meth:`revoke_key`
    stops a ref from signing but keeps its verify key, so signatures made
    before the revocation still verify.
    """

    PREFIX = "ed25519:v1:"

    def __init__(self, seed: bytes | str) -> None:
        self._seed = seed.encode("utf-8") if isinstance(seed, str) else bytes(seed)
        self._keys: dict[str, SigningKey] = {}
        self._retired: dict[str, VerifyKey] = {}
        self._lock = threading.Lock()

    def create_key(self, key_ref: str) -> None:
        digest = hashlib.sha256(self._seed + key_ref.encode("utf-8")).digest()
        with self._lock:
            self._keys.setdefault(key_ref, SigningKey(digest))

    def revoke_key(self, key_ref: str) -> None:
        with self._lock:
            key = self._keys.pop(key_ref, None)
            if key is not None:
                self._retired[key_ref] = key.verify_key

    def _key(self, key_ref: str) -> SigningKey:
        with self._lock:
            key = self._keys.get(key_ref)
        if key is None:
            raise SigningError(f"Signing key {key_ref} is not available")
        return key

    def _verify_key(self, key_ref: str) -> VerifyKey:
        with self._lock:
            key = self._keys.get(key_ref)
            if key is not None:
                return key.verify_key
            retired = self._retired.get(key_ref)
        if retired is None:
            raise SigningError(f"Signing key {key_ref} is not available")
        return retired

    def public_key(self, key_ref: str) -> str:
        return self._verify_key(key_ref).encode().hex()

    def sign(self, payload: bytes, key_ref: str) -> str:
        signed = self._key(key_ref).sign(payload)
        return self.PREFIX + base64.b64encode(signed.signature).decode("ascii")

    def verify(self, payload: bytes, signature: str, key_ref: str) -> bool:
        verify_key = self._verify_key(key_ref)
        if not signature.startswith(self.PREFIX):
            return False
        try:
            raw = base64.b64decode(signature[len(self.PREFIX):], validate=True)
            verify_key.verify(payload, raw)
        except (BadSignatureError, ValueError):
            return False
        return True
