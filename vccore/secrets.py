"""Blinding-factor storage.

Blinding factors are the only thing that can open a field commitment, so
they never go into the registry database.  They are kept under an opaque
handle in a store that shares the signer's trust boundary.
"""

from __future__ import annotations

import logging
import threading
from typing import Protocol

import httpx

from vccore.errors import SigningError

logger = logging.getLogger(__name__)


class SecretStore(Protocol):
    def put(self, handle: str, factors: dict[str, str]) -> None: ...

    def get(self, handle: str) -> dict[str, str]: ...

    def delete(self, handle: str) -> None: ...


class InMemorySecretStore:
    def __init__(self) -> None:
        self._data: dict[str, dict[str, str]] = {}
        self._lock = threading.Lock()

    def put(self, handle: str, factors: dict[str, str]) -> None:
        with self._lock:
            self._data[handle] = dict(factors)

    def get(self, handle: str) -> dict[str, str]:
        with self._lock:
            factors = self._data.get(handle)
        if factors is None:
            raise SigningError(f"No blinding factors stored under {handle}", reason="secret_store")
        return dict(factors)

    def delete(self, handle: str) -> None:
        with self._lock:
            self._data.pop(handle, None)


class VaultKVSecretStore:
    """Vault KV version 2 client storing one secret per handle."""

    def __init__(
        self,
        vault_addr: str,
        token: str,
        *,
        mount: str = "secret",
        prefix: str = "vc-blindings",
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        if not vault_addr:
            raise ValueError("vault_addr is required")
        self._addr = vault_addr.rstrip("/")
        self._token = token
        self._mount = mount.strip("/")
        self._prefix = prefix.strip("/")
        self._timeout = timeout
        self._transport = transport

    def _url(self, kind: str, handle: str) -> str:
        return f"{self._addr}/v1/{self._mount}/{kind}/{self._prefix}/{handle}"

    def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            with httpx.Client(
                timeout=self._timeout,
                headers={"X-Vault-Token": self._token},
                transport=self._transport,
            ) as c:
                r = c.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            logger.warning("Vault KV unreachable: %s", exc)
            raise SigningError(f"Vault KV unreachable: {exc}", reason="secret_store", transient=True) from exc
        if r.status_code >= 500:
            raise SigningError(f"Vault KV returned {r.status_code}", reason="secret_store", transient=True)
        return r

    def put(self, handle: str, factors: dict[str, str]) -> None:
        r = self._request("POST", self._url("data", handle), json={"data": factors})
        if r.status_code >= 400:
            raise SigningError(f"Vault KV rejected write ({r.status_code})", reason="secret_store")

    def get(self, handle: str) -> dict[str, str]:
        r = self._request("GET", self._url("data", handle))
        if r.status_code == 404:
            raise SigningError(f"No blinding factors stored under {handle}", reason="secret_store")
        if r.status_code >= 400:
            raise SigningError(f"Vault KV rejected read ({r.status_code})", reason="secret_store")
        try:
            return dict(r.json()["data"]["data"])
        except (KeyError, TypeError, ValueError) as exc:
            raise SigningError("Vault KV returned a malformed secret", reason="secret_store") from exc

    def delete(self, handle: str) -> None:
        r = self._request("DELETE", self._url("metadata", handle))
        if r.status_code >= 400 and r.status_code != 404:
            raise SigningError(f"Vault KV rejected delete ({r.status_code})", reason="secret_store")
