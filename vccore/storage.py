from __future__ import annotations

import hashlib
import logging
import threading
from typing import Protocol

import httpx

from vccore.errors import ContentStoreError

logger = logging.getLogger(__name__)

IPFS_SCHEME = "ipfs://"


class ContentStore(Protocol):
    def put(self, content: bytes) -> str: ...

    def get(self, pointer: str) -> bytes: ...


class InMemoryContentStore:
    """Content-addressed store keyed by ``sha256-<hex>`` of the bytes."""

    def __init__(self) -> None:
        self._blobs: dict[str, bytes] = {}
        self._lock = threading.Lock()

    def put(self, content: bytes) -> str:
        pointer = "sha256-" + hashlib.sha256(content).hexdigest()
        with self._lock:
            self._blobs[pointer] = bytes(content)
        return pointer

    def get(self, pointer: str) -> bytes:
        with self._lock:
            content = self._blobs.get(pointer)
        if content is None:
            raise ContentStoreError(f"No content stored at {pointer}")
        return content


class IpfsContentStore:
    """Client for the IPFS (Kubo) HTTP RPC API.

    Content is pinned on add and addressed as ``ipfs://<cid>``.
    """

    def __init__(
        self,
        api_url: str,
        *,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        if not api_url:
            raise ValueError("api_url is required")
        self._api_url = api_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    def _post(self, path: str, **kwargs) -> httpx.Response:
        try:
            with httpx.Client(timeout=self._timeout, transport=self._transport) as c:
                r = c.post(f"{self._api_url}{path}", **kwargs)
                r.raise_for_status()
                return r
        except httpx.HTTPError as exc:
            logger.warning("IPFS request %s failed: %s", path, exc)
            raise ContentStoreError(f"IPFS request failed: {exc}") from exc

    def put(self, content: bytes) -> str:
        r = self._post(
            "/api/v0/add",
            params={"pin": "true", "cid-version": "1"},
            files={"file": ("credential.json", content, "application/json")},
        )
        try:
            cid = r.json()["Hash"]
        except (KeyError, ValueError) as exc:
            raise ContentStoreError("IPFS add returned no content identifier") from exc
        return IPFS_SCHEME + cid

    def get(self, pointer: str) -> bytes:
        cid = pointer[len(IPFS_SCHEME):] if pointer.startswith(IPFS_SCHEME) else pointer
        r = self._post("/api/v0/cat", params={"arg": cid})
        return r.content
