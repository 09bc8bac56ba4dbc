"""Append-only credential anchor.

Per credential id the anchor moves ``UNISSUED -> ISSUED -> REVOKED`` and
never back.  It is the authority for revocation and tamper detection: a
verifier recomputes a credential's content hash and asks the anchor whether
it still matches what was issued.
"""

from __future__ import annotations

import hashlib
import json
import logging
import sqlite3
import threading
from collections.abc import Sequence
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

from vccore.canonical import canonicalize
from vccore.errors import AnchorError
from vccore.merkle import EMPTY_ROOT
from vccore.models import AnchorEntry, AnchorIssueRequest, AnchorReceipt, AnchorStatus

logger = logging.getLogger(__name__)


class Anchor(Protocol):
    def issue(self, request: AnchorIssueRequest, caller: str) -> AnchorReceipt: ...

    def revoke(self, credential_id: str, reason: str, caller: str) -> AnchorReceipt: ...

    def verify(self, credential_id: str, content_hash: str) -> tuple[bool, AnchorStatus]: ...

    def batch_issue(self, requests: Sequence[AnchorIssueRequest], caller: str) -> list[AnchorReceipt]: ...

    def batch_revoke(self, items: Sequence[tuple[str, str]], caller: str) -> list[AnchorReceipt]: ...

    def get_entry(self, credential_id: str) -> AnchorEntry | None: ...

    def add_issuer(self, identity: str, caller: str) -> AnchorReceipt: ...

    def remove_issuer(self, identity: str, caller: str) -> AnchorReceipt: ...

    def pause(self, caller: str) -> AnchorReceipt: ...

    def unpause(self, caller: str) -> AnchorReceipt: ...


def _now() -> datetime:
    return datetime.now(timezone.utc)


_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS anchor_entries (
    credential_id   TEXT    PRIMARY KEY,
    content_hash    TEXT    NOT NULL,
    commitment_root TEXT    NOT NULL,
    content_pointer TEXT    NOT NULL,
    issuer_id       TEXT    NOT NULL,
    holder_id       TEXT    NOT NULL,
    expiry          INTEGER NOT NULL DEFAULT 0,
    schema_name     TEXT    NOT NULL DEFAULT '',
    revoked         INTEGER NOT NULL DEFAULT 0,
    revoked_reason  TEXT,
    issued_at       TEXT    NOT NULL,
    revoked_at      TEXT,
    tx_ref          TEXT
);

CREATE TABLE IF NOT EXISTS anchor_events (
    seq        INTEGER PRIMARY KEY AUTOINCREMENT,
    tx_ref     TEXT    NOT NULL UNIQUE,
    prev_ref   TEXT    NOT NULL,
    kind       TEXT    NOT NULL,
    body       TEXT    NOT NULL,
    created_at TEXT    NOT NULL
);

CREATE TABLE IF NOT EXISTS anchor_issuers (
    identity TEXT PRIMARY KEY,
    added_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS anchor_flags (
    name  TEXT PRIMARY KEY,
    value INTEGER NOT NULL
);

CREATE TRIGGER IF NOT EXISTS anchor_events_no_update
BEFORE UPDATE ON anchor_events
BEGIN SELECT RAISE(ABORT, 'anchor events are append-only'); END;

CREATE TRIGGER IF NOT EXISTS anchor_events_no_delete
BEFORE DELETE ON anchor_events
BEGIN SELECT RAISE(ABORT, 'anchor events are append-only'); END;

CREATE TRIGGER IF NOT EXISTS anchor_entries_no_delete
BEFORE DELETE ON anchor_entries
BEGIN SELECT RAISE(ABORT, 'anchor entries cannot be deleted'); END;

CREATE TRIGGER IF NOT EXISTS anchor_entries_immutable
BEFORE UPDATE ON anchor_entries
WHEN NEW.content_hash IS NOT OLD.content_hash
  OR NEW.commitment_root IS NOT OLD.commitment_root
  OR NEW.content_pointer IS NOT OLD.content_pointer
  OR NEW.issuer_id IS NOT OLD.issuer_id
  OR NEW.holder_id IS NOT OLD.holder_id
  OR NEW.expiry IS NOT OLD.expiry
  OR NEW.issued_at IS NOT OLD.issued_at
  OR NEW.tx_ref IS NOT OLD.tx_ref
BEGIN SELECT RAISE(ABORT, 'anchored fields are immutable'); END;

CREATE TRIGGER IF NOT EXISTS anchor_entries_revocation_final
BEFORE UPDATE ON anchor_entries
WHEN OLD.revoked = 1
BEGIN SELECT RAISE(ABORT, 'revocation is final'); END;
"""

_ENTRY_COLUMNS = (
    "credential_id, content_hash, commitment_root, content_pointer, issuer_id, "
    "holder_id, expiry, schema_name, revoked, revoked_reason, issued_at, revoked_at, tx_ref"
)


class LedgerAnchor:
    """SQLite-backed anchor ledger.

    Every state change appends an event whose ``tx_ref`` is
    ``SHA-256(previous tx_ref || canonical(event))``, so rewriting history
    breaks :meth:`verify_chain`.  Triggers refuse updates and deletes of
    events, changes to anchored fields and un-revocation.

    ``admin`` is the identity allowed to manage issuers and pause writes.
    """

    def __init__(self, db_path: str | Path, *, admin: str) -> None:
        if not admin:
            raise ValueError("admin identity is required")
        self._db_path = str(db_path)
        self._admin = admin
        self._lock = threading.RLock()
        self._conn = sqlite3.connect(self._db_path, check_same_thread=False, isolation_level=None)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(_SCHEMA_SQL)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def admin(self) -> str:
        return self._admin

    @property
    def paused(self) -> bool:
        with self._lock:
            row = self._conn.execute("SELECT value FROM anchor_flags WHERE name = 'paused'").fetchone()
        return bool(row and row[0])

    def is_issuer(self, identity: str) -> bool:
        with self._lock:
            row = self._conn.execute("SELECT 1 FROM anchor_issuers WHERE identity = ?", (identity,)).fetchone()
        return row is not None

    def issue(self, request: AnchorIssueRequest, caller: str) -> AnchorReceipt:
        with self._lock:
            return self._write(self._issue, request, caller)

    def revoke(self, credential_id: str, reason: str, caller: str) -> AnchorReceipt:
        with self._lock:
            return self._write(self._revoke, credential_id, reason, caller)

    def batch_issue(self, requests: Sequence[AnchorIssueRequest], caller: str) -> list[AnchorReceipt]:
        receipts: list[AnchorReceipt] = []
        with self._lock:
            for request in requests:
                try:
                    receipts.append(self._write(self._issue, request, caller))
                except AnchorError as exc:
                    receipts.append(_failed(request.credential_id, exc))
        return receipts

    def batch_revoke(self, items: Sequence[tuple[str, str]], caller: str) -> list[AnchorReceipt]:
        receipts: list[AnchorReceipt] = []
        with self._lock:
            for credential_id, reason in items:
                try:
                    receipts.append(self._write(self._revoke, credential_id, reason, caller))
                except AnchorError as exc:
                    receipts.append(_failed(credential_id, exc))
        return receipts

    def verify(self, credential_id: str, content_hash: str) -> tuple[bool, AnchorStatus]:
        entry = self.get_entry(credential_id)
        if entry is None:
            return False, AnchorStatus.NOT_FOUND
        if entry.revoked:
            return False, AnchorStatus.REVOKED
        if entry.expiry and int(_now().timestamp()) >= entry.expiry:
            return False, AnchorStatus.EXPIRED
        if entry.content_hash != content_hash:
            return False, AnchorStatus.HASH_MISMATCH
        return True, AnchorStatus.VALID

    def get_entry(self, credential_id: str) -> AnchorEntry | None:
        try:
            with self._lock:
                row = self._conn.execute(
                    f"SELECT {_ENTRY_COLUMNS} FROM anchor_entries WHERE credential_id = ?",
                    (credential_id,),
                ).fetchone()
        except sqlite3.Error as exc:
            raise AnchorError(f"anchor ledger unavailable: {exc}", retryable=True) from exc
        if row is None:
            return None
        return AnchorEntry(
            credential_id=row[0],
            content_hash=row[1],
            commitment_root=row[2],
            content_pointer=row[3],
            issuer_id=row[4],
            holder_id=row[5],
            expiry=row[6],
            schema_name=row[7],
            revoked=bool(row[8]),
            revoked_reason=row[9],
            issued_at=datetime.fromisoformat(row[10]),
            revoked_at=datetime.fromisoformat(row[11]) if row[11] else None,
            tx_ref=row[12],
        )

    def add_issuer(self, identity: str, caller: str) -> AnchorReceipt:
        with self._lock:
            return self._write(self._set_issuer, identity, True, caller)

    def remove_issuer(self, identity: str, caller: str) -> AnchorReceipt:
        with self._lock:
            return self._write(self._set_issuer, identity, False, caller)

    def pause(self, caller: str) -> AnchorReceipt:
        with self._lock:
            return self._write(self._set_paused, True, caller)

    def unpause(self, caller: str) -> AnchorReceipt:
        with self._lock:
            return self._write(self._set_paused, False, caller)

    def events(self, credential_id: str | None = None) -> list[dict]:
        """Return logged events, oldest first, optionally for one credential."""
        with self._lock:
            rows = self._conn.execute(
                "SELECT tx_ref, kind, body, created_at FROM anchor_events ORDER BY seq"
            ).fetchall()
        result = []
        for tx_ref, kind, body, created_at in rows:
            event = json.loads(body)
            if credential_id is not None and event.get("credential_id") != credential_id:
                continue
            result.append({"tx_ref": tx_ref, "kind": kind, "event": event, "created_at": created_at})
        return result

    def verify_chain(self) -> bool:
        """Recompute every event's ``tx_ref`` from its predecessor."""
        prev = EMPTY_ROOT
        with self._lock:
            rows = self._conn.execute(
                "SELECT tx_ref, prev_ref, body FROM anchor_events ORDER BY seq"
            ).fetchall()
        for tx_ref, prev_ref, body in rows:
            if prev_ref != prev:
                return False
            if _chain_hash(prev, body.encode("utf-8")) != tx_ref:
                return False
            prev = tx_ref
        return True

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _write(self, op, *args) -> AnchorReceipt:
        """Run *op* inside one SQLite transaction; caller holds ``self._lock``."""
        try:
            self._conn.execute("BEGIN IMMEDIATE")
            try:
                receipt = op(*args)
            except BaseException:
                self._conn.execute("ROLLBACK")
                raise
            self._conn.execute("COMMIT")
            return receipt
        except sqlite3.IntegrityError as exc:
            code = "ALREADY_ISSUED" if "anchor_entries.credential_id" in str(exc) else "UNAVAILABLE"
            raise AnchorError(f"anchor constraint violated: {exc}", code=code) from exc
        except sqlite3.Error as exc:
            logger.warning("Anchor ledger write failed: %s", exc)
            raise AnchorError(f"anchor ledger unavailable: {exc}", retryable=True) from exc

    def _require_writable(self, caller: str) -> None:
        if self.paused:
            raise AnchorError("anchor is paused", code="PAUSED")
        if not self.is_issuer(caller):
            raise AnchorError(f"{caller} is not an authorized issuer", code="UNAUTHORIZED")

    def _require_admin(self, caller: str) -> None:
        if caller != self._admin:
            raise AnchorError(f"{caller} is not the anchor admin", code="UNAUTHORIZED")

    def _issue(self, request: AnchorIssueRequest, caller: str) -> AnchorReceipt:
        self._require_writable(caller)
        if caller != request.issuer_id:
            raise AnchorError("caller cannot issue on behalf of another issuer", code="UNAUTHORIZED")
        exists = self._conn.execute(
            "SELECT 1 FROM anchor_entries WHERE credential_id = ?", (request.credential_id,)
        ).fetchone()
        if exists:
            raise AnchorError(f"credential {request.credential_id} already issued", code="ALREADY_ISSUED")

        issued_at = _now().isoformat()
        tx_ref = self._append_event("ISSUED", {
            "credential_id": request.credential_id,
            "content_hash": request.content_hash,
            "commitment_root": request.commitment_root,
            "issuer_id": request.issuer_id,
            "holder_id": request.holder_id,
            "expiry": request.expiry,
            "at": issued_at,
        })
        self._conn.execute(
            f"INSERT INTO anchor_entries ({_ENTRY_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, 0, NULL, ?, NULL, ?)",
            (
                request.credential_id,
                request.content_hash,
                request.commitment_root,
                request.content_pointer,
                request.issuer_id,
                request.holder_id,
                request.expiry,
                request.schema_name,
                issued_at,
                tx_ref,
            ),
        )
        logger.info("Anchored credential %s (tx %s)", request.credential_id, tx_ref[:12])
        return AnchorReceipt(credential_id=request.credential_id, tx_ref=tx_ref)

    def _revoke(self, credential_id: str, reason: str, caller: str) -> AnchorReceipt:
        if self.paused:
            raise AnchorError("anchor is paused", code="PAUSED")
        row = self._conn.execute(
            "SELECT issuer_id, revoked FROM anchor_entries WHERE credential_id = ?", (credential_id,)
        ).fetchone()
        if row is None:
            raise AnchorError(f"credential {credential_id} not found", code="NOT_FOUND")
        issuer_id, revoked = row
        if caller != issuer_id:
            raise AnchorError("only the original issuer can revoke", code="UNAUTHORIZED")
        if revoked:
            raise AnchorError(f"credential {credential_id} already revoked", code="ALREADY_REVOKED")

        revoked_at = _now().isoformat()
        self._conn.execute(
            "UPDATE anchor_entries SET revoked = 1, revoked_reason = ?, revoked_at = ? WHERE credential_id = ?",
            (reason, revoked_at, credential_id),
        )
        tx_ref = self._append_event("REVOKED", {
            "credential_id": credential_id,
            "reason": reason,
            "caller": caller,
            "at": revoked_at,
        })
        logger.info("Revoked credential %s on anchor", credential_id)
        return AnchorReceipt(credential_id=credential_id, tx_ref=tx_ref)

    def _set_issuer(self, identity: str, allowed: bool, caller: str) -> AnchorReceipt:
        self._require_admin(caller)
        at = _now().isoformat()
        if allowed:
            self._conn.execute(
                "INSERT OR IGNORE INTO anchor_issuers (identity, added_at) VALUES (?, ?)", (identity, at)
            )
        else:
            self._conn.execute("DELETE FROM anchor_issuers WHERE identity = ?", (identity,))
        kind = "ISSUER_ADDED" if allowed else "ISSUER_REMOVED"
        tx_ref = self._append_event(kind, {"identity": identity, "caller": caller, "at": at})
        return AnchorReceipt(credential_id="", tx_ref=tx_ref)

    def _set_paused(self, paused: bool, caller: str) -> AnchorReceipt:
        self._require_admin(caller)
        self._conn.execute(
            "INSERT INTO anchor_flags (name, value) VALUES ('paused', ?) "
            "ON CONFLICT(name) DO UPDATE SET value = excluded.value",
            (1 if paused else 0,),
        )
        kind = "PAUSED" if paused else "UNPAUSED"
        tx_ref = self._append_event(kind, {"caller": caller, "at": _now().isoformat()})
        return AnchorReceipt(credential_id="", tx_ref=tx_ref)

    def _append_event(self, kind: str, event: dict) -> str:
        row = self._conn.execute("SELECT tx_ref FROM anchor_events ORDER BY seq DESC LIMIT 1").fetchone()
        prev = row[0] if row else EMPTY_ROOT
        body = canonicalize({"kind": kind, **event})
        tx_ref = _chain_hash(prev, body)
        self._conn.execute(
            "INSERT INTO anchor_events (tx_ref, prev_ref, kind, body, created_at) VALUES (?, ?, ?, ?, ?)",
            (tx_ref, prev, kind, body.decode("utf-8"), _now().isoformat()),
        )
        return tx_ref

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> LedgerAnchor:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


def _chain_hash(prev: str, body: bytes) -> str:
    return hashlib.sha256(bytes.fromhex(prev) + body).hexdigest()


def _failed(credential_id: str, exc: AnchorError) -> AnchorReceipt:
    logger.warning("Anchor reverted %s: %s", credential_id, exc.code)
    return AnchorReceipt(credential_id=credential_id, status="FAILED", error=exc.code)

