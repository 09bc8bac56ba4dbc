"""Hiding field commitments and their aggregation into a commitment root.

A commitment is ``SHA-256(0x02 || canonical([field_name, value]) || blinding)``.
Commitments are aggregated by sorting on field name and reducing pairwise
with :func:`vccore.merkle.merkle_root`, so issuance and verification derive
the same root regardless of how the field map was built.
"""

from __future__ import annotations

import hashlib
import secrets
from collections.abc import Iterable, Mapping
from typing import Any

from vccore.canonical import canonicalize
from vccore.merkle import _hash_leaf, merkle_root
from vccore.models import FieldCommitment

_COMMIT_DOMAIN = b"\x02"

BLINDING_BYTES = 32
MIN_BLINDING_BYTES = 16


def _blinding_bytes(blinding: str | bytes) -> bytes:
    raw = bytes.fromhex(blinding) if isinstance(blinding, str) else bytes(blinding)
    if len(raw) < MIN_BLINDING_BYTES:
        raise ValueError(f"blinding factor must be at least {MIN_BLINDING_BYTES} bytes")
    return raw


def commit(field_name: str, value: Any, blinding: str | bytes) -> str:
    """Return the hex commitment binding *field_name* and *value* under *blinding*."""
    data = canonicalize([field_name, value])
    return hashlib.sha256(_COMMIT_DOMAIN + data + _blinding_bytes(blinding)).hexdigest()


def leaf_hash(commitment: FieldCommitment) -> str:
    return _hash_leaf(canonicalize([commitment.field_name, commitment.commitment]))


def aggregate(commitments: Iterable[FieldCommitment]) -> str:
    ordered = sorted(commitments, key=lambda c: c.field_name)
    names = [c.field_name for c in ordered]
    if len(names) != len(set(names)):
        raise ValueError("duplicate field name in commitment set")
    return merkle_root([leaf_hash(c) for c in ordered])


class FieldCommitmentBuilder:
    """Generates blinding factors and commitments for one credential.

    A builder never hands out the same blinding factor twice; use a fresh
    builder per credential.
    """

    def __init__(self) -> None:
        self._issued: set[str] = set()

    def generate_blindings(self, field_names: Iterable[str]) -> dict[str, str]:
        blindings: dict[str, str] = {}
        for name in sorted(set(field_names)):
            while True:
                candidate = secrets.token_bytes(BLINDING_BYTES).hex()
                if candidate not in self._issued:
                    break
            self._issued.add(candidate)
            blindings[name] = candidate
        return blindings

    def build(
        self,
        values: Mapping[str, Any],
        blindings: Mapping[str, str],
    ) -> tuple[list[FieldCommitment], str]:
        """Commit to every field in *values* and return ``(commitments, root)``."""
        if set(values) != set(blindings):
            missing = sorted(set(values) ^ set(blindings))
            raise ValueError(f"values and blinding factors disagree on fields: {missing}")
        commitments = [
            FieldCommitment(field_name=name, commitment=commit(name, values[name], blindings[name]))
            for name in sorted(values)
        ]
        return commitments, aggregate(commitments)
