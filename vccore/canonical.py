"""Canonical serialization for credential payloads.

Mapping keys are sorted by code point, sequences keep their order, and the
output is compact UTF-8 JSON.  Only JSON-native types are accepted so that
the same logical payload always yields the same bytes, whichever code path
built it.
"""

from __future__ import annotations

import hashlib
import json
import math
from typing import Any

from vccore.errors import CanonicalizationError


def _check(value: Any, path: str) -> None:
    if value is None or isinstance(value, (bool, str)):
        return
    if isinstance(value, int):
        return
    if isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            raise CanonicalizationError("non-finite number", path)
        return
    if isinstance(value, (list, tuple)):
        for i, item in enumerate(value):
            _check(item, f"{path}[{i}]")
        return
    if isinstance(value, dict):
        for key, item in value.items():
            if not isinstance(key, str):
                raise CanonicalizationError(f"mapping key {key!r} is not a string", path)
            _check(item, f"{path}.{key}")
        return
    raise CanonicalizationError(f"unsupported type {type(value).__name__}", path)


def canonicalize(value: Any) -> bytes:
    """Return the canonical byte encoding of *value*.

    Raises :class:`CanonicalizationError` if *value* contains anything other
    than null, booleans, numbers, strings, sequences and string-keyed
    mappings.
    """
    _check(value, "$")
    return json.dumps(
        value,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
    ).encode("utf-8")


def content_hash(value: Any) -> str:
    return hashlib.sha256(canonicalize(value)).hexdigest()
