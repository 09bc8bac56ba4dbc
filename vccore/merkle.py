from __future__ import annotations

import hashlib
from collections.abc import Sequence

EMPTY_ROOT = "0" * 64

_LEAF_DOMAIN = b"\x00"
_NODE_DOMAIN = b"\x01"


def _hash_leaf(data: bytes) -> str:
    return hashlib.sha256(_LEAF_DOMAIN + data).hexdigest()


def _hash_node(left: str, right: str) -> str:
    return hashlib.sha256(
        _NODE_DOMAIN + bytes.fromhex(left) + bytes.fromhex(right)
    ).hexdigest()


def merkle_root(leaf_hashes: Sequence[str]) -> str:
    """Reduce already-hashed leaves pairwise, in the order given.

    Leaves are domain-separated (``0x00 || data``) and internal nodes use
    ``0x01 || left || right`` to prevent second-preimage attacks.  An odd
    node at the end of a level is paired with itself.
    """
    if not leaf_hashes:
        return EMPTY_ROOT

    level = list(leaf_hashes)
    while len(level) > 1:
        next_level: list[str] = []
        for i in range(0, len(level), 2):
            left = level[i]
            right = level[i + 1] if i + 1 < len(level) else left
            next_level.append(_hash_node(left, right))
        level = next_level
    return level[0]
