"""Deterministic canonical form used as hash input."""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any

from tracevault.utils.hashing import compute_sha256_text
from tracevault.utils.sanitize import plainify

NULL_SENTINEL = "null"


def canonicalize(value: Any) -> str:
    """Serialize ``value`` into a byte-stable string.

    Mapping keys are sorted lexicographically, sequences keep their order,
    primitives use their JSON text and ``None`` becomes ``"null"``. Two
    logically equal records canonicalize identically regardless of in-memory
    key order.
    """
    if value is None:
        return NULL_SENTINEL
    if isinstance(value, Mapping):
        keys = sorted(str(key) for key in value)
        lookup = {str(key): item for key, item in value.items()}
        members = (
            f"{json.dumps(key, ensure_ascii=False)}:{canonicalize(lookup[key])}" for key in keys
        )
        return "{" + ",".join(members) + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(canonicalize(item) for item in value) + "]"
    if isinstance(value, (str, bool, int, float)):
        return json.dumps(value, ensure_ascii=False)

    plain = plainify(value)
    if isinstance(plain, str):
        return json.dumps(plain, ensure_ascii=False)
    return canonicalize(plain)


def hash_canonical(value: Any) -> str:
    """SHA-256 hex digest of ``canonicalize(value)``."""
    return compute_sha256_text(canonicalize(value))
