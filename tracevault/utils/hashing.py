"""Hashing utilities for content hashes, artifact checksums, and keyed stamps."""

import hashlib
import hmac


def compute_sha256(content: bytes) -> str:
    """Compute SHA-256 hash of content.

    Args:
        content: Bytes to hash

    Returns:
        Hexadecimal hash string
    """
    return hashlib.sha256(content).hexdigest()


def compute_sha256_text(text: str) -> str:
    """Compute SHA-256 hash of a string encoded as UTF-8."""
    return compute_sha256(text.encode("utf-8"))


def compute_hmac_sha256(key: bytes, message: str) -> str:
    """Return the hex HMAC-SHA256 of ``message`` under ``key``."""
    return hmac.new(key, message.encode("utf-8"), hashlib.sha256).hexdigest()


def digests_match(expected: str, actual: str | None) -> bool:
    """Constant-time comparison of two hex digests."""
    if not isinstance(actual, str):
        return False
    return hmac.compare_digest(expected, actual)
