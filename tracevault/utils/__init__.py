"""Utility modules for common operations."""

from tracevault.utils.hashing import compute_sha256, compute_sha256_text
from tracevault.utils.jsonl import append_jsonl, atomic_write_bytes, atomic_write_json
from tracevault.utils.sanitize import plainify, plainify_document

__all__ = [
    "append_jsonl",
    "atomic_write_bytes",
    "atomic_write_json",
    "compute_sha256",
    "compute_sha256_text",
    "plainify",
    "plainify_document",
]
