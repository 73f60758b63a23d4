"""Utilities for key management and symmetric encryption."""

from __future__ import annotations

import os
import secrets
from pathlib import Path

from cryptography.fernet import Fernet


def _write_secure_file(path: Path, data: bytes, *, mode: int = 0o600) -> None:
    """Write ``data`` to ``path`` and restrict permissions.

    Args:
        path: Target file path
        data: Bytes to persist
        mode: File mode to apply (POSIX style)
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
    try:
        os.write(fd, data)
    finally:
        os.close(fd)

    try:
        os.chmod(path, mode)
    except PermissionError:
        # Windows may not support POSIX-style chmod; best effort only.
        pass


def load_or_create_fernet_key(path: Path) -> bytes:
    """Load an existing Fernet key from ``path`` or create a new one.

    Returns:
        Base64-encoded Fernet key bytes.
    """
    try:
        return path.read_bytes()
    except FileNotFoundError:
        key = Fernet.generate_key()
        _write_secure_file(path, key)
        return key


def load_or_create_hmac_key(path: Path, *, length: int = 32) -> bytes:
    """Load an existing HMAC key or generate a new random key.

    Args:
        path: Key file location
        length: Number of random bytes to generate

    Returns:
        Raw key bytes suitable for HMAC operations.
    """
    try:
        return path.read_bytes()
    except FileNotFoundError:
        key = secrets.token_bytes(length)
        _write_secure_file(path, key)
        return key


def load_key_file(path: Path) -> bytes:
    """Load key bytes that must already exist (never auto-created).

    Raises:
        FileNotFoundError: If the key file is absent
        ValueError: If the key file is empty
    """
    data = path.read_bytes().strip()
    if not data:
        raise ValueError(f"Key file is empty: {path}")
    return data


def generate_ephemeral_key(length: int = 32) -> bytes:
    """Generate a random key that lives only as long as the process."""
    return secrets.token_bytes(length)


def encrypt_blob(data: bytes, *, key: bytes) -> bytes:
    """Encrypt ``data`` using Fernet symmetric encryption."""
    fernet = Fernet(key)
    return fernet.encrypt(data)


def decrypt_blob(token: bytes, *, key: bytes, ttl: int | None = None) -> bytes:
    """Decrypt a token produced by :func:`encrypt_blob`.

    When ``ttl`` is given, tokens older than ``ttl`` seconds are rejected.
    """
    fernet = Fernet(key)
    return fernet.decrypt(token, ttl=ttl)
