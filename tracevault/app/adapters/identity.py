"""Fernet-token identity adapter."""

from __future__ import annotations

import json
import time
from typing import Any

from cryptography.fernet import InvalidToken

from tracevault.app.ports import IdentityClaims, IdentityPort
from tracevault.errors import AuthenticationError
from tracevault.utils.crypto import decrypt_blob, encrypt_blob


class FernetIdentityAdapter(IdentityPort):
    """Issue and verify identity tokens sealed with a Fernet key.

    Tokens carry ``sub``, ``email``, ``auth_time`` and custom claims. A token
    is rejected once it is older than ``ttl_seconds``.
    """

    def __init__(self, key: bytes, *, ttl_seconds: int = 3600) -> None:
        self._key = key
        self._ttl = ttl_seconds

    def issue_token(
        self,
        subject_id: str,
        email: str | None = None,
        claims: dict[str, Any] | None = None,
        *,
        auth_time: int | None = None,
    ) -> str:
        """Issue a token; ``auth_time`` defaults to now (a fresh sign-in)."""
        if not subject_id:
            raise ValueError("subject_id is required")
        payload = {
            "sub": subject_id,
            "email": email,
            "auth_time": int(time.time()) if auth_time is None else int(auth_time),
            "claims": dict(claims or {}),
        }
        token = encrypt_blob(json.dumps(payload, sort_keys=True).encode("utf-8"), key=self._key)
        return token.decode("ascii")

    def verify_token(self, token: str) -> IdentityClaims:
        if not token:
            raise AuthenticationError("Missing identity token")
        try:
            raw = decrypt_blob(token.encode("ascii"), key=self._key, ttl=self._ttl)
        except (InvalidToken, UnicodeEncodeError) as exc:
            raise AuthenticationError("Invalid or expired identity token") from exc

        try:
            payload = json.loads(raw)
            return IdentityClaims(
                subject_id=payload["sub"],
                email=payload.get("email"),
                claims=payload.get("claims") or {},
                auth_time=payload.get("auth_time"),
            )
        except (ValueError, KeyError, TypeError) as exc:
            raise AuthenticationError("Identity token payload is malformed") from exc
