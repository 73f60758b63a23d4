"""Electronic signature ceremony for audit records.

A signature is an HMAC-SHA256 integrity stamp over
``record_hash|signer_id|signed_at|reason`` computed with a server-held secret.
It is not a legally binding asymmetric signature; anyone holding the secret
can produce or verify it.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from datetime import datetime

from tracevault.audit.ledger import AuditChainLedger, AuditRecord, AuditSignature, SignatureMethod
from tracevault.errors import RecordNotFoundError, StaleAuthenticationError, ValidationError
from tracevault.utils.hashing import compute_hmac_sha256, digests_match
from tracevault.utils.timestamps import format_timestamp, utc_now

logger = logging.getLogger(__name__)

SIGNATURE_ALGORITHM = "HMAC-SHA256"
SIGNATURE_VERSION = 1
DEFAULT_MAX_AUTH_AGE_SECONDS = 300


def is_recent_auth(
    auth_time: int | None,
    max_age_seconds: int = DEFAULT_MAX_AUTH_AGE_SECONDS,
    *,
    now: float | None = None,
) -> bool:
    """True when ``auth_time`` (epoch seconds) is within ``max_age_seconds`` of now.

    A missing authentication time is never fresh.
    """
    if not auth_time:
        return False
    current = int(time.time() if now is None else now)
    return current - int(auth_time) <= max_age_seconds


def signature_base_string(record_hash: str, signer_id: str, signed_at: str, reason: str | None) -> str:
    return f"{record_hash}|{signer_id}|{signed_at}|{reason or ''}"


class SignatureCeremony:
    """Attach at most one signature to an audit record.

    Preconditions are checked inside the store transaction in a fixed order so
    each failure is reported distinctly: record missing, already signed, then
    stale authentication.
    """

    def __init__(
        self,
        ledger: AuditChainLedger,
        key: bytes,
        *,
        max_auth_age_seconds: int = DEFAULT_MAX_AUTH_AGE_SECONDS,
        ephemeral_key: bool = False,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        if not key:
            raise ValueError("Signing key must not be empty")
        self._ledger = ledger
        self._key = key
        self._max_auth_age = max_auth_age_seconds
        self._ephemeral = ephemeral_key
        self._clock = clock

    @property
    def uses_ephemeral_key(self) -> bool:
        """Signatures made now cannot be verified after a process restart."""
        return self._ephemeral

    def _compute(self, record_hash: str, signer_id: str, signed_at: str, reason: str | None) -> str:
        return compute_hmac_sha256(
            self._key, signature_base_string(record_hash, signer_id, signed_at, reason)
        )

    def sign(
        self,
        audit_id: str,
        signer_id: str,
        signer_email: str,
        *,
        auth_time: int | None,
        reason: str | None = None,
        method: SignatureMethod = "password-reentry",
    ) -> AuditSignature:
        """Sign an existing, unsigned audit record.

        Raises:
            ValidationError: If signer identity is missing
            RecordNotFoundError: If the record does not exist
            AlreadySignedError: If the record already carries a signature
            StaleAuthenticationError: If ``auth_time`` is outside the freshness window
        """
        if not audit_id or not signer_id:
            raise ValidationError("audit_id and signer_id are required to sign")

        if self._ephemeral:
            logger.warning(
                "Signing %s with an ephemeral key; signature will not verify after restart",
                audit_id,
            )

        def _build(record: AuditRecord) -> AuditSignature:
            now = self._clock()
            if not is_recent_auth(auth_time, self._max_auth_age, now=now.timestamp()):
                raise StaleAuthenticationError(
                    "Stale or missing re-authentication (auth_time) for electronic signature"
                )
            record_hash = record.hash or ""
            signed_at = format_timestamp(now)
            return AuditSignature(
                signer_id=signer_id,
                signer_email=signer_email,
                signed_at=signed_at,
                reason=reason,
                auth_time=int(auth_time or 0),
                method=method,
                record_hash=record_hash,
                signature_value=self._compute(record_hash, signer_id, signed_at, reason),
                algorithm=SIGNATURE_ALGORITHM,
                version=SIGNATURE_VERSION,
            )

        signature = self._ledger.attach_signature(audit_id, _build)
        logger.info("Audit record %s signed by %s (%s)", audit_id, signer_id, method)
        return signature

    def verify(self, audit_id: str) -> bool:
        """Recompute a record's signature and compare in constant time.

        Returns False for unsigned records, for records whose content hash no
        longer matches the signed hash, and for signatures made with another key.

        Raises:
            RecordNotFoundError: If the record does not exist
        """
        record = self._ledger.get(audit_id)
        if record is None:
            raise RecordNotFoundError(f"Audit record not found: {audit_id}")
        signature = record.signature
        if signature is None:
            return False
        if signature.record_hash != record.hash or record.compute_hash() != record.hash:
            return False
        expected = self._compute(
            signature.record_hash, signature.signer_id, signature.signed_at, signature.reason
        )
        return digests_match(expected, signature.signature_value)
