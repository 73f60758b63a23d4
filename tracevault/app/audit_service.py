"""Audit ledger orchestration services."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from tracevault.app.access import AccessPolicy
from tracevault.audit.ledger import (
    AppendResult,
    AuditChainLedger,
    AuditQuery,
    AuditRecord,
    AuditRecordInput,
    AuditSignature,
    ChainVerification,
    SignatureMethod,
)
from tracevault.audit.signing import SignatureCeremony
from tracevault.errors import RecordNotFoundError, ValidationError

logger = logging.getLogger(__name__)


def _coerce_input(entry: AuditRecordInput | Mapping[str, Any]) -> AuditRecordInput:
    if isinstance(entry, AuditRecordInput):
        return entry
    try:
        return AuditRecordInput.model_validate(dict(entry))
    except PydanticValidationError as exc:
        raise ValidationError(f"Invalid audit record input: {exc}") from exc


def _coerce_query(filters: AuditQuery | Mapping[str, Any] | None, default_limit: int) -> AuditQuery:
    if isinstance(filters, AuditQuery):
        return filters
    data = dict(filters or {})
    data.setdefault("limit", default_limit)
    try:
        return AuditQuery.model_validate(data)
    except PydanticValidationError as exc:
        raise ValidationError(f"Invalid audit query: {exc}") from exc


@dataclass(slots=True)
class AuditService:
    """Expose access-gated append, query, verify and sign operations over the ledger."""

    ledger: AuditChainLedger
    ceremony: SignatureCeremony
    access: AccessPolicy
    verify_limit: int = 100
    query_limit: int = 100

    def log_action(
        self,
        token: str | None,
        entry: AuditRecordInput | Mapping[str, Any],
        *,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> AppendResult:
        """Append a record on behalf of the token's subject.

        Actor fields always come from the verified identity, never from ``entry``.
        """
        claims = self.access.authorize(token)
        record = _coerce_input(entry)
        session_id = claims.claims.get("session_id")
        record = record.model_copy(
            update={
                "actor_id": claims.subject_id,
                "actor_email": claims.email,
                "ip_address": ip_address if ip_address is not None else record.ip_address,
                "user_agent": user_agent if user_agent is not None else record.user_agent,
                "session_id": str(session_id) if session_id else record.session_id,
            }
        )
        return self.ledger.append(record)

    def record_safely(self, entry: AuditRecordInput | Mapping[str, Any]) -> AppendResult | None:
        """Append without letting audit failures break the calling operation."""
        try:
            return self.ledger.append(entry)
        except Exception as exc:  # audit writes are decoupled from the business operation
            logger.error("Audit write failed: %s", exc, exc_info=True)
            return None

    def query(
        self, token: str | None, filters: AuditQuery | Mapping[str, Any] | None = None
    ) -> list[AuditRecord]:
        self.access.authorize(token)
        return self.ledger.query(_coerce_query(filters, self.query_limit))

    def get(self, token: str | None, audit_id: str) -> AuditRecord:
        self.access.authorize(token)
        record = self.ledger.get(audit_id)
        if record is None:
            raise RecordNotFoundError(f"Audit record not found: {audit_id}")
        return record

    def verify(self, token: str | None, limit: int | None = None) -> ChainVerification:
        self.access.authorize(token)
        return self.ledger.verify_chain(limit or self.verify_limit)

    def sign(
        self,
        token: str | None,
        audit_id: str,
        *,
        reason: str | None = None,
        method: SignatureMethod = "password-reentry",
    ) -> AuditSignature:
        """Run the signature ceremony for the token's subject.

        Freshness is judged from the token's ``auth_time``; re-authenticate
        (obtain a new token) immediately before signing.
        """
        claims = self.access.authorize(token)
        return self.ceremony.sign(
            audit_id,
            claims.subject_id,
            claims.email or "unknown",
            auth_time=claims.auth_time,
            reason=reason,
            method=method,
        )

    def verify_signature(self, audit_id: str) -> bool:
        return self.ceremony.verify(audit_id)
