"""Append-only audit ledger with hash chaining for tamper evidence."""

from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Callable, Mapping
from datetime import datetime, timedelta
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from tracevault.app.ports import DocumentStorePort, FieldFilter, MirrorPort, OrderBy, StoredDocument
from tracevault.audit.canonical import hash_canonical
from tracevault.errors import AlreadySignedError, RecordNotFoundError, StorageError, ValidationError
from tracevault.utils.sanitize import plainify_document
from tracevault.utils.timestamps import (
    format_precise,
    format_timestamp,
    parse_timestamp,
    truncate_to_millis,
    utc_now,
)

logger = logging.getLogger(__name__)

AUDIT_COLLECTION = "audit_logs"

# Newest first; ts_iso breaks ties between records sharing a coarse timestamp.
NEWEST_FIRST = [OrderBy("timestamp", "desc"), OrderBy("ts_iso", "desc")]

SignatureMethod = Literal["password-reentry", "multi-factor", "delegated", "admin-override"]


class AuditRecordInput(BaseModel):
    """Action descriptor supplied by the surrounding application."""

    model_config = ConfigDict(extra="forbid")

    action_type: str = Field(..., min_length=1, description="Action tag, e.g. testcase.updated")
    entity_type: str = Field(..., min_length=1, description="Kind of the affected resource")
    entity_id: str | None = Field(default=None, description="Identifier of the affected resource")
    actor_id: str | None = Field(default=None, description="Acting subject (omitted for system actions)")
    actor_email: str | None = Field(default=None, description="Acting subject's email")
    old_values: dict[str, Any] | None = Field(default=None, description="Shallow state before")
    new_values: dict[str, Any] | None = Field(default=None, description="Shallow state after")
    ip_address: str | None = None
    user_agent: str | None = None
    session_id: str | None = None
    metadata: dict[str, Any] | None = Field(default=None, description="Additional context")


class AuditSignature(BaseModel):
    """Integrity stamp attached to a record by the signature ceremony."""

    signer_id: str
    signer_email: str
    signed_at: str = Field(..., description="ISO-8601 time of the signature event")
    reason: str | None = Field(default=None, description="Meaning of the signature")
    auth_time: int = Field(..., description="Epoch seconds of the signer's re-authentication")
    method: SignatureMethod = "password-reentry"
    record_hash: str = Field(..., description="Record hash at signing time")
    signature_value: str = Field(..., description="Keyed-hash output")
    algorithm: str = "HMAC-SHA256"
    version: int = Field(default=1, ge=1)


class AuditRecord(AuditRecordInput):
    """Persisted audit record.

    Records are immutable once written except for the single permitted
    ``signature`` attachment. ``hash`` covers every field other than
    ``hash`` and ``signature``; ``prev_hash`` links to the record written
    immediately before.
    """

    # Unknown stored fields stay on the model so they are hashed too.
    model_config = ConfigDict(extra="allow")

    id: str
    timestamp: str = Field(..., description="Server write time, millisecond ISO-8601")
    ts_iso: str = Field(..., description="Microsecond ISO-8601 tie-breaker")
    prev_hash: str | None = None
    chain_integrity: Literal["start", "ok"] = "start"
    hash: str | None = None
    signature: AuditSignature | None = None

    def hashable_content(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude={"hash", "signature"})

    def compute_hash(self) -> str:
        """Compute deterministic hash of record content.

        Returns:
            SHA-256 of the canonical form (excluding hash and signature fields)
        """
        return hash_canonical(self.hashable_content())

    def model_post_init(self, __context: Any) -> None:
        """Compute hash after initialization if not set."""
        if self.hash is None:
            self.hash = self.compute_hash()


class AppendResult(BaseModel):
    """Identifier and content hash of a freshly appended record."""

    id: str
    hash: str


class ChainVerification(BaseModel):
    """Outcome of walking the most recent records."""

    ok: bool
    count: int
    break_at: str | None = Field(default=None, description="Id of the first offending record")
    reason: str | None = None


class AuditQuery(BaseModel):
    """Filters accepted by :meth:`AuditChainLedger.query`."""

    model_config = ConfigDict(extra="forbid")

    entity_type: str | None = None
    entity_id: str | None = None
    action_type: str | None = None
    date_from: str | None = Field(default=None, description="Inclusive ISO-8601 lower bound")
    date_to: str | None = Field(default=None, description="Inclusive ISO-8601 upper bound")
    limit: int = Field(default=100, ge=1)


def diff_shallow(
    old: Mapping[str, Any] | None, new: Mapping[str, Any] | None
) -> dict[str, dict[str, Any]]:
    """Return ``{key: {"old", "new"}}`` for top-level keys whose values differ."""
    old = old or {}
    new = new or {}
    changed: dict[str, dict[str, Any]] = {}
    for key in sorted(set(old) | set(new)):
        before = old.get(key)
        after = new.get(key)
        if json.dumps(before, sort_keys=True, default=str) != json.dumps(
            after, sort_keys=True, default=str
        ):
            changed[key] = {"old": before, "new": after}
    return changed


class AuditChainLedger:
    """Hash-chained audit ledger over a shared document store.

    ``append`` reads the newest record and links to its hash in two separate
    store operations. Concurrent writers can therefore both chain onto the
    same predecessor; the ledger detects tampering but does not serialize
    writers. No in-process lock is held across the read-then-write window
    because it could not coordinate other processes anyway.
    """

    def __init__(
        self,
        store: DocumentStorePort,
        *,
        mirror: MirrorPort | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._mirror = mirror
        self._clock = clock
        self._last_precise: datetime | None = None

    # ---------------------------------------------------------------------#
    # Internal helpers
    # ---------------------------------------------------------------------#

    def _to_record(self, document: StoredDocument) -> AuditRecord:
        # Caller payloads are hashed exactly as written; only the ledger's own
        # timestamp field may arrive as a {seconds, nanoseconds} wrapper.
        data = plainify_document(document.data, timestamp_fields=("timestamp",)) or {}
        data["id"] = document.id
        try:
            return AuditRecord.model_validate(data)
        except PydanticValidationError as exc:
            raise StorageError(f"Corrupt audit record {document.id}: {exc}") from exc

    def _next_precise(self, now: datetime) -> datetime:
        """Return a strictly increasing high-precision time for ``ts_iso``.

        The coarse clock may not advance between rapid writes; bump by one
        microsecond so records from this writer stay totally ordered.
        """
        precise = now
        if self._last_precise is not None and precise <= self._last_precise:
            precise = self._last_precise + timedelta(microseconds=1)
        self._last_precise = precise
        return precise

    def _mirror_record(self, record: AuditRecord) -> None:
        if self._mirror is None:
            return
        row = {
            "event_id": record.id,
            "user_id": record.actor_id,
            "user_email": record.actor_email,
            "action_type": record.action_type,
            "resource_type": record.entity_type,
            "resource_id": record.entity_id,
            "before_value": record.old_values,
            "after_value": record.new_values,
            "ip_address": record.ip_address,
            "user_agent": record.user_agent,
            "session_id": record.session_id,
            "timestamp": record.ts_iso,
            "metadata": record.metadata,
            "hash": record.hash,
            "prev_hash": record.prev_hash,
        }
        try:
            self._mirror.insert(row)
        except Exception as exc:  # analytics sink only
            logger.warning("Audit mirror insert failed for %s: %s", record.id, exc, exc_info=True)

    # ---------------------------------------------------------------------#
    # Public API
    # ---------------------------------------------------------------------#

    def latest(self) -> AuditRecord | None:
        """Return the most recently written record, or None for an empty chain."""
        documents = self._store.query(AUDIT_COLLECTION, order_by=NEWEST_FIRST, limit=1)
        if not documents:
            return None
        return self._to_record(documents[0])

    def append(self, entry: AuditRecordInput | Mapping[str, Any]) -> AppendResult:
        """Append a record linked to the current chain head.

        Args:
            entry: Action descriptor (model or plain mapping)

        Returns:
            Id and content hash of the stored record

        Raises:
            ValidationError: If required fields are missing
            StorageError: If reading the chain head or writing the record fails
        """
        if not isinstance(entry, AuditRecordInput):
            try:
                entry = AuditRecordInput.model_validate(dict(entry))
            except PydanticValidationError as exc:
                raise ValidationError(f"Invalid audit record input: {exc}") from exc

        previous = self.latest()
        prev_hash = previous.hash if previous is not None else None

        now = self._clock()
        written_at = truncate_to_millis(now)
        precise = self._next_precise(now)

        record = AuditRecord(
            **entry.model_dump(),
            id=uuid.uuid4().hex,
            timestamp=format_timestamp(written_at),
            ts_iso=format_precise(precise),
            prev_hash=prev_hash,
            chain_integrity="ok" if prev_hash else "start",
        )

        document = record.model_dump(mode="json")
        # Stored as a native timestamp; reads plainify it back to the hashed string.
        document["timestamp"] = written_at
        self._store.create(AUDIT_COLLECTION, record.id, document)

        self._mirror_record(record)
        return AppendResult(id=record.id, hash=record.hash or "")

    def get(self, audit_id: str) -> AuditRecord | None:
        """Return a record by id, or None if it does not exist."""
        data = self._store.get(AUDIT_COLLECTION, audit_id)
        if data is None:
            return None
        return self._to_record(StoredDocument(id=audit_id, data=data))

    def recent(self, limit: int) -> list[AuditRecord]:
        """Return up to ``limit`` records, newest first."""
        documents = self._store.query(AUDIT_COLLECTION, order_by=NEWEST_FIRST, limit=limit)
        return [self._to_record(document) for document in documents]

    def verify_chain(self, limit: int = 100) -> ChainVerification:
        """Verify the most recent ``limit`` records.

        Records are walked newest to oldest. Each record's stored hash must
        match its recomputed content hash, and its ``prev_hash`` must equal
        the hash of the next older record in the window. The first failure
        is reported at the record under examination, i.e. the newer record
        of a broken link.

        Only the examined window is verified; pass the total record count to
        cover the whole ledger.
        """
        if limit < 1:
            raise ValidationError("verify_chain limit must be at least 1")

        records = self.recent(limit)
        count = len(records)

        for index, record in enumerate(records):
            expected_hash = record.compute_hash()
            if record.hash != expected_hash:
                return ChainVerification(
                    ok=False,
                    count=count,
                    break_at=record.id,
                    reason=f"Record {record.id} has invalid hash (expected '{expected_hash}', "
                    f"got '{record.hash}').",
                )

            if (record.prev_hash is None) != (record.chain_integrity == "start"):
                return ChainVerification(
                    ok=False,
                    count=count,
                    break_at=record.id,
                    reason=f"Record {record.id} chain_integrity '{record.chain_integrity}' "
                    "contradicts its prev_hash.",
                )

            if index + 1 < count:
                older = records[index + 1]
                if record.prev_hash != older.hash:
                    return ChainVerification(
                        ok=False,
                        count=count,
                        break_at=record.id,
                        reason=f"Record {record.id} breaks hash chain (expected "
                        f"prev_hash='{older.hash}', found '{record.prev_hash}').",
                    )

        return ChainVerification(ok=True, count=count)

    def query(self, filters: AuditQuery | None = None) -> list[AuditRecord]:
        """Return records matching ``filters``, newest first.

        Raises:
            ValidationError: If a date bound is not ISO-8601
        """
        filters = filters or AuditQuery()
        predicates: list[FieldFilter] = []
        if filters.entity_type:
            predicates.append(FieldFilter("entity_type", "==", filters.entity_type))
        if filters.entity_id:
            predicates.append(FieldFilter("entity_id", "==", filters.entity_id))
        if filters.action_type:
            predicates.append(FieldFilter("action_type", "==", filters.action_type))
        try:
            if filters.date_from:
                predicates.append(FieldFilter("timestamp", ">=", parse_timestamp(filters.date_from)))
            if filters.date_to:
                predicates.append(FieldFilter("timestamp", "<=", parse_timestamp(filters.date_to)))
        except ValueError as exc:
            raise ValidationError(f"Invalid date bound: {exc}") from exc

        documents = self._store.query(
            AUDIT_COLLECTION,
            filters=predicates,
            order_by=NEWEST_FIRST,
            limit=filters.limit,
        )
        return [self._to_record(document) for document in documents]

    def attach_signature(
        self, audit_id: str, build: Callable[[AuditRecord], AuditSignature]
    ) -> AuditSignature:
        """Atomically attach the signature produced by ``build`` to a record.

        ``build`` runs inside the store transaction after existence and
        not-yet-signed checks pass, so concurrent ceremonies cannot both sign.

        Raises:
            RecordNotFoundError: If the record does not exist
            AlreadySignedError: If the record already carries a signature
        """
        produced: list[AuditSignature] = []

        def _apply(current: dict[str, Any] | None) -> dict[str, Any]:
            if current is None:
                raise RecordNotFoundError(f"Audit record not found: {audit_id}")
            record = self._to_record(StoredDocument(id=audit_id, data=current))
            if record.signature is not None:
                raise AlreadySignedError(f"Audit record already signed: {audit_id}")
            signature = build(record)
            produced.append(signature)
            updated = dict(current)
            updated["signature"] = signature.model_dump(mode="json")
            return updated

        self._store.run_transaction(AUDIT_COLLECTION, audit_id, _apply)
        return produced[0]
