"""Per-entity, append-only history of artifact snapshots."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from tracevault.app.ports import DocumentStorePort, OrderBy, StoredDocument
from tracevault.errors import DocumentExistsError, HistoryCollisionError, StorageError
from tracevault.traceability.snapshots import Snapshot, check_identifier
from tracevault.utils.sanitize import plainify_document
from tracevault.utils.timestamps import utc_now

logger = logging.getLogger(__name__)

TRACEABILITY_COLLECTION = "traceability"
SCOPES_COLLECTION = "scopes"


class HistoryEntry(BaseModel):
    """One immutable point-in-time snapshot reference for an entity."""

    id: str = Field(..., description="Deterministic '{scope_id}-{entity_id}' identifier")
    entity_id: str
    storage_path: str
    retrieval_url: str
    checksum: str
    snapshot_at: str = Field(..., description="ISO-8601 time the entry was recorded")
    recorded_by_scope: str = Field(..., description="Scope that produced the snapshot")


def history_entry_id(scope_id: str, entity_id: str) -> str:
    """Composite id; unique per scope within an entity's history."""
    return f"{scope_id}-{entity_id}"


def _history_collection(entity_id: str) -> str:
    return f"{TRACEABILITY_COLLECTION}/{check_identifier('entity_id', entity_id)}/history"


class HistoryLedger:
    """Collision-checked history entries stored under ``traceability/{entity}/history``.

    In strict mode a second write for the same ``(scope, entity)`` pair raises
    :class:`HistoryCollisionError`. Relaxed mode skips the write instead and
    flags ``scopes/{scope_id}`` with ``history_writes_skipped``. Either way an
    existing entry is never overwritten.
    """

    def __init__(
        self,
        store: DocumentStorePort,
        *,
        strict: bool = True,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._strict = strict
        self._clock = clock

    @property
    def strict(self) -> bool:
        return self._strict

    def _to_entry(self, document: StoredDocument) -> HistoryEntry:
        data = plainify_document(document.data, timestamp_fields=("snapshot_at",)) or {}
        data["id"] = document.id
        try:
            return HistoryEntry.model_validate(data)
        except PydanticValidationError as exc:
            raise StorageError(f"Corrupt history entry {document.id}: {exc}") from exc

    def _flag_scope(self, scope_id: str) -> None:
        try:
            self._store.set(
                SCOPES_COLLECTION,
                scope_id,
                {"scope_id": scope_id, "history_writes_skipped": True},
                merge=True,
            )
        except Exception as exc:  # best effort; the skip itself is already logged
            logger.warning("Failed to flag scope %s: %s", scope_id, exc, exc_info=True)

    def _update_pointer(self, entry: HistoryEntry, snapshot_at: datetime) -> None:
        try:
            self._store.set(
                TRACEABILITY_COLLECTION,
                entry.entity_id,
                {
                    "entity_id": entry.entity_id,
                    "last_snapshot": {
                        "entry_id": entry.id,
                        "scope_id": entry.recorded_by_scope,
                        "storage_path": entry.storage_path,
                        "retrieval_url": entry.retrieval_url,
                        "checksum": entry.checksum,
                        "snapshot_at": snapshot_at,
                    },
                },
                merge=True,
            )
        except Exception as exc:  # cache only; list_history is authoritative
            logger.warning(
                "Failed to update latest pointer for %s: %s", entry.entity_id, exc, exc_info=True
            )

    def _collision(self, entity_id: str, scope_id: str) -> None:
        if self._strict:
            logger.error("History entry already exists for %s / %s", entity_id, scope_id)
            raise HistoryCollisionError(entity_id, scope_id)
        logger.warning("Skipping history write for %s / %s (relaxed mode)", entity_id, scope_id)
        self._flag_scope(scope_id)

    def ensure_vacant(self, entity_id: str, scope_id: str) -> bool:
        """Check that no entry exists yet for ``(scope_id, entity_id)``.

        Run before writing the snapshot bytes so a colliding capture never
        replaces the artifact behind an existing entry.

        Returns:
            True when the pair is free, False when relaxed mode skipped it

        Raises:
            HistoryCollisionError: In strict mode, if the entry already exists
        """
        check_identifier("scope_id", scope_id)
        if self.get_entry(entity_id, history_entry_id(scope_id, entity_id)) is None:
            return True
        self._collision(entity_id, scope_id)
        return False

    def record_history(self, entity_id: str, scope_id: str, snapshot: Snapshot) -> HistoryEntry | None:
        """Append a history entry for ``snapshot``.

        Returns:
            The new entry, or None when relaxed mode skipped a collision

        Raises:
            ValidationError: If an identifier is invalid
            HistoryCollisionError: In strict mode, if the entry already exists
            StorageError: If the store fails
        """
        collection = _history_collection(entity_id)
        check_identifier("scope_id", scope_id)
        entry_id = history_entry_id(scope_id, entity_id)

        snapshot_at = self._clock()
        document: dict[str, Any] = {
            "entity_id": entity_id,
            "storage_path": snapshot.storage_path,
            "retrieval_url": snapshot.retrieval_url,
            "checksum": snapshot.checksum,
            "snapshot_at": snapshot_at,
            "recorded_by_scope": scope_id,
        }

        try:
            self._store.create(collection, entry_id, document)
        except DocumentExistsError:
            self._collision(entity_id, scope_id)
            return None

        entry = self._to_entry(StoredDocument(id=entry_id, data=document))
        self._update_pointer(entry, snapshot_at)
        return entry

    def list_history(
        self,
        entity_id: str,
        *,
        newest_first: bool = True,
        limit: int | None = None,
        start_after: str | None = None,
    ) -> list[HistoryEntry]:
        """List an entity's history entries in chronological order.

        Pass the id of the last entry of one page as ``start_after`` to fetch
        the next page.
        """
        direction = "desc" if newest_first else "asc"
        documents = self._store.query(
            _history_collection(entity_id),
            order_by=[OrderBy("snapshot_at", direction), OrderBy("recorded_by_scope", direction)],
            limit=limit,
            start_after=start_after,
        )
        return [self._to_entry(document) for document in documents]

    def get_entry(self, entity_id: str, entry_id: str) -> HistoryEntry | None:
        data = self._store.get(_history_collection(entity_id), check_identifier("entry_id", entry_id))
        if data is None:
            return None
        return self._to_entry(StoredDocument(id=entry_id, data=data))

    def latest(self, entity_id: str) -> HistoryEntry | None:
        """Most recent entry, via the latest pointer when it resolves."""
        pointer = self._store.get(TRACEABILITY_COLLECTION, check_identifier("entity_id", entity_id))
        last = (pointer or {}).get("last_snapshot")
        if isinstance(last, dict) and last.get("entry_id"):
            entry = self.get_entry(entity_id, str(last["entry_id"]))
            if entry is not None:
                return entry
            logger.warning("Latest pointer for %s is stale; falling back to history", entity_id)

        entries = self.list_history(entity_id, limit=1)
        return entries[0] if entries else None

    def writes_skipped(self, scope_id: str) -> bool:
        """True when relaxed mode skipped at least one history write for ``scope_id``."""
        data = self._store.get(SCOPES_COLLECTION, check_identifier("scope_id", scope_id)) or {}
        return data.get("history_writes_skipped") is True
