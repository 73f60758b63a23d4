"""Snapshot capture, history listing and diffing for generated artifacts."""

from __future__ import annotations

import difflib
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel

from tracevault.app.access import AccessPolicy
from tracevault.errors import RecordNotFoundError, StorageError
from tracevault.traceability.history import HistoryEntry, HistoryLedger
from tracevault.traceability.snapshots import Snapshot, SnapshotStore, check_identifier
from tracevault.utils.hashing import compute_sha256, digests_match


class CaptureResult(BaseModel):
    """Snapshot written plus its history entry; both None when relaxed mode skipped a collision."""

    snapshot: Snapshot | None = None
    history: HistoryEntry | None = None


@dataclass(slots=True)
class TraceabilityService:
    """Coordinate the snapshot store and the history ledger."""

    snapshots: SnapshotStore
    history_ledger: HistoryLedger
    access: AccessPolicy

    def capture(
        self,
        scope_id: str,
        entity_id: str,
        payload: Any,
        expiry_seconds: int | None = None,
    ) -> CaptureResult:
        """Upload ``payload`` then append it to the entity's history.

        An existing entry for the pair is detected before any bytes are
        written, so its snapshot is never replaced.

        Raises:
            ValidationError: If an identifier is invalid
            HistoryCollisionError: In strict mode, if the pair was already captured
        """
        check_identifier("scope_id", scope_id)
        check_identifier("entity_id", entity_id)
        if not self.history_ledger.ensure_vacant(entity_id, scope_id):
            return CaptureResult()
        snapshot = self.snapshots.upload_snapshot(scope_id, entity_id, payload, expiry_seconds)
        entry = self.history_ledger.record_history(entity_id, scope_id, snapshot)
        return CaptureResult(snapshot=snapshot, history=entry)

    def history(
        self,
        token: str | None,
        entity_id: str,
        *,
        newest_first: bool = True,
        limit: int | None = None,
        start_after: str | None = None,
    ) -> list[HistoryEntry]:
        self.access.authorize(token)
        return self.history_ledger.list_history(
            entity_id, newest_first=newest_first, limit=limit, start_after=start_after
        )

    def _load_text(self, entity_id: str, entry_id: str) -> tuple[HistoryEntry, list[str]]:
        entry = self.history_ledger.get_entry(entity_id, entry_id)
        if entry is None:
            raise RecordNotFoundError(f"History entry not found: {entity_id}/{entry_id}")
        data = self.snapshots.fetch(entry.storage_path)
        if not digests_match(entry.checksum, compute_sha256(data)):
            raise StorageError(f"Checksum mismatch for snapshot {entry.storage_path}")
        text = data.decode("utf-8", errors="replace")
        return entry, text.splitlines(keepends=True)

    def diff(self, entity_id: str, left_id: str, right_id: str) -> str:
        """Unified diff between two history entries' snapshot contents.

        Raises:
            RecordNotFoundError: If either entry does not exist
            StorageError: If either snapshot fails checksum verification
        """
        left, left_lines = self._load_text(entity_id, left_id)
        right, right_lines = self._load_text(entity_id, right_id)
        return "".join(
            difflib.unified_diff(
                left_lines,
                right_lines,
                fromfile=f"{left.id} ({left.snapshot_at})",
                tofile=f"{right.id} ({right.snapshot_at})",
            )
        )
