"""Traceability store: checksummed artifact snapshots and per-entity history."""

from tracevault.traceability.history import HistoryEntry, HistoryLedger, history_entry_id
from tracevault.traceability.snapshots import (
    ScopeManifest,
    Snapshot,
    SnapshotStore,
    serialize_payload,
    snapshot_path,
)

__all__ = [
    "HistoryEntry",
    "HistoryLedger",
    "ScopeManifest",
    "Snapshot",
    "SnapshotStore",
    "history_entry_id",
    "serialize_payload",
    "snapshot_path",
]
