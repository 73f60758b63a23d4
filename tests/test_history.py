"""Tests for the collision-checked history ledger."""

import logging

import pytest

from tracevault.app.adapters import FileSystemBlobStore, FileSystemDocumentStore
from tracevault.errors import HistoryCollisionError, ValidationError
from tracevault.traceability.history import (
    TRACEABILITY_COLLECTION,
    HistoryLedger,
    history_entry_id,
)
from tracevault.traceability.snapshots import SnapshotStore


@pytest.fixture
def snapshots(blob_store: FileSystemBlobStore, clock) -> SnapshotStore:
    return SnapshotStore(blob_store, clock=clock)


@pytest.fixture
def strict_ledger(document_store: FileSystemDocumentStore, clock) -> HistoryLedger:
    return HistoryLedger(document_store, strict=True, clock=clock)


@pytest.fixture
def relaxed_ledger(document_store: FileSystemDocumentStore, clock) -> HistoryLedger:
    return HistoryLedger(document_store, strict=False, clock=clock)


def _record(ledger: HistoryLedger, snapshots: SnapshotStore, scope_id: str, entity_id: str = "TC1"):
    snapshot = snapshots.upload_snapshot(scope_id, entity_id, {"scope": scope_id})
    return ledger.record_history(entity_id, scope_id, snapshot)


def test_entry_id_is_derived_from_scope_and_entity():
    assert history_entry_id("INV1", "TC1") == "INV1-TC1"


def test_record_history_returns_entry(strict_ledger, snapshots):
    snapshot = snapshots.upload_snapshot("INV1", "TC1", {"title": "x"})

    entry = strict_ledger.record_history("TC1", "INV1", snapshot)

    assert entry.id == "INV1-TC1"
    assert entry.entity_id == "TC1"
    assert entry.recorded_by_scope == "INV1"
    assert entry.checksum == snapshot.checksum
    assert entry.storage_path == snapshot.storage_path
    assert entry.retrieval_url == snapshot.retrieval_url
    assert entry.snapshot_at == "2025-01-15T12:00:00.000Z"


def test_strict_collision_raises(strict_ledger, snapshots, caplog):
    _record(strict_ledger, snapshots, "INV1")

    with caplog.at_level(logging.ERROR, logger="tracevault.traceability.history"):
        with pytest.raises(HistoryCollisionError, match="TC1 / INV1"):
            _record(strict_ledger, snapshots, "INV1")

    assert len(strict_ledger.list_history("TC1")) == 1
    assert "already exists" in caplog.text


def test_relaxed_collision_skips_and_flags_scope(relaxed_ledger, snapshots):
    first = _record(relaxed_ledger, snapshots, "INV1")
    assert not relaxed_ledger.writes_skipped("INV1")

    second = _record(relaxed_ledger, snapshots, "INV1")

    assert second is None
    assert relaxed_ledger.writes_skipped("INV1")
    entries = relaxed_ledger.list_history("TC1")
    assert [e.id for e in entries] == [first.id]


def test_ensure_vacant_applies_collision_policy(strict_ledger, relaxed_ledger, snapshots):
    assert strict_ledger.ensure_vacant("TC1", "INV1")
    _record(strict_ledger, snapshots, "INV1")

    with pytest.raises(HistoryCollisionError):
        strict_ledger.ensure_vacant("TC1", "INV1")
    assert not relaxed_ledger.ensure_vacant("TC1", "INV1")
    assert relaxed_ledger.writes_skipped("INV1")


def test_collision_never_overwrites(strict_ledger, snapshots, document_store):
    original = _record(strict_ledger, snapshots, "INV1")
    other = snapshots.upload_snapshot("INV1", "TC1", {"different": True})

    with pytest.raises(HistoryCollisionError):
        strict_ledger.record_history("TC1", "INV1", other)

    assert strict_ledger.get_entry("TC1", original.id).checksum == original.checksum


def test_list_history_orders_and_paginates(strict_ledger, snapshots, clock):
    for scope in ("INV1", "INV2", "INV3", "INV4"):
        _record(strict_ledger, snapshots, scope)
        clock.advance(minutes=1)

    newest = strict_ledger.list_history("TC1")
    assert [e.recorded_by_scope for e in newest] == ["INV4", "INV3", "INV2", "INV1"]

    oldest = strict_ledger.list_history("TC1", newest_first=False)
    assert [e.recorded_by_scope for e in oldest] == ["INV1", "INV2", "INV3", "INV4"]

    page_one = strict_ledger.list_history("TC1", limit=2)
    page_two = strict_ledger.list_history("TC1", limit=2, start_after=page_one[-1].id)
    assert [e.id for e in page_one + page_two] == [e.id for e in newest]


def test_history_is_per_entity(strict_ledger, snapshots):
    _record(strict_ledger, snapshots, "INV1", "TC1")
    _record(strict_ledger, snapshots, "INV1", "TC2")

    assert [e.entity_id for e in strict_ledger.list_history("TC1")] == ["TC1"]
    assert [e.entity_id for e in strict_ledger.list_history("TC2")] == ["TC2"]
    assert strict_ledger.list_history("TC-unknown") == []


def test_latest_pointer(strict_ledger, snapshots, clock, document_store):
    assert strict_ledger.latest("TC1") is None

    _record(strict_ledger, snapshots, "INV1")
    clock.advance(minutes=1)
    second = _record(strict_ledger, snapshots, "INV2")

    pointer = document_store.get(TRACEABILITY_COLLECTION, "TC1")
    assert pointer["last_snapshot"]["entry_id"] == second.id
    assert strict_ledger.latest("TC1").id == second.id


def test_latest_falls_back_when_pointer_lost(strict_ledger, snapshots, clock, document_store):
    _record(strict_ledger, snapshots, "INV1")
    clock.advance(minutes=1)
    second = _record(strict_ledger, snapshots, "INV2")

    document_store.set(TRACEABILITY_COLLECTION, "TC1", {"last_snapshot": {"entry_id": "gone"}})
    assert strict_ledger.latest("TC1").id == second.id

    document_store.set(TRACEABILITY_COLLECTION, "TC1", {})
    assert strict_ledger.latest("TC1").id == second.id


def test_pointer_failure_is_best_effort(snapshots, document_store, clock, caplog):
    class PointerlessStore(type(document_store)):
        def set(self, collection, doc_id, data, *, merge=False):
            if collection == TRACEABILITY_COLLECTION:
                raise OSError("pointer write refused")
            super().set(collection, doc_id, data, merge=merge)

    store = PointerlessStore(document_store._root)
    ledger = HistoryLedger(store, clock=clock)

    with caplog.at_level(logging.WARNING, logger="tracevault.traceability.history"):
        entry = _record(ledger, snapshots, "INV1")

    assert entry is not None
    assert [e.id for e in ledger.list_history("TC1")] == [entry.id]
    assert "latest pointer" in caplog.text


@pytest.mark.parametrize(
    "entity_id,scope_id", [("", "INV1"), ("TC1", "a/b"), ("..", "INV1"), ("TC1", "INV 1")]
)
def test_invalid_identifiers(strict_ledger, snapshots, entity_id, scope_id):
    snapshot = snapshots.upload_snapshot("INV1", "TC1", {})
    with pytest.raises(ValidationError):
        strict_ledger.record_history(entity_id, scope_id, snapshot)
