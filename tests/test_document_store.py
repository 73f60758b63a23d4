"""Tests for the file-system document store adapter."""

import threading
from datetime import UTC, datetime, timedelta

import pytest

from tracevault.app.adapters import FileSystemDocumentStore, StoreTimestamp
from tracevault.app.ports import FieldFilter, OrderBy
from tracevault.errors import DocumentExistsError, StorageError


def test_get_missing_returns_none(document_store: FileSystemDocumentStore):
    assert document_store.get("things", "nope") is None


def test_set_and_merge(document_store: FileSystemDocumentStore):
    document_store.set("things", "a", {"x": 1, "y": 2})
    document_store.set("things", "a", {"y": 3, "z": 4}, merge=True)
    assert document_store.get("things", "a") == {"x": 1, "y": 3, "z": 4}

    document_store.set("things", "a", {"only": True})
    assert document_store.get("things", "a") == {"only": True}


def test_create_refuses_existing(document_store: FileSystemDocumentStore):
    document_store.create("things", "a", {"v": 1})
    with pytest.raises(DocumentExistsError, match="things/a"):
        document_store.create("things", "a", {"v": 2})
    assert document_store.get("things", "a") == {"v": 1}


def test_datetimes_come_back_as_store_timestamps(document_store: FileSystemDocumentStore):
    moment = datetime(2025, 1, 15, 12, 0, 0, 5000, tzinfo=UTC)
    document_store.set("things", "a", {"at": moment, "nested": {"at": moment}})

    data = document_store.get("things", "a")
    assert isinstance(data["at"], StoreTimestamp)
    assert data["at"].to_datetime() == moment
    assert isinstance(data["nested"]["at"], StoreTimestamp)


def test_subcollections_nest_under_parent(document_store: FileSystemDocumentStore):
    document_store.set("traceability", "TC-1", {"pointer": True})
    document_store.create("traceability/TC-1/history", "INV-1-TC-1", {"n": 1})

    assert document_store.get("traceability/TC-1/history", "INV-1-TC-1") == {"n": 1}
    assert [d.id for d in document_store.query("traceability")] == ["TC-1"]


@pytest.mark.parametrize(
    "collection,doc_id",
    [("things", ".."), ("../escape", "a"), ("things", "a/b"), ("things/a", "b"), ("things", "")],
)
def test_rejects_invalid_paths(document_store: FileSystemDocumentStore, collection, doc_id):
    with pytest.raises(ValueError):
        document_store.get(collection, doc_id)


def test_transaction_writes_replacement(document_store: FileSystemDocumentStore):
    document_store.set("counters", "c", {"n": 1})

    written = document_store.run_transaction("counters", "c", lambda cur: {"n": cur["n"] + 1})

    assert written == {"n": 2}
    assert document_store.get("counters", "c") == {"n": 2}


def test_transaction_abort_leaves_document(document_store: FileSystemDocumentStore):
    document_store.set("counters", "c", {"n": 1})

    def _fail(current):
        raise RuntimeError("abort")

    with pytest.raises(RuntimeError):
        document_store.run_transaction("counters", "c", _fail)
    assert document_store.get("counters", "c") == {"n": 1}
    assert document_store.run_transaction("counters", "c", lambda cur: None) is None


def test_transactions_serialize_concurrent_writers(document_store: FileSystemDocumentStore):
    document_store.set("counters", "c", {"n": 0})

    def _increment() -> None:
        for _ in range(10):
            document_store.run_transaction("counters", "c", lambda cur: {"n": cur["n"] + 1})

    threads = [threading.Thread(target=_increment) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert document_store.get("counters", "c") == {"n": 40}


def test_concurrent_create_only_one_wins(document_store: FileSystemDocumentStore):
    outcomes: list[str] = []
    lock = threading.Lock()

    def _create(value: int) -> None:
        try:
            document_store.create("things", "once", {"v": value})
            result = "created"
        except DocumentExistsError:
            result = "exists"
        with lock:
            outcomes.append(result)

    threads = [threading.Thread(target=_create, args=(i,)) for i in range(6)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert outcomes.count("created") == 1
    assert outcomes.count("exists") == 5


def test_lock_timeout_raises_storage_error(temp_dir):
    store = FileSystemDocumentStore(temp_dir / "docs", lock_timeout=0.05)
    store.set("things", "a", {"v": 1})

    def _nested(current):
        store.run_transaction("things", "a", lambda cur: cur)
        return current

    with pytest.raises(StorageError, match="Timed out"):
        store.run_transaction("things", "a", _nested)


def test_query_filters_orders_and_limits(document_store: FileSystemDocumentStore):
    base = datetime(2025, 1, 1, tzinfo=UTC)
    for index in range(5):
        document_store.set(
            "events",
            f"e{index}",
            {"kind": "even" if index % 2 == 0 else "odd", "at": base + timedelta(days=index)},
        )

    newest = document_store.query("events", order_by=[OrderBy("at", "desc")], limit=2)
    assert [d.id for d in newest] == ["e4", "e3"]

    evens = document_store.query(
        "events", filters=[FieldFilter("kind", "==", "even")], order_by=[OrderBy("at")]
    )
    assert [d.id for d in evens] == ["e0", "e2", "e4"]

    ranged = document_store.query(
        "events",
        filters=[
            FieldFilter("at", ">=", base + timedelta(days=1)),
            FieldFilter("at", "<=", "2025-01-03T00:00:00Z"),
        ],
        order_by=[OrderBy("at")],
    )
    assert [d.id for d in ranged] == ["e1", "e2"]


def test_query_orders_by_secondary_key(document_store: FileSystemDocumentStore):
    moment = datetime(2025, 1, 1, tzinfo=UTC)
    document_store.set("events", "x", {"at": moment, "tie": "b"})
    document_store.set("events", "y", {"at": moment, "tie": "a"})
    document_store.set("events", "z", {"at": moment, "tie": "c"})

    ordered = document_store.query(
        "events", order_by=[OrderBy("at", "desc"), OrderBy("tie", "desc")]
    )
    assert [d.id for d in ordered] == ["z", "x", "y"]


def test_query_cursor_pagination(document_store: FileSystemDocumentStore):
    for index in range(5):
        document_store.set("events", f"e{index}", {"n": index})

    order = [OrderBy("n")]
    first = document_store.query("events", order_by=order, limit=2)
    second = document_store.query("events", order_by=order, limit=2, start_after=first[-1].id)
    third = document_store.query("events", order_by=order, limit=2, start_after=second[-1].id)

    assert [d.id for d in first + second + third] == ["e0", "e1", "e2", "e3", "e4"]

    with pytest.raises(StorageError, match="Unknown cursor"):
        document_store.query("events", order_by=order, start_after="missing")


def test_query_missing_collection_is_empty(document_store: FileSystemDocumentStore):
    assert document_store.query("nothing-here") == []


def test_corrupt_document_raises_storage_error(document_store: FileSystemDocumentStore, temp_dir):
    document_store.set("things", "a", {"v": 1})
    (temp_dir / "documents" / "things" / "a.json").write_text("{broken", encoding="utf-8")

    with pytest.raises(StorageError, match="Corrupt document"):
        document_store.get("things", "a")
