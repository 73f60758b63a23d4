"""Tests for the snapshot store."""

import json
import time
from datetime import UTC, datetime

import pytest

from tracevault.app.adapters import FileSystemBlobStore
from tracevault.errors import AuthenticationError, StorageError, ValidationError
from tracevault.traceability.snapshots import (
    SnapshotStore,
    serialize_payload,
    snapshot_path,
)
from tracevault.utils.hashing import compute_sha256

TEST_CASE = {
    "title": "Verify audit trail on PHI access",
    "steps": ["Log in", "Open record", "Check audit entry"],
    "compliance": ["HIPAA 164.312(b)"],
}


@pytest.fixture
def snapshots(blob_store: FileSystemBlobStore, clock) -> SnapshotStore:
    return SnapshotStore(blob_store, clock=clock)


def test_snapshot_path_is_deterministic():
    assert snapshot_path("INV-1", "TC-1") == "scope/INV-1/entity/TC-1"


@pytest.mark.parametrize(
    "scope_id,entity_id",
    [("", "TC-1"), ("INV-1", ""), ("a/b", "TC-1"), ("INV 1", "TC-1"), ("INV-1", "..")],
)
def test_snapshot_path_rejects_bad_ids(scope_id, entity_id):
    with pytest.raises(ValidationError):
        snapshot_path(scope_id, entity_id)


def test_serialization_is_deterministic():
    left, content_type = serialize_payload({"b": 1, "a": {"d": 2, "c": 3}})
    right, _ = serialize_payload({"a": {"c": 3, "d": 2}, "b": 1})

    assert left == right
    assert content_type == "application/json"
    assert left.decode("utf-8") == json.dumps(
        {"a": {"c": 3, "d": 2}, "b": 1}, sort_keys=True, indent=2
    )


def test_serialization_plainifies_datetimes():
    data, _ = serialize_payload({"at": datetime(2025, 1, 15, tzinfo=UTC)})
    assert json.loads(data) == {"at": "2025-01-15T00:00:00.000Z"}


def test_serialization_keeps_seconds_mappings():
    data, _ = serialize_payload({"timeout": {"seconds": 30}})
    assert json.loads(data) == {"timeout": {"seconds": 30}}


def test_bytes_are_stored_raw():
    data, content_type = serialize_payload(b"%PDF-1.7 binary")
    assert data == b"%PDF-1.7 binary"
    assert content_type == "application/octet-stream"


def test_checksum_round_trip(snapshots: SnapshotStore, blob_store: FileSystemBlobStore):
    snapshot = snapshots.upload_snapshot("INV-1", "TC-1", TEST_CASE)

    serialized, _ = serialize_payload(TEST_CASE)
    assert snapshot.checksum == compute_sha256(serialized)
    assert compute_sha256(snapshots.fetch(snapshot.storage_path)) == snapshot.checksum
    assert blob_store.stat(snapshot.storage_path).metadata["sha256"] == snapshot.checksum
    assert snapshots.verify(snapshot.storage_path)


def test_snapshot_fields(snapshots: SnapshotStore, blob_store: FileSystemBlobStore):
    snapshot = snapshots.upload_snapshot("INV-1", "TC-1", TEST_CASE)

    assert snapshot.storage_path == "scope/INV-1/entity/TC-1"
    assert snapshot.created_at == "2025-01-15T12:00:00.000Z"
    assert snapshot.content_type == "application/json"
    assert snapshot.size == len(snapshots.fetch(snapshot.storage_path))
    assert blob_store.verify_signed_url(snapshot.retrieval_url) == snapshot.storage_path


def test_expiry_controls_url_lifetime(snapshots: SnapshotStore, blob_store: FileSystemBlobStore):
    short = snapshots.upload_snapshot("INV-1", "TC-1", TEST_CASE)
    archival = snapshots.upload_snapshot("INV-1", "TC-2", TEST_CASE, 60 * 60 * 24 * 30)

    two_hours = time.time() + 7200
    with pytest.raises(AuthenticationError, match="expired"):
        blob_store.verify_signed_url(short.retrieval_url, now=two_hours)
    assert blob_store.verify_signed_url(archival.retrieval_url, now=two_hours)

    with pytest.raises(ValidationError):
        snapshots.upload_snapshot("INV-1", "TC-3", TEST_CASE, 0)


def test_verify_detects_modified_bytes(
    snapshots: SnapshotStore, blob_store: FileSystemBlobStore, temp_dir
):
    snapshot = snapshots.upload_snapshot("INV-1", "TC-1", TEST_CASE)
    object_path = temp_dir / "blobs" / "objects" / "scope" / "INV-1" / "entity" / "TC-1"
    object_path.write_bytes(b'{"title": "edited"}')

    assert not snapshots.verify(snapshot.storage_path)


def test_verify_without_checksum_metadata(snapshots: SnapshotStore, blob_store: FileSystemBlobStore):
    blob_store.write("scope/X/entity/Y", b"{}", content_type="application/json")
    assert not snapshots.verify("scope/X/entity/Y")


def test_fetch_missing_raises(snapshots: SnapshotStore):
    with pytest.raises(StorageError):
        snapshots.fetch("scope/none/entity/none")


def test_list_scope_and_manifest(snapshots: SnapshotStore):
    first = snapshots.upload_snapshot("INV-1", "TC-1", TEST_CASE)
    second = snapshots.upload_snapshot("INV-1", "TC-2", {"title": "Second"})
    snapshots.upload_snapshot("INV-2", "TC-1", TEST_CASE)

    assert snapshots.list_scope("INV-1") == [first.storage_path, second.storage_path]

    path = snapshots.upload_manifest("INV-1", [first, second])
    manifest = json.loads(snapshots.fetch(path))

    assert path == "scope/INV-1/manifest"
    assert manifest["scope_id"] == "INV-1"
    assert manifest["entries"]["TC-2"] == {
        "storage_path": second.storage_path,
        "checksum": second.checksum,
    }
    assert snapshots.verify(path)
    # The manifest lives beside, not among, the entity snapshots.
    assert path not in snapshots.list_scope("INV-1")
