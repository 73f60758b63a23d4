"""File-system backed document store port implementation."""

from __future__ import annotations

import hashlib
import json
import os
import re
import time
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Iterator

from tracevault.app.ports import DocumentStorePort, FieldFilter, OrderBy, StoredDocument
from tracevault.app.ports.document_store import TransactionFn
from tracevault.errors import DocumentExistsError, StorageError
from tracevault.utils.jsonl import atomic_write_json
from tracevault.utils.timestamps import from_epoch, parse_timestamp, to_epoch

_SEGMENT_RE = re.compile(r"^[A-Za-z0-9._:@+\-]+$")
_TIMESTAMP_KEY = "__timestamp__"


@dataclass(frozen=True, slots=True)
class StoreTimestamp:
    """Native timestamp value as returned by the document store."""

    seconds: int
    nanoseconds: int = 0

    @classmethod
    def from_datetime(cls, value: datetime) -> StoreTimestamp:
        seconds, nanoseconds = to_epoch(value)
        return cls(seconds=seconds, nanoseconds=nanoseconds)

    def to_datetime(self) -> datetime:
        return from_epoch(self.seconds, self.nanoseconds)


def _encode(value: Any) -> Any:
    if isinstance(value, StoreTimestamp):
        return {_TIMESTAMP_KEY: {"seconds": value.seconds, "nanoseconds": value.nanoseconds}}
    if isinstance(value, datetime):
        return _encode(StoreTimestamp.from_datetime(value))
    if isinstance(value, dict):
        return {str(key): _encode(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_encode(item) for item in value]
    return value


def _decode(value: Any) -> Any:
    if isinstance(value, dict):
        if set(value) == {_TIMESTAMP_KEY} and isinstance(value[_TIMESTAMP_KEY], dict):
            raw = value[_TIMESTAMP_KEY]
            return StoreTimestamp(int(raw.get("seconds", 0)), int(raw.get("nanoseconds", 0)))
        return {key: _decode(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_decode(item) for item in value]
    return value


def _comparable(value: Any) -> Any:
    """Normalise timestamps so stored values compare against datetimes and ISO strings."""
    if isinstance(value, StoreTimestamp):
        return value.to_datetime()
    return value


def _sort_key(doc: StoredDocument, name: str) -> tuple[bool, Any]:
    value = _comparable(doc.data.get(name))
    return (value is not None, value if value is not None else 0)


def _coerce_filter_value(stored: Any, wanted: Any) -> Any:
    if isinstance(stored, datetime) and isinstance(wanted, str):
        return parse_timestamp(wanted)
    if isinstance(wanted, StoreTimestamp):
        return wanted.to_datetime()
    return wanted


def _matches(data: dict[str, Any], flt: FieldFilter) -> bool:
    if flt.field not in data:
        return False
    stored = _comparable(data[flt.field])
    wanted = _coerce_filter_value(stored, flt.value)
    if flt.op == "==":
        return stored == wanted
    if stored is None or wanted is None:
        return False
    try:
        if flt.op == ">=":
            return stored >= wanted
        if flt.op == "<=":
            return stored <= wanted
        if flt.op == ">":
            return stored > wanted
        if flt.op == "<":
            return stored < wanted
    except TypeError:
        return False
    raise ValueError(f"Unsupported filter operator: {flt.op}")


class FileSystemDocumentStore(DocumentStorePort):
    """Adapter storing one JSON file per document beneath ``root``.

    ``<root>/<collection>/<doc_id>.json``; subcollections become nested
    directories next to their parent document file. Transactions hold an
    exclusive lock file so read-check-then-write is atomic across processes.
    """

    def __init__(self, root: Path, *, lock_timeout: float = 5.0) -> None:
        self._root = Path(root)
        self._root.mkdir(parents=True, exist_ok=True)
        self._lock_dir = self._root / ".locks"
        self._lock_timeout = lock_timeout

    # ------------------------------------------------------------------#
    # Path helpers
    # ------------------------------------------------------------------#

    def _collection_dir(self, collection: str) -> Path:
        segments = collection.split("/")
        if len(segments) % 2 == 0:
            raise ValueError(f"Collection path must name a collection, got '{collection}'")
        for segment in segments:
            self._check_segment(segment)
        return self._root.joinpath(*segments)

    def _doc_path(self, collection: str, doc_id: str) -> Path:
        self._check_segment(doc_id)
        return self._collection_dir(collection) / f"{doc_id}.json"

    @staticmethod
    def _check_segment(segment: str) -> None:
        if not segment or segment in {".", ".."} or not _SEGMENT_RE.match(segment):
            raise ValueError(f"Invalid document store path segment: '{segment}'")

    def _read(self, path: Path) -> dict[str, Any] | None:
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise StorageError(f"Failed to read document {path}: {exc}") from exc
        try:
            return _decode(json.loads(raw))
        except json.JSONDecodeError as exc:
            raise StorageError(f"Corrupt document {path}: {exc}") from exc

    def _write(self, path: Path, data: dict[str, Any]) -> None:
        try:
            atomic_write_json(path, _encode(data))
        except OSError as exc:
            raise StorageError(f"Failed to write document {path}: {exc}") from exc

    @contextmanager
    def _locked(self, collection: str, doc_id: str) -> Iterator[None]:
        digest = hashlib.sha256(f"{collection}/{doc_id}".encode("utf-8")).hexdigest()
        lock_path = self._lock_dir / f"{digest}.lock"
        self._lock_dir.mkdir(parents=True, exist_ok=True)

        deadline = time.monotonic() + self._lock_timeout
        while True:
            try:
                fd = os.open(lock_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
                break
            except FileExistsError:
                if time.monotonic() >= deadline:
                    raise StorageError(
                        f"Timed out waiting for transaction lock on {collection}/{doc_id}"
                    ) from None
                time.sleep(0.01)
            except OSError as exc:
                raise StorageError(f"Failed to acquire lock {lock_path}: {exc}") from exc

        try:
            os.close(fd)
            yield
        finally:
            try:
                os.unlink(lock_path)
            except FileNotFoundError:
                pass

    # ------------------------------------------------------------------#
    # Port API
    # ------------------------------------------------------------------#

    def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        return self._read(self._doc_path(collection, doc_id))

    def set(self, collection: str, doc_id: str, data: dict[str, Any], *, merge: bool = False) -> None:
        path = self._doc_path(collection, doc_id)
        if not merge:
            self._write(path, dict(data))
            return

        with self._locked(collection, doc_id):
            current = self._read(path) or {}
            current.update(data)
            self._write(path, current)

    def create(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        def _create(current: dict[str, Any] | None) -> dict[str, Any]:
            if current is not None:
                raise DocumentExistsError(collection, doc_id)
            return dict(data)

        self.run_transaction(collection, doc_id, _create)

    def run_transaction(self, collection: str, doc_id: str, fn: TransactionFn) -> dict[str, Any] | None:
        path = self._doc_path(collection, doc_id)
        with self._locked(collection, doc_id):
            current = self._read(path)
            replacement = fn(current)
            if replacement is None:
                return None
            self._write(path, replacement)
            return replacement

    def query(
        self,
        collection: str,
        *,
        filters: list[FieldFilter] | None = None,
        order_by: list[OrderBy] | None = None,
        limit: int | None = None,
        start_after: str | None = None,
    ) -> list[StoredDocument]:
        directory = self._collection_dir(collection)
        if not directory.is_dir():
            return []

        documents: list[StoredDocument] = []
        for path in sorted(directory.glob("*.json")):
            data = self._read(path)
            if data is None:
                continue
            if filters and not all(_matches(data, flt) for flt in filters):
                continue
            documents.append(StoredDocument(id=path.stem, data=data))

        for key in reversed(order_by or []):
            reverse = key.direction == "desc"
            try:
                documents.sort(key=lambda doc, name=key.field: _sort_key(doc, name), reverse=reverse)
            except TypeError as exc:
                raise StorageError(
                    f"Cannot order {collection} by '{key.field}': mixed value types"
                ) from exc

        if start_after is not None:
            ids = [doc.id for doc in documents]
            if start_after not in ids:
                raise StorageError(f"Unknown cursor '{start_after}' for {collection}")
            documents = documents[ids.index(start_after) + 1 :]

        if limit is not None:
            documents = documents[: max(0, limit)]
        return documents
