"""Document store port interface for ledger and history persistence."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Literal, Protocol

FilterOp = Literal["==", ">=", "<=", ">", "<"]
Direction = Literal["asc", "desc"]


@dataclass(frozen=True, slots=True)
class FieldFilter:
    """Single ``field op value`` predicate applied by :meth:`DocumentStorePort.query`."""

    field: str
    op: FilterOp
    value: Any


@dataclass(frozen=True, slots=True)
class OrderBy:
    """Sort key for ordered queries."""

    field: str
    direction: Direction = "asc"


@dataclass(slots=True)
class StoredDocument:
    """Document returned from the store together with its identifier."""

    id: str
    data: dict[str, Any] = field(default_factory=dict)


TransactionFn = Callable[[dict[str, Any] | None], dict[str, Any] | None]


class DocumentStorePort(Protocol):
    """Port interface for a durable document store.

    Collections are slash-separated paths; subcollections nest under a parent
    document (``traceability/TC-1/history``). Datetime values written to the
    store come back as a store-specific timestamp wrapper.

    Side effects: Reads/writes documents.
    """

    def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        """Return the document data or None if absent."""
        ...

    def set(self, collection: str, doc_id: str, data: dict[str, Any], *, merge: bool = False) -> None:
        """Upsert a document (shallow-merging into the existing one when ``merge``)."""
        ...

    def create(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        """Create a document, raising DocumentExistsError if it already exists."""
        ...

    def run_transaction(self, collection: str, doc_id: str, fn: TransactionFn) -> dict[str, Any] | None:
        """Atomically read a document, pass it to ``fn`` and write what ``fn`` returns.

        ``fn`` receives the current data (None when absent) and returns the
        replacement data, or None to leave the document untouched. Exceptions
        raised by ``fn`` abort the transaction and propagate.

        Returns:
            The data written, or None when nothing was written
        """
        ...

    def query(
        self,
        collection: str,
        *,
        filters: list[FieldFilter] | None = None,
        order_by: list[OrderBy] | None = None,
        limit: int | None = None,
        start_after: str | None = None,
    ) -> list[StoredDocument]:
        """Return documents matching ``filters`` sorted by ``order_by``.

        ``start_after`` is a document id; results resume after that document
        in the requested ordering.
        """
        ...
