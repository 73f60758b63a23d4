"""Error hierarchy shared by the ledger, traceability store, and services."""

from __future__ import annotations


class TraceVaultError(Exception):
    """Base class for all TraceVault failures."""


class ValidationError(TraceVaultError):
    """Input is missing a required field or is malformed. Raised before any write."""


class AuthenticationError(TraceVaultError):
    """No identity token was presented, or it could not be verified."""


class StaleAuthenticationError(AuthenticationError):
    """The signer's authentication event is older than the freshness window."""


class AuthorizationError(TraceVaultError):
    """Verified identity lacks the role or allow-list entry required."""


class RecordNotFoundError(TraceVaultError):
    """Referenced audit record or history entry does not exist."""


class AlreadySignedError(TraceVaultError):
    """Audit record already carries a signature; re-signing is forbidden."""


class HistoryCollisionError(TraceVaultError):
    """A history entry already exists for the (scope, entity) pair."""

    def __init__(self, entity_id: str, scope_id: str) -> None:
        super().__init__(f"History entry already exists for {entity_id} / {scope_id}")
        self.entity_id = entity_id
        self.scope_id = scope_id


class StorageError(TraceVaultError):
    """Underlying document or blob storage I/O failed."""


class DocumentExistsError(StorageError):
    """Conditional create found an existing document."""

    def __init__(self, collection: str, doc_id: str) -> None:
        super().__init__(f"Document already exists: {collection}/{doc_id}")
        self.collection = collection
        self.doc_id = doc_id


__all__ = [
    "TraceVaultError",
    "ValidationError",
    "AuthenticationError",
    "StaleAuthenticationError",
    "AuthorizationError",
    "RecordNotFoundError",
    "AlreadySignedError",
    "HistoryCollisionError",
    "StorageError",
    "DocumentExistsError",
]
