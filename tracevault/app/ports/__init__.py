"""Port interfaces for the TraceVault application layer.

These protocol interfaces define contracts for adapters.
Domain logic depends on these ports, never on concrete implementations.
"""

__all__ = [
    "BlobInfo",
    "BlobStorePort",
    "DocumentStorePort",
    "FieldFilter",
    "IdentityClaims",
    "IdentityPort",
    "MirrorPort",
    "OrderBy",
    "StoredDocument",
]

from tracevault.app.ports.blob_store import BlobInfo, BlobStorePort
from tracevault.app.ports.document_store import (
    DocumentStorePort,
    FieldFilter,
    OrderBy,
    StoredDocument,
)
from tracevault.app.ports.identity import IdentityClaims, IdentityPort
from tracevault.app.ports.mirror import MirrorPort
