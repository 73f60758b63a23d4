"""Concrete adapters wiring application ports to built-in implementations."""

from __future__ import annotations

from .blob_store import FileSystemBlobStore
from .document_store import FileSystemDocumentStore, StoreTimestamp
from .identity import FernetIdentityAdapter
from .mirror import JsonlMirrorAdapter

__all__ = [
    "FernetIdentityAdapter",
    "FileSystemBlobStore",
    "FileSystemDocumentStore",
    "JsonlMirrorAdapter",
    "StoreTimestamp",
]
