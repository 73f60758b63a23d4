"""Blob store port interface for immutable artifact storage."""

from __future__ import annotations

from typing import Protocol

from pydantic import BaseModel, Field


class BlobInfo(BaseModel):
    """Object attributes reported by :meth:`BlobStorePort.stat`."""

    path: str = Field(..., description="Object path within the store")
    content_type: str = Field(..., description="MIME type recorded at write time")
    size: int = Field(..., ge=0, description="Object size in bytes")
    metadata: dict[str, str] = Field(default_factory=dict, description="Custom metadata")
    updated_at: str = Field(..., description="ISO-8601 time of the last write")


class BlobStorePort(Protocol):
    """Port interface for object storage with signed retrieval URLs.

    Side effects: Reads/writes objects.
    """

    def write(
        self,
        path: str,
        data: bytes,
        *,
        content_type: str,
        metadata: dict[str, str] | None = None,
    ) -> None:
        """Write (or overwrite) an object and its custom metadata."""
        ...

    def read(self, path: str) -> bytes:
        """Read object bytes, raising StorageError if missing."""
        ...

    def stat(self, path: str) -> BlobInfo:
        """Return object attributes, raising StorageError if missing."""
        ...

    def signed_url(self, path: str, *, expires_in: int) -> str:
        """Return a retrieval URL valid for ``expires_in`` seconds."""
        ...

    def verify_signed_url(self, url: str, *, now: float | None = None) -> str:
        """Validate a signed URL and return the object path it grants."""
        ...

    def list(self, prefix: str = "") -> list[str]:
        """List object paths starting with ``prefix`` in lexical order."""
        ...
