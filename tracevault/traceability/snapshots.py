"""Immutable, checksummed snapshots of generated artifacts."""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable, Mapping
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from tracevault.app.ports import BlobStorePort
from tracevault.errors import ValidationError
from tracevault.utils.hashing import compute_sha256, digests_match
from tracevault.utils.sanitize import plainify
from tracevault.utils.timestamps import format_timestamp, utc_now

logger = logging.getLogger(__name__)

DEFAULT_EXPIRY_SECONDS = 3600
CHECKSUM_METADATA_KEY = "sha256"
JSON_CONTENT_TYPE = "application/json"
BINARY_CONTENT_TYPE = "application/octet-stream"

_IDENTIFIER_RE = re.compile(r"^[A-Za-z0-9._:@+\-]+$")


class Snapshot(BaseModel):
    """Reference to an uploaded artifact."""

    scope_id: str
    entity_id: str
    storage_path: str = Field(..., description="Deterministic object path")
    checksum: str = Field(..., description="SHA-256 of the stored bytes")
    retrieval_url: str = Field(..., description="Time-limited retrieval URL")
    created_at: str = Field(..., description="ISO-8601 write time")
    content_type: str = JSON_CONTENT_TYPE
    size: int = Field(default=0, ge=0)


class ScopeManifest(BaseModel):
    """Per-scope index of the snapshots a generation run produced."""

    scope_id: str
    generated_at: str
    entries: dict[str, dict[str, str]] = Field(
        default_factory=dict, description="entity id -> {storage_path, checksum}"
    )


def check_identifier(name: str, value: str) -> str:
    """Validate a scope, entity or entry id before it reaches any storage path."""
    if not value:
        raise ValidationError(f"{name} is required")
    if value in {".", ".."} or not _IDENTIFIER_RE.match(value):
        raise ValidationError(f"Invalid {name}: '{value}'")
    return value


def snapshot_path(scope_id: str, entity_id: str) -> str:
    """Deterministic storage path for ``(scope_id, entity_id)``."""
    check_identifier("scope_id", scope_id)
    check_identifier("entity_id", entity_id)
    return f"scope/{scope_id}/entity/{entity_id}"


def manifest_path(scope_id: str) -> str:
    check_identifier("scope_id", scope_id)
    return f"scope/{scope_id}/manifest"


def serialize_payload(payload: Any) -> tuple[bytes, str]:
    """Serialize ``payload`` deterministically.

    Bytes are stored raw. Everything else becomes sorted-key, 2-space
    indented UTF-8 JSON.

    Returns:
        Tuple of (serialized bytes, content type)
    """
    if isinstance(payload, (bytes, bytearray, memoryview)):
        return bytes(payload), BINARY_CONTENT_TYPE
    if isinstance(payload, BaseModel):
        payload = payload.model_dump(mode="json")
    plain = plainify(payload, mappings=False)
    text = json.dumps(plain, sort_keys=True, indent=2, ensure_ascii=False)
    return text.encode("utf-8"), JSON_CONTENT_TYPE


class SnapshotStore:
    """Write artifacts to the blob store under deterministic paths."""

    def __init__(
        self,
        blobs: BlobStorePort,
        *,
        default_expiry_seconds: int = DEFAULT_EXPIRY_SECONDS,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._blobs = blobs
        self._default_expiry = default_expiry_seconds
        self._clock = clock

    def upload_snapshot(
        self,
        scope_id: str,
        entity_id: str,
        payload: Any,
        expiry_seconds: int | None = None,
        *,
        content_type: str | None = None,
    ) -> Snapshot:
        """Serialize, checksum and store ``payload``; return its snapshot reference.

        Re-uploading to the same path overwrites the object. The history
        ledger is what prevents logical duplication.
        """
        path = snapshot_path(scope_id, entity_id)
        expiry = self._default_expiry if expiry_seconds is None else int(expiry_seconds)
        if expiry < 1:
            raise ValidationError("expiry_seconds must be positive")

        data, detected_type = serialize_payload(payload)
        checksum = compute_sha256(data)
        created_at = format_timestamp(self._clock())
        resolved_type = content_type or detected_type

        self._blobs.write(
            path,
            data,
            content_type=resolved_type,
            metadata={
                CHECKSUM_METADATA_KEY: checksum,
                "scope_id": scope_id,
                "entity_id": entity_id,
                "created_at": created_at,
            },
        )
        url = self._blobs.signed_url(path, expires_in=expiry)
        logger.debug("Stored snapshot %s (%d bytes, sha256=%s)", path, len(data), checksum)

        return Snapshot(
            scope_id=scope_id,
            entity_id=entity_id,
            storage_path=path,
            checksum=checksum,
            retrieval_url=url,
            created_at=created_at,
            content_type=resolved_type,
            size=len(data),
        )

    def fetch(self, storage_path: str) -> bytes:
        """Return the stored bytes at ``storage_path``."""
        return self._blobs.read(storage_path)

    def verify(self, storage_path: str) -> bool:
        """Re-hash stored bytes and compare against the recorded checksum."""
        info = self._blobs.stat(storage_path)
        recorded = info.metadata.get(CHECKSUM_METADATA_KEY)
        if not recorded:
            logger.warning("Snapshot %s has no recorded checksum", storage_path)
            return False
        return digests_match(recorded, compute_sha256(self._blobs.read(storage_path)))

    def list_scope(self, scope_id: str) -> list[str]:
        """List snapshot paths written under ``scope_id``."""
        prefix = f"scope/{check_identifier('scope_id', scope_id)}/entity/"
        return self._blobs.list(prefix)

    def upload_manifest(self, scope_id: str, snapshots: Mapping[str, Snapshot] | list[Snapshot]) -> str:
        """Write the scope's traceability manifest and return its path."""
        items = snapshots.values() if isinstance(snapshots, Mapping) else snapshots
        manifest = ScopeManifest(
            scope_id=scope_id,
            generated_at=format_timestamp(self._clock()),
            entries={
                snapshot.entity_id: {
                    "storage_path": snapshot.storage_path,
                    "checksum": snapshot.checksum,
                }
                for snapshot in items
            },
        )
        path = manifest_path(scope_id)
        data, content_type = serialize_payload(manifest)
        self._blobs.write(
            path,
            data,
            content_type=content_type,
            metadata={CHECKSUM_METADATA_KEY: compute_sha256(data), "scope_id": scope_id},
        )
        return path
