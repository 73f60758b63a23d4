"""File-system backed blob store port implementation."""

from __future__ import annotations

import json
import time
from pathlib import Path
from urllib.parse import parse_qs, quote, unquote, urlencode, urlsplit

from tracevault.app.ports import BlobInfo, BlobStorePort
from tracevault.errors import AuthenticationError, StorageError
from tracevault.utils.hashing import compute_hmac_sha256, digests_match
from tracevault.utils.jsonl import atomic_write_bytes, atomic_write_json
from tracevault.utils.timestamps import format_timestamp, utc_now


class FileSystemBlobStore(BlobStorePort):
    """Adapter that keeps objects and their metadata on the local filesystem.

    Objects live under ``<root>/objects/<path>`` and metadata sidecars under
    ``<root>/meta/<path>.json``. Retrieval URLs are ``file://`` URLs sealed
    with an HMAC over ``path|expires``.
    """

    def __init__(self, root: Path, *, url_key: bytes) -> None:
        self._root = Path(root)
        self._objects = self._root / "objects"
        self._meta = self._root / "meta"
        self._objects.mkdir(parents=True, exist_ok=True)
        self._meta.mkdir(parents=True, exist_ok=True)
        self._url_key = url_key

    def _resolve(self, base: Path, path: str, suffix: str = "") -> Path:
        clean = path.strip("/")
        parts = clean.split("/") if clean else []
        if not parts or any(part in {"", ".", ".."} for part in parts):
            raise ValueError(f"Invalid object path: '{path}'")
        target = base.joinpath(*parts)
        if suffix:
            target = target.with_name(target.name + suffix)
        resolved = target.resolve()
        if not resolved.is_relative_to(base.resolve()):
            raise ValueError(f"Object path escapes store root: '{path}'")
        return target

    def write(
        self,
        path: str,
        data: bytes,
        *,
        content_type: str,
        metadata: dict[str, str] | None = None,
    ) -> None:
        object_path = self._resolve(self._objects, path)
        meta_path = self._resolve(self._meta, path, ".json")
        info = BlobInfo(
            path=path.strip("/"),
            content_type=content_type,
            size=len(data),
            metadata={str(k): str(v) for k, v in (metadata or {}).items()},
            updated_at=format_timestamp(utc_now()),
        )
        try:
            atomic_write_bytes(object_path, data)
            atomic_write_json(meta_path, info.model_dump(mode="json"))
        except OSError as exc:
            raise StorageError(f"Failed to write object {path}: {exc}") from exc

    def read(self, path: str) -> bytes:
        object_path = self._resolve(self._objects, path)
        try:
            return object_path.read_bytes()
        except FileNotFoundError as exc:
            raise StorageError(f"Object not found: {path}") from exc
        except OSError as exc:
            raise StorageError(f"Failed to read object {path}: {exc}") from exc

    def stat(self, path: str) -> BlobInfo:
        meta_path = self._resolve(self._meta, path, ".json")
        try:
            return BlobInfo.model_validate(json.loads(meta_path.read_text(encoding="utf-8")))
        except FileNotFoundError as exc:
            raise StorageError(f"Object not found: {path}") from exc
        except (OSError, ValueError) as exc:
            raise StorageError(f"Failed to read metadata for {path}: {exc}") from exc

    def _url_signature(self, path: str, expires: int) -> str:
        return compute_hmac_sha256(self._url_key, f"{path}|{expires}")

    def signed_url(self, path: str, *, expires_in: int) -> str:
        object_path = self._resolve(self._objects, path)
        clean = path.strip("/")
        expires = int(time.time()) + int(expires_in)
        query = urlencode(
            {
                "path": clean,
                "expires": expires,
                "signature": self._url_signature(clean, expires),
            }
        )
        return f"{object_path.resolve().as_uri()}?{query}"

    def verify_signed_url(self, url: str, *, now: float | None = None) -> str:
        params = parse_qs(urlsplit(url).query)
        try:
            path = unquote(params["path"][0])
            expires = int(params["expires"][0])
            signature = params["signature"][0]
        except (KeyError, IndexError, ValueError) as exc:
            raise AuthenticationError("Malformed retrieval URL") from exc

        if not digests_match(self._url_signature(path, expires), signature):
            raise AuthenticationError("Retrieval URL signature mismatch")
        current = time.time() if now is None else now
        if current > expires:
            raise AuthenticationError(f"Retrieval URL for {quote(path)} expired")
        return path

    def list(self, prefix: str = "") -> list[str]:
        if not self._objects.exists():
            return []
        clean = prefix.lstrip("/")
        paths = [
            candidate.relative_to(self._objects).as_posix()
            for candidate in self._objects.rglob("*")
            if candidate.is_file() and not candidate.name.endswith(".tmp")
        ]
        return sorted(path for path in paths if path.startswith(clean))
