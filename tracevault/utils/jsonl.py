"""JSON/JSONL writing helpers with durability guarantees."""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any


def atomic_write_bytes(path: Path, data: bytes) -> None:
    """Write ``data`` to ``path`` atomically.

    The write is performed via a temporary file followed by an ``os.replace``
    once the contents are flushed and fsynced, ensuring durability even if the
    process crashes mid-write.
    """
    destination = Path(path)
    destination.parent.mkdir(parents=True, exist_ok=True)

    fd: int | None = None
    tmp_path: str | None = None

    try:
        fd, tmp_path = tempfile.mkstemp(
            dir=str(destination.parent),
            prefix=destination.name,
            suffix=".tmp",
        )

        with os.fdopen(fd, "wb") as handle:
            fd = None  # Ownership transferred to file object
            handle.write(data)
            handle.flush()
            os.fsync(handle.fileno())

        os.replace(tmp_path, destination)
        tmp_path = None
    finally:
        if fd is not None:
            os.close(fd)
        if tmp_path is not None:
            try:
                os.unlink(tmp_path)
            except FileNotFoundError:
                pass


def dumps_compact(payload: Any) -> str:
    """Serialize ``payload`` as compact, key-sorted JSON."""
    return json.dumps(payload, separators=(",", ":"), sort_keys=True, ensure_ascii=False)


def atomic_write_json(path: Path, payload: Any) -> None:
    """Write ``payload`` to ``path`` atomically as compact JSON."""
    atomic_write_bytes(path, dumps_compact(payload).encode("utf-8"))


def append_jsonl(path: Path, record: dict[str, Any]) -> None:
    """Append a single record to a JSONL file with fsync."""
    destination = Path(path)
    destination.parent.mkdir(parents=True, exist_ok=True)
    with open(destination, "a", encoding="utf-8") as fh:
        fh.write(dumps_compact(record) + "\n")
        fh.flush()
        os.fsync(fh.fileno())


def read_jsonl(path: Path) -> list[dict[str, Any]]:
    """Read every non-blank line of a JSONL file.

    Raises:
        ValueError: If a line is not valid JSON
    """
    destination = Path(path)
    if not destination.exists():
        return []

    records: list[dict[str, Any]] = []
    with open(destination, encoding="utf-8") as fh:
        for line_num, raw_line in enumerate(fh, 1):
            line = raw_line.strip()
            if not line:
                continue
            try:
                records.append(json.loads(line))
            except json.JSONDecodeError as exc:
                raise ValueError(f"Invalid JSON at line {line_num} in {destination}: {exc}") from exc
    return records
