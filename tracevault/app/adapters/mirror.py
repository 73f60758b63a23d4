"""JSONL sink standing in for the secondary analytics store."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from tracevault.app.ports import MirrorPort
from tracevault.utils.jsonl import append_jsonl, read_jsonl


class JsonlMirrorAdapter(MirrorPort):
    """Append mirrored rows to a local JSONL file."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def insert(self, row: dict[str, Any]) -> None:
        append_jsonl(self.path, row)

    def rows(self) -> list[dict[str, Any]]:
        if not self.path.exists():
            return []
        return read_jsonl(self.path)
