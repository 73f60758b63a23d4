"""Mirror port for the secondary analytics store."""

from typing import Any, Protocol


class MirrorPort(Protocol):
    """Port interface for fire-and-forget event mirroring.

    Callers must catch and log failures; the mirror is never authoritative.

    Side effects: Writes rows to an analytics sink.
    """

    def insert(self, row: dict[str, Any]) -> None:
        """Insert one row."""
        ...
