from __future__ import annotations

from typing import Any, Protocol


class DocumentStore(Protocol):
    """
    A single JSON-like document persisted as a whole: read it all, mutate in
    memory, write it all back.
    """

    def read(self) -> dict[str, Any]:
        """Return an independent copy of the full document (never None)."""
        ...

    def write(self, doc: dict[str, Any]) -> None:
        """Replace the full document; persistence may be deferred."""
        ...

    def flush(self) -> None:
        """Persist whatever the last write left in memory."""
        ...
