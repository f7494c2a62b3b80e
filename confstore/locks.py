from __future__ import annotations

import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator


class _FlushSlot:
    __slots__ = ("lock", "holders")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.holders = 0


class FlushLockRegistry:
    """
    Serializes flushes to the same store file between store instances in one
    process. There is no cross-process locking.

    A slot exists only while some thread holds or waits for it, so the
    registry does not grow with every path a long-lived process has touched.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._slots: dict[str, _FlushSlot] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._slots)

    @contextmanager
    def holding(self, path: Path) -> Iterator[None]:
        key = str(path.resolve())
        with self._guard:
            slot = self._slots.get(key)
            if slot is None:
                slot = _FlushSlot()
                self._slots[key] = slot
            slot.holders += 1
        try:
            with slot.lock:
                yield
        finally:
            with self._guard:
                slot.holders -= 1
                if slot.holders == 0:
                    del self._slots[key]


FLUSH_LOCKS = FlushLockRegistry()
