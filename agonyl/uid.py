"""Monotonic 32-bit identifier generator."""

import threading

_UINT32_MASK = 0xFFFFFFFF


class UidGenerator:
    """Hands out increasing 32-bit ids, starting just after ``start``."""

    def __init__(self, start: int = 0) -> None:
        self.start = start & _UINT32_MASK
        self._current = self.start
        self._lock = threading.Lock()

    def next(self) -> int:
        with self._lock:
            self._current = (self._current + 1) & _UINT32_MASK
            return self._current