"""Thread-safe map and set containers."""

from __future__ import annotations

import threading
from collections.abc import Iterable, Iterator
from typing import Generic, TypeVar

K = TypeVar("K")
V = TypeVar("V")
T = TypeVar("T")


class SafeMap(Generic[K, V]):
    """A dictionary guarded by a lock; iteration works on snapshots."""

    def __init__(self) -> None:
        self._data: dict[K, V] = {}
        self._lock = threading.Lock()

    def set(self, key: K, value: V) -> None:
        with self._lock:
            self._data[key] = value

    def get(self, key: K, default: V | None = None) -> V | None:
        with self._lock:
            return self._data.get(key, default)

    def delete(self, key: K) -> None:
        with self._lock:
            self._data.pop(key, None)

    def pop(self, key: K, default: V | None = None) -> V | None:
        with self._lock:
            return self._data.pop(key, default)

    def items(self) -> list[tuple[K, V]]:
        with self._lock:
            return list(self._data.items())

    def values(self) -> list[V]:
        with self._lock:
            return list(self._data.values())

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._data

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)


class SafeSet(Generic[T]):
    """A set guarded by a lock; iteration works on a snapshot."""

    def __init__(self, values: Iterable[T] = ()) -> None:
        self._data: set[T] = set(values)
        self._lock = threading.Lock()

    def add(self, value: T) -> None:
        with self._lock:
            self._data.add(value)

    def remove(self, value: T) -> None:
        """Remove ``value`` if present; missing values are ignored."""
        with self._lock:
            self._data.discard(value)

    def __contains__(self, value: object) -> bool:
        with self._lock:
            return value in self._data

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)

    def __iter__(self) -> Iterator[T]:
        return iter(self._snapshot())

    def _snapshot(self) -> set[T]:
        with self._lock:
            return set(self._data)

    def intersection(self, other: SafeSet[T]) -> SafeSet[T]:
        return SafeSet(self._snapshot() & other._snapshot())

    def union(self, other: SafeSet[T]) -> SafeSet[T]:
        return SafeSet(self._snapshot() | other._snapshot())

    def reset(self) -> None:
        with self._lock:
            self._data = set()