"""Bounded FIFO history buffer."""

import threading
from collections import deque
from typing import Callable, Generic, Iterator, TypeVar

T = TypeVar("T")


class HistoryBuffer(Generic[T]):
    """Fixed-capacity ring of recent entries; the oldest entry is evicted first."""

    def __init__(self, capacity: int = 100):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._capacity = capacity
        self._items: deque[T] = deque(maxlen=capacity)
        self._lock = threading.Lock()

    @property
    def capacity(self) -> int:
        return self._capacity

    def append(self, item: T) -> None:
        with self._lock:
            self._items.append(item)

    def recent(
        self,
        limit: int | None = None,
        predicate: Callable[[T], bool] | None = None,
    ) -> list[T]:
        """Newest-first entries matching predicate, truncated to limit."""
        with self._lock:
            items = list(self._items)

        result = []
        for item in reversed(items):
            if predicate is not None and not predicate(item):
                continue
            result.append(item)
            if limit is not None and len(result) >= limit:
                break
        return result

    def clear(self) -> None:
        with self._lock:
            self._items.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def __iter__(self) -> Iterator[T]:
        # Oldest first, over a snapshot
        with self._lock:
            return iter(list(self._items))
