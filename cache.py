"""Bounded, time-expiring LRU cache for parse and taxonomy results."""

from __future__ import annotations

import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Dict, Generic, Optional, TypeVar

T = TypeVar("T")


@dataclass
class _Entry(Generic[T]):
    value: T
    timestamp: float
    access_count: int = 1


class TTLCache(Generic[T]):
    """Least-recently-used store whose entries expire ``ttl`` seconds after insert.

    Owned by a single component instance; every operation is non-blocking so it
    can be shared by concurrent requests on one event loop.
    """

    def __init__(
        self,
        max_size: int = 1000,
        ttl: float = 24 * 60 * 60,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self.ttl = ttl
        self._clock = clock
        self._data: "OrderedDict[str, _Entry[T]]" = OrderedDict()

    def _expired(self, entry: _Entry[T]) -> bool:
        return self._clock() - entry.timestamp > self.ttl

    def get(self, key: str) -> Optional[T]:
        entry = self._data.get(key)
        if entry is None:
            return None
        if self._expired(entry):
            del self._data[key]
            return None
        entry.access_count += 1
        self._data.move_to_end(key)
        return entry.value

    def set(self, key: str, value: T) -> None:
        if key in self._data:
            del self._data[key]
        elif len(self._data) >= self.max_size:
            self._data.popitem(last=False)
        self._data[key] = _Entry(value=value, timestamp=self._clock())

    def __contains__(self, key: str) -> bool:
        entry = self._data.get(key)
        if entry is None:
            return False
        if self._expired(entry):
            del self._data[key]
            return False
        return True

    def __len__(self) -> int:
        return len(self._data)

    def clear(self) -> None:
        self._data.clear()

    def stats(self) -> Dict[str, object]:
        now = self._clock()
        return {
            "size": len(self._data),
            "max_size": self.max_size,
            "entries": [
                {"key": key, "age": round(now - e.timestamp, 3), "access_count": e.access_count}
                for key, e in self._data.items()
            ],
        }
