"""
Temporal History - Fixed-capacity ring buffer of recent samples
"""

from collections import deque
from typing import Callable, Deque, Generic, Iterator, List, Optional, TypeVar

import numpy as np

T = TypeVar("T")


class TemporalHistory(Generic[T]):
    """
    FIFO buffer holding at most `capacity` samples.

    Appending beyond capacity evicts the oldest sample.
    """

    def __init__(self, capacity: int = 30):
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self._items: Deque[T] = deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._items.maxlen

    def append(self, item: T) -> None:
        self._items.append(item)

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[T]:
        return iter(list(self._items))

    def is_full(self) -> bool:
        return len(self._items) == self.capacity

    def latest(self) -> Optional[T]:
        return self._items[-1] if self._items else None

    def previous(self) -> Optional[T]:
        """Sample before the latest one"""
        return self._items[-2] if len(self._items) >= 2 else None

    def recent(self, n: int) -> List[T]:
        if n <= 0:
            return []
        return list(self._items)[-n:]

    def values(self, key: Callable[[T], Optional[float]], n: Optional[int] = None) -> np.ndarray:
        """Numeric series extracted with `key`, skipping None values"""
        items = self.recent(n) if n is not None else list(self._items)
        series = [key(item) for item in items]
        return np.array([v for v in series if v is not None], dtype=np.float64)

    def variance(self, key: Callable[[T], Optional[float]], n: Optional[int] = None) -> float:
        series = self.values(key, n)
        if series.size < 2:
            return 0.0
        return float(np.var(series))

    def clear(self) -> None:
        self._items.clear()
