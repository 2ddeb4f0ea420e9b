import time
from collections import deque
from typing import (
    Callable,
    Deque,
    Dict,
    Generic,
    Hashable,
    Optional,
    Protocol,
    Tuple,
    TypeVar,
)

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class Cache(Protocol[K, V]):
    def get(self, key: K) -> Optional[V]:
        ...

    def set(self, key: K, value: V):
        ...

    def expire(self):
        ...


class ExpiringCache(Generic[K, V]):
    """In-memory mapping whose entries are dropped ``ttl`` seconds after being set."""

    _items: Dict[K, Tuple[float, V]]
    _expiry_queue: Deque[Tuple[float, K]]

    def __init__(self, ttl: float, time_fn: Callable[[], float] = time.time):
        self.ttl = ttl
        self._time = time_fn
        self._items = {}
        self._expiry_queue = deque()

    def set(self, key: K, value: V):
        self.expire()
        now = self._time()
        self._items[key] = (now, value)
        self._expiry_queue.append((now, key))

    def get(self, key: K) -> Optional[V]:
        self.expire()
        entry = self._items.get(key)
        return entry[1] if entry else None

    def __contains__(self, key: object) -> bool:
        self.expire()
        return key in self._items

    def __len__(self) -> int:
        self.expire()
        return len(self._items)

    def expire(self):
        while (
            len(self._expiry_queue) > 0
            and self._time() - self._expiry_queue[0][0] >= self.ttl
        ):
            timestamp, key = self._expiry_queue.popleft()
            # A key set again later has a newer queue entry; keep it.
            if key in self._items and self._items[key][0] == timestamp:
                del self._items[key]
