import asyncio
import time
from typing import Any, Awaitable, Callable, Dict, List, Tuple

Loader = Callable[[str], Awaitable[List[Any]]]


class StatefulSetCache:
    """
    Read-through cache of the rack StatefulSets of each DataCenter.

    Entries are keyed by ``namespace/name`` of the DataCenter, expire after
    ``ttl`` seconds and are dropped on every StatefulSet event.
    """

    def __init__(self, loader: Loader, ttl: float = 30.0, clock: Callable[[], float] = time.monotonic):
        self._loader = loader
        self._ttl = ttl
        self._clock = clock
        self._entries: Dict[str, Tuple[float, List[Any]]] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> List[Any]:
        async with self._lock:
            entry = self._entries.get(key)
            if entry is not None and self._clock() - entry[0] < self._ttl:
                return entry[1]
        statefulsets = await self._loader(key)
        async with self._lock:
            self._entries[key] = (self._clock(), statefulsets)
        return statefulsets

    def invalidate(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()
