from __future__ import annotations

import hashlib
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Optional, Tuple

CacheKey = Tuple[str, str]


@dataclass(frozen=True)
class CachedClient:
    client: Any
    created_at: float


class TTLRUClientCache:
    """
    SDK clients per (endpoint, key fingerprint). Entries expire after
    `ttl_seconds`; past `max_size` the least recently used entry goes.
    Keys entered in the settings panel can change at any time, so a client
    is never assumed to outlive its key.
    """

    def __init__(self, *, max_size: int, ttl_seconds: int, clock: Callable[[], float] = time.monotonic):
        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._items: "OrderedDict[CacheKey, CachedClient]" = OrderedDict()

    @staticmethod
    def cache_key(api_key: str, scope: Optional[str] = None) -> CacheKey:
        # only the digest of a key is kept
        return scope or "", hashlib.sha256(api_key.encode("utf-8")).hexdigest()

    def _fresh(self, entry: CachedClient, now: float) -> bool:
        return now - entry.created_at < self.ttl_seconds

    def get_or_create(
        self,
        *,
        api_key: str,
        factory: Callable[[str], Any],
        scope: Optional[str] = None,
    ) -> Any:
        key = self.cache_key(api_key, scope)
        now = self._clock()
        with self._lock:
            entry = self._items.pop(key, None)
            if entry is None or not self._fresh(entry, now):
                entry = CachedClient(client=factory(api_key), created_at=now)
            self._items[key] = entry
            while len(self._items) > self.max_size:
                self._items.popitem(last=False)
            return entry.client

    def invalidate(self, api_key: str, scope: Optional[str] = None) -> bool:
        with self._lock:
            return self._items.pop(self.cache_key(api_key, scope), None) is not None

    def __len__(self) -> int:
        return len(self._items)
