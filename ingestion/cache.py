import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheEntry:
    payload: List[Dict[str, Any]]
    fetched_at: float


class FetchCache:
    """
    In-process cache of upstream result lists keyed by the full request URL.

    Entries go stale after ttl_seconds. When max_entries is exceeded, stale
    entries are dropped first, then the oldest writes. Writes are last-write-wins.
    """

    def __init__(
        self,
        ttl_seconds: float = 30 * 60,
        max_entries: int = 256,
        clock: Callable[[], float] = time.monotonic,
    ):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def _fresh(self, entry: CacheEntry, now: float) -> bool:
        return (now - entry.fetched_at) < self.ttl_seconds

    def get(self, url: str) -> Optional[List[Dict[str, Any]]]:
        """Return the cached list for url, or None when absent or stale."""
        with self._lock:
            entry = self._entries.get(url)
            if entry is None:
                return None
            if not self._fresh(entry, self._clock()):
                return None
            return list(entry.payload)

    def set(self, url: str, payload: List[Dict[str, Any]]) -> None:
        with self._lock:
            now = self._clock()
            # re-insert so dict order tracks write time
            self._entries.pop(url, None)
            self._entries[url] = CacheEntry(payload=list(payload), fetched_at=now)
            if len(self._entries) > self.max_entries:
                self._evict(now)

    def _evict(self, now: float) -> None:
        stale = [u for u, e in self._entries.items() if not self._fresh(e, now)]
        for u in stale:
            del self._entries[u]
        while len(self._entries) > self.max_entries:
            oldest = next(iter(self._entries))
            del self._entries[oldest]
        logger.debug("fetch cache evicted down to %d entries", len(self._entries))

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, url: str) -> bool:
        return self.get(url) is not None
