"""
Response cache keyed by probe signature.

Entries expire ``ttl`` seconds after insertion. When the cache is full the
entry with the oldest insertion time is evicted, regardless of how often it
was read.
"""

import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from xssprobe.utils.logger import get_logger

logger = get_logger("core.cache")


@dataclass
class CacheEntry:
    """Cached response body with TTL support."""
    body: str
    inserted_at: float
    sequence: int

    def is_expired(self, now: float, ttl: float) -> bool:
        return now - self.inserted_at > ttl


class ResponseCache:

    def __init__(
        self,
        ttl: float = 300.0,
        max_size: int = 1000,
        enabled: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl = ttl
        self.max_size = max_size
        self.enabled = enabled
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._sequence = 0
        self.hits = 0
        self.misses = 0
        self.evictions = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, signature: str) -> bool:
        return signature in self._entries

    def get(self, signature: str) -> Optional[str]:
        """Cached body for ``signature`` if still fresh; a miss returns None."""
        if not self.enabled:
            return None
        entry = self._entries.get(signature)
        if entry is None:
            self.misses += 1
            return None
        if entry.is_expired(self._clock(), self.ttl):
            del self._entries[signature]
            self.misses += 1
            return None
        self.hits += 1
        return entry.body

    def put(self, signature: str, body: str) -> None:
        if not self.enabled:
            return
        if signature not in self._entries and len(self._entries) >= self.max_size:
            self._evict_oldest()
        self._sequence += 1
        self._entries[signature] = CacheEntry(body=body, inserted_at=self._clock(), sequence=self._sequence)

    def _evict_oldest(self) -> None:
        oldest = min(self._entries, key=lambda s: (self._entries[s].inserted_at, self._entries[s].sequence))
        del self._entries[oldest]
        self.evictions += 1
        logger.debug(f"Cache full, evicted {oldest[:12]}")

    def clear(self) -> None:
        self._entries.clear()

    def get_stats(self) -> Dict[str, int]:
        """Get cache statistics."""
        now = self._clock()
        expired = sum(1 for e in self._entries.values() if e.is_expired(now, self.ttl))
        return {
            "total_entries": len(self._entries),
            "valid_entries": len(self._entries) - expired,
            "expired_entries": expired,
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
        }
