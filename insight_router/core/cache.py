"""
Bounded result cache.

Maps request fingerprints to prior resolutions with TTL expiry and
least-recently-used eviction. Reads never raise: anything unreadable is a
miss.
"""

import threading
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable, List, Optional

from loguru import logger

from insight_router.storage.models import CacheEntry

DEFAULT_TTL = timedelta(hours=24)
DEFAULT_MAX_ENTRIES = 1000
DEFAULT_MIN_CONFIDENCE = 0.7


@dataclass(frozen=True)
class CacheStats:
    """Point-in-time cache statistics."""
    size: int
    hits: int
    misses: int
    evictions: int

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0


class CacheStore:
    """LRU cache of resolutions keyed by request fingerprint.

    Only results with ``confidence >= min_confidence`` are stored. Both
    ``get`` and ``put`` refresh recency; ``get`` on an expired entry removes
    it and reports a miss.
    """

    def __init__(
        self,
        ttl: timedelta = DEFAULT_TTL,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        min_confidence: float = DEFAULT_MIN_CONFIDENCE,
        clock: Callable[[], datetime] = datetime.now,
    ):
        if ttl <= timedelta(0):
            raise ValueError("ttl must be positive")
        if max_entries <= 0:
            raise ValueError("max_entries must be > 0")
        self.ttl = ttl
        self.max_entries = max_entries
        self.min_confidence = min_confidence
        self._clock = clock
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def get(self, fingerprint: str) -> Optional[CacheEntry]:
        """Return the valid entry for a fingerprint, or None on a miss."""
        with self._lock:
            entry = self._entries.get(fingerprint)
            if entry is None:
                self._misses += 1
                return None
            try:
                valid = entry.is_valid(self._clock())
            except (AttributeError, TypeError) as e:
                logger.warning(f"Dropping unreadable cache entry {fingerprint[:12]}: {e}")
                valid = False
            if not valid:
                del self._entries[fingerprint]
                self._misses += 1
                return None
            self._entries.move_to_end(fingerprint)
            self._hits += 1
            return entry

    def put(self, fingerprint: str, result: Any, confidence: float) -> bool:
        """Store a result if it is confident enough.

        Returns:
            True if the result was cached
        """
        if confidence < self.min_confidence:
            logger.debug(f"Skipping cache for low confidence result: {confidence:.2f}")
            return False

        now = self._clock()
        entry = CacheEntry(
            fingerprint=fingerprint,
            result=result,
            confidence=confidence,
            created_at=now,
            expires_at=now + self.ttl,
        )
        with self._lock:
            if fingerprint in self._entries:
                del self._entries[fingerprint]
            elif len(self._entries) >= self.max_entries:
                self._make_room(now)
            self._entries[fingerprint] = entry
        return True

    def invalidate(self, fingerprint: str) -> bool:
        """Drop the entry for a fingerprint. Returns True if one existed."""
        with self._lock:
            return self._entries.pop(fingerprint, None) is not None

    def invalidate_matching(self, predicate: Callable[[CacheEntry], bool]) -> int:
        """Drop every entry the predicate selects. Returns the number dropped."""
        with self._lock:
            doomed = [key for key, entry in self._entries.items() if predicate(entry)]
            for key in doomed:
                del self._entries[key]
            return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._hits = 0
            self._misses = 0
            self._evictions = 0

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(
                size=len(self._entries),
                hits=self._hits,
                misses=self._misses,
                evictions=self._evictions,
            )

    def snapshot(self) -> List[CacheEntry]:
        """Valid entries, least recently used first."""
        now = self._clock()
        valid = []
        with self._lock:
            for fingerprint, entry in self._entries.items():
                try:
                    if entry.is_valid(now):
                        valid.append(entry)
                except (AttributeError, TypeError) as e:
                    logger.warning(f"Leaving unreadable cache entry {fingerprint[:12]} out of snapshot: {e}")
        return valid

    def load(self, entries: Iterable[CacheEntry]) -> int:
        """Restore entries from persistence, oldest recency first.

        Expired or malformed entries are skipped. Returns the number loaded.
        """
        now = self._clock()
        loaded = 0
        with self._lock:
            for entry in entries:
                try:
                    if not entry.is_valid(now) or entry.confidence < self.min_confidence:
                        continue
                except (AttributeError, TypeError):
                    logger.debug("Skipping malformed cache entry during load")
                    continue
                self._entries.pop(entry.fingerprint, None)
                self._entries[entry.fingerprint] = entry
                loaded += 1
                while len(self._entries) > self.max_entries:
                    self._entries.popitem(last=False)
        return loaded

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, fingerprint: str) -> bool:
        return fingerprint in self._entries

    def _make_room(self, now: datetime) -> None:
        """Free one slot: purge stale entries, else evict the LRU entry."""
        stale = [key for key, entry in self._entries.items() if not entry.is_valid(now)]
        for key in stale:
            del self._entries[key]
        if len(self._entries) >= self.max_entries:
            evicted, _ = self._entries.popitem(last=False)
            self._evictions += 1
            logger.debug(f"Evicted least recently used cache entry {evicted[:12]}")
