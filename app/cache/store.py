"""
Bounded in-memory store with TTL expiry, LRU eviction and hierarchy cleanup.
"""
import logging
import threading
import time
from collections import OrderedDict
from datetime import date
from typing import Any, Callable, Dict, List, Optional

from .core import CacheEntry, CacheMetrics, DataScope, FetchParams, ScopeLevel, generate_cache_key
from .hierarchy import (
    date_contains,
    date_overlaps,
    get_scope_level,
    is_subset,
    is_superset,
    same_id,
)

logger = logging.getLogger("cache.store")

DEFAULT_MAX_ENTRIES = 100
DEFAULT_MAX_AGE_SECONDS = 30 * 60


def _span_days(params: FetchParams) -> int:
    return (date.fromisoformat(params.end_date) - date.fromisoformat(params.start_date)).days


class CacheStore:
    """
    Owns every cache entry and the metrics counters for one payload category.

    - Entries are kept in access order so LRU ties resolve to the entry that
      was touched least recently
    - Expired entries are dropped lazily when looked up
    - Storing a broader entry removes narrower entries it now covers
    - Thread-safe: every read-modify-write runs under one re-entrant lock
    """

    def __init__(
        self,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        max_age_seconds: float = DEFAULT_MAX_AGE_SECONDS,
        clock: Callable[[], float] = time.time,
        name: str = "cache",
        debug: bool = False,
    ):
        """
        Initialize the store.

        Args:
            max_entries: Capacity before LRU eviction kicks in (at least 1)
            max_age_seconds: Age after which an entry is treated as expired
            clock: Source of timestamps in seconds
            name: Label used in log messages
            debug: Log every operation at INFO instead of DEBUG
        """
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.max_entries = max_entries
        self.max_age_seconds = max_age_seconds
        self.name = name
        self._clock = clock
        self._debug = debug
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = threading.RLock()
        self._metrics = CacheMetrics()

    def _log(self, message: str) -> None:
        logger.log(logging.INFO if self._debug else logging.DEBUG, f"[{self.name}] {message}")

    def _is_live(self, entry: CacheEntry, now: float) -> bool:
        return not entry.is_expired(now, self.max_age_seconds)

    def _delete(self, keys: List[str]) -> None:
        for key in keys:
            self._entries.pop(key, None)
        self._metrics.size = len(self._entries)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_entry(self, scope: DataScope, params: FetchParams) -> Optional[CacheEntry]:
        """
        Exact lookup that records the access.

        Returns None (and drops the entry) when it has expired.
        """
        key = generate_cache_key(scope, params)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None

            now = self._clock()
            if not self._is_live(entry, now):
                self._log(f"EXPIRED: {key} [age={entry.age_seconds(now):.1f}s]")
                self._delete([key])
                return None

            entry.touch(now)
            self._entries.move_to_end(key)
            return entry

    def get(self, scope: DataScope, params: FetchParams) -> Optional[Any]:
        """Exact lookup returning just the payload."""
        entry = self.get_entry(scope, params)
        return entry.payload if entry is not None else None

    def contains(self, scope: DataScope, params: FetchParams) -> bool:
        """Check for a live exact entry without counting it as an access."""
        key = generate_cache_key(scope, params)
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and self._is_live(entry, self._clock())

    def find_superset(self, scope: DataScope, params: FetchParams) -> Optional[CacheEntry]:
        """
        Find a live entry whose scope strictly contains scope and whose window
        covers params.

        When several qualify the narrowest wins: lowest hierarchy level first,
        then shortest date window, then least recently used.
        """
        with self._lock:
            now = self._clock()
            candidates = [
                entry for entry in self._entries.values()
                if self._is_live(entry, now)
                and entry.params.same_filters(params)
                and is_superset(entry.scope, scope)
                and date_contains(
                    entry.params.start_date, entry.params.end_date,
                    params.start_date, params.end_date,
                )
            ]
            if not candidates:
                return None
            # min() keeps the first of equal keys, i.e. the least recently used
            return min(
                candidates,
                key=lambda e: (get_scope_level(e.scope), _span_days(e.params)),
            )

    def find_overlapping_subset(
        self,
        scope: DataScope,
        params: FetchParams,
    ) -> Optional[CacheEntry]:
        """
        Find a live entry narrower than scope whose window overlaps params.

        Only a hint that a broader fetch may be worthwhile; never served.
        """
        with self._lock:
            now = self._clock()
            for entry in self._entries.values():
                if not self._is_live(entry, now):
                    continue
                if not entry.params.same_filters(params):
                    continue
                if is_subset(entry.scope, scope) and date_overlaps(
                    entry.params.start_date, entry.params.end_date,
                    params.start_date, params.end_date,
                ):
                    return entry
            return None

    def touch(self, entry: CacheEntry) -> None:
        """Record a derivation use of an entry."""
        with self._lock:
            entry.touch(self._clock())
            if self._entries.get(entry.key) is entry:
                self._entries.move_to_end(entry.key)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def set(self, scope: DataScope, params: FetchParams, payload: Any) -> CacheEntry:
        """
        Store a payload, evicting the LRU entry when full and removing
        narrower entries the new one makes redundant.
        """
        key = generate_cache_key(scope, params)
        with self._lock:
            if key not in self._entries and len(self._entries) >= self.max_entries:
                self._evict_lru()

            now = self._clock()
            entry = CacheEntry(
                payload=payload,
                fetched_at=now,
                scope=scope,
                params=params,
                access_count=0,
                last_accessed_at=now,
            )
            self._entries.pop(key, None)
            self._entries[key] = entry
            self._metrics.size = len(self._entries)
            self._log(f"STORED: {key}")

            self._remove_redundant_subsets(scope, params)
            return entry

    def _remove_redundant_subsets(self, scope: DataScope, params: FetchParams) -> None:
        redundant = [
            key for key, entry in self._entries.items()
            if is_subset(entry.scope, scope)
            and entry.params.same_filters(params)
            and date_contains(
                params.start_date, params.end_date,
                entry.params.start_date, entry.params.end_date,
            )
        ]
        if redundant:
            self._delete(redundant)
            self._log(f"Removed {len(redundant)} redundant subset entries")

    def _evict_lru(self) -> None:
        if not self._entries:
            return
        # Iteration runs least to most recently touched, so min() breaks ties
        # toward the stalest entry
        oldest_key = min(
            self._entries,
            key=lambda k: self._entries[k].last_accessed_at,
        )
        self._delete([oldest_key])
        self._metrics.evictions += 1
        self._log(f"EVICTED (LRU): {oldest_key}")

    def invalidate(
        self,
        scope: Optional[DataScope] = None,
        include_supersets: bool = False,
    ) -> int:
        """
        Drop entries for a scope, or everything when scope is None.

        Args:
            scope: Account scope drops the whole account, app scope drops that
                app and its keysets, keyset scope drops that keyset
            include_supersets: Also drop broader entries that contain scope

        Returns:
            Number of entries removed
        """
        with self._lock:
            if scope is None:
                count = len(self._entries)
                self._entries.clear()
                self._metrics.size = 0
                self._log(f"Invalidated all {count} entries")
                return count

            doomed = []
            for key, entry in self._entries.items():
                if not same_id(entry.scope.account_id, scope.account_id):
                    continue
                if (
                    scope.level == ScopeLevel.ACCOUNT
                    or (scope.level == ScopeLevel.APP and same_id(entry.scope.app_id, scope.app_id))
                    or (scope.level == ScopeLevel.KEYSET and same_id(entry.scope.key_id, scope.key_id))
                    or (include_supersets and is_superset(entry.scope, scope))
                ):
                    doomed.append(key)

            self._delete(doomed)
            if doomed:
                self._log(f"Invalidated {len(doomed)} entries for {scope}")
            return len(doomed)

    # ------------------------------------------------------------------
    # Metrics
    # ------------------------------------------------------------------

    def record_hit(self) -> None:
        with self._lock:
            self._metrics.hits += 1

    def record_miss(self) -> None:
        with self._lock:
            self._metrics.misses += 1

    def record_derivation(self) -> None:
        with self._lock:
            self._metrics.derivations += 1

    def metrics(self) -> CacheMetrics:
        """Snapshot of the counters."""
        with self._lock:
            return CacheMetrics(**self._metrics.to_dict())

    def reset_metrics(self) -> None:
        with self._lock:
            self._metrics = CacheMetrics(size=len(self._entries))

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get_stats(self) -> Dict[str, Any]:
        """Get store statistics."""
        with self._lock:
            stats = self._metrics.to_dict()
            stats["max_entries"] = self.max_entries
            stats["max_age_seconds"] = self.max_age_seconds
            stats["hit_rate_percent"] = round(self._metrics.hit_rate * 100, 1)
            return stats
