"""
Hierarchy-aware cache lookups on top of a CacheStore.
"""
import logging
from typing import Any, Dict, Optional

from .core import CacheEntry, CacheMetrics, CacheStrategy, DataScope, FetchParams, StrategyResult
from .derivation import DerivationStrategy, NoDerivation
from .store import CacheStore

logger = logging.getLogger("cache.manager")


class CacheHierarchyManager:
    """
    Classifies requests against one CacheStore:
    - HIT: exact, unexpired entry
    - DERIVABLE: a cached superset covers the request's scope and window
    - SUPERSET_NEEDED: only narrower overlapping entries are cached
    - MISS: nothing useful is cached

    Derivation itself is delegated to a pluggable DerivationStrategy and is
    advisory: a DERIVABLE request whose derive() returns None must be fetched.
    """

    def __init__(
        self,
        store: Optional[CacheStore] = None,
        derivation: Optional[DerivationStrategy] = None,
    ):
        self.store = store if store is not None else CacheStore()
        self.derivation = derivation if derivation is not None else NoDerivation()

    def check_strategy(self, scope: DataScope, params: FetchParams) -> StrategyResult:
        """
        Decide how a request can be served.

        Returns:
            StrategyResult with the matched entry for HIT (the exact entry),
            DERIVABLE (the superset) and SUPERSET_NEEDED (the narrower entry)
        """
        entry = self.store.get_entry(scope, params)
        if entry is not None:
            self.store.record_hit()
            logger.debug(f"CACHE HIT: {entry.key} [accesses={entry.access_count}]")
            return StrategyResult(CacheStrategy.HIT, entry)

        superset = self.store.find_superset(scope, params)
        if superset is not None:
            self.store.record_derivation()
            logger.debug(f"CACHE DERIVABLE: {scope} from {superset.key}")
            return StrategyResult(CacheStrategy.DERIVABLE, superset)

        subset = self.store.find_overlapping_subset(scope, params)
        if subset is not None:
            logger.debug(f"CACHE SUPERSET-NEEDED: {scope} (narrower {subset.key} cached)")
            return StrategyResult(CacheStrategy.SUPERSET_NEEDED, subset)

        self.store.record_miss()
        logger.debug(f"CACHE MISS: {scope} {params.start_date}..{params.end_date}")
        return StrategyResult(CacheStrategy.MISS)

    def derive(self, scope: DataScope, superset_entry: CacheEntry) -> Optional[Any]:
        """
        Produce the payload for scope from a cached superset.

        Returns None when the strategy declines.
        """
        self.store.touch(superset_entry)
        derived = self.derivation.derive(scope, superset_entry)
        if derived is None:
            logger.debug(f"Derivation declined for {scope} from {superset_entry.key}")
        return derived

    def get(self, scope: DataScope, params: FetchParams) -> Optional[Any]:
        """Cached payload for an exact request, without touching the metrics."""
        return self.store.get(scope, params)

    def contains(self, scope: DataScope, params: FetchParams) -> bool:
        return self.store.contains(scope, params)

    def set(self, scope: DataScope, params: FetchParams, payload: Any) -> CacheEntry:
        return self.store.set(scope, params, payload)

    def invalidate(self, scope: Optional[DataScope] = None, include_supersets: bool = False) -> int:
        return self.store.invalidate(scope, include_supersets=include_supersets)

    def metrics(self) -> CacheMetrics:
        return self.store.metrics()

    def reset_metrics(self) -> None:
        self.store.reset_metrics()

    def hit_rate(self) -> float:
        """hits / (hits + misses), 0 before any request."""
        return self.store.metrics().hit_rate

    def get_stats(self) -> Dict[str, Any]:
        return self.store.get_stats()
