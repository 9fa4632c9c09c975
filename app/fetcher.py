"""
Fetch orchestration for usage, apps and keysets.

Serves each request from the hierarchical cache when it can, derives narrower
lists from cached broader ones, and otherwise issues one deduplicated call to
the remote data source.
"""
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from app.cache import (
    CacheHierarchyManager,
    CacheMetrics,
    CacheStore,
    CacheStrategy,
    DataScope,
    FetchParams,
    InFlightRequestRegistry,
    PayloadCategory,
    generate_cache_key,
    get_cache_limits,
    get_derivation_for_category,
    get_empty_payload,
)
from config.settings import settings

logger = logging.getLogger("fetcher")


@dataclass
class Session:
    """Authenticated dashboard session. Only the token matters for fetching."""
    token: Optional[str]
    user_id: Optional[int] = None
    account_id: Optional[int] = None


@dataclass
class FetchOptions:
    """Per-request options."""
    force: bool = False                  # Bypass the cache entirely
    session: Optional[Session] = None    # Overrides the orchestrator session


@dataclass
class FetchResult:
    """Payload plus how it was obtained."""
    payload: Any
    from_cache: bool
    strategy: CacheStrategy
    fetch_time_ms: Optional[float] = None
    skipped: bool = False   # No session, nothing was fetched


class RemoteDataSource(ABC):
    """
    The upstream collaborator the orchestrator fetches from.

    Implementations own transport concerns (timeouts, auth headers) and raise
    on failure; the orchestrator propagates those errors unchanged.
    """

    @abstractmethod
    async def fetch_account_usage(
        self,
        scope: DataScope,
        params: FetchParams,
        session: Session,
    ) -> Dict[str, Any]:
        """Usage time series aggregated for exactly the given scope."""
        pass

    @abstractmethod
    async def fetch_apps(self, scope: DataScope, params: FetchParams, session: Session) -> list:
        """App records visible at the given scope."""
        pass

    @abstractmethod
    async def fetch_keys(self, scope: DataScope, params: FetchParams, session: Session) -> list:
        """Keyset records visible at the given scope, each carrying its app_id."""
        pass

    def close(self) -> None:
        """Release transport resources."""
        pass


class FetchOrchestrator:
    """
    Public entry point for UI consumers.

    Owns one CacheHierarchyManager per payload category. The in-flight
    registry can be shared between orchestrators so identical concurrent
    requests reach the data source once.
    """

    def __init__(
        self,
        data_source: RemoteDataSource,
        session: Optional[Session] = None,
        registry: Optional[InFlightRequestRegistry] = None,
        max_entries: Optional[int] = None,
        max_age_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.time,
        debug: Optional[bool] = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            data_source: Remote collaborator used on cache misses
            session: Current session; fetching is skipped without a token
            registry: In-flight registry, shared to dedupe across instances
            max_entries: Per-category capacity (defaults to settings)
            max_age_seconds: Per-category TTL (defaults to settings)
            clock: Timestamp source for cache entries
            debug: Log cache decisions at INFO (defaults to settings)
        """
        self._data_source = data_source
        self._session = session
        # Only an owned registry is cleared with the caches; a shared one
        # still tracks fetches started by other orchestrators
        self._owns_registry = registry is None
        self._registry = registry if registry is not None else InFlightRequestRegistry()
        debug = settings.cache_debug if debug is None else debug
        if max_entries is None:
            max_entries = settings.cache_max_entries
        if max_age_seconds is None:
            max_age_seconds = settings.cache_max_age_seconds

        self._managers: Dict[PayloadCategory, CacheHierarchyManager] = {}
        for category in PayloadCategory:
            limit, max_age = get_cache_limits(category, max_entries, max_age_seconds)
            store = CacheStore(
                max_entries=limit,
                max_age_seconds=max_age,
                clock=clock,
                name=category.value,
                debug=debug,
            )
            self._managers[category] = CacheHierarchyManager(
                store, get_derivation_for_category(category)
            )

        self._source_calls: Dict[PayloadCategory, Callable[..., Awaitable[Any]]] = {
            PayloadCategory.USAGE: data_source.fetch_account_usage,
            PayloadCategory.APPS: data_source.fetch_apps,
            PayloadCategory.KEYSETS: data_source.fetch_keys,
        }

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    @property
    def session(self) -> Optional[Session]:
        return self._session

    def set_session(self, session: Optional[Session]) -> None:
        """Replace the session; losing it drops every cached view."""
        self._session = session
        if session is None or not session.token:
            self.clear_all()

    @property
    def has_session(self) -> bool:
        return self._session is not None and bool(self._session.token)

    # ------------------------------------------------------------------
    # Fetching
    # ------------------------------------------------------------------

    def manager(self, category: PayloadCategory) -> CacheHierarchyManager:
        return self._managers[category]

    @staticmethod
    def request_key(category: PayloadCategory, scope: DataScope, params: FetchParams) -> str:
        """Deduplication key: category plus every scope field and the window."""
        return f"{category.value}:{generate_cache_key(scope, params)}"

    async def fetch(
        self,
        category: PayloadCategory,
        scope: DataScope,
        params: FetchParams,
        options: Optional[FetchOptions] = None,
    ) -> FetchResult:
        """
        Get data for a scope and window, from cache when possible.

        Args:
            category: Which payload to fetch
            scope: Hierarchy node requested
            params: Date window and filters
            options: force=True bypasses the cache

        Returns:
            FetchResult with the payload, whether it came from cache and the
            cache strategy that applied

        Raises:
            Exception: Whatever the data source raised, unchanged
        """
        options = options or FetchOptions()
        manager = self._managers[category]

        # Cached data is never handed to a caller without a token
        session = self._resolve_session(options)
        if session is None:
            logger.info(f"No session, skipping {category.value} fetch for {scope}")
            return FetchResult(
                payload=get_empty_payload(category),
                from_cache=False,
                strategy=CacheStrategy.MISS,
                skipped=True,
            )

        if options.force:
            logger.info(f"FORCE REFRESH: {self.request_key(category, scope, params)}")
            return await self._fetch_remote(category, scope, params, CacheStrategy.MISS, session)

        result = manager.check_strategy(scope, params)

        if result.strategy == CacheStrategy.HIT:
            return FetchResult(payload=result.entry.payload, from_cache=True, strategy=CacheStrategy.HIT)

        if result.strategy == CacheStrategy.DERIVABLE:
            derived = manager.derive(scope, result.entry)
            if derived is not None:
                logger.debug(f"Derived {category.value} for {scope} from {result.entry.key}")
                return FetchResult(payload=derived, from_cache=True, strategy=CacheStrategy.DERIVABLE)
            logger.info(f"Derivation declined for {category.value} {scope}, fetching")

        # Fetch exactly what was asked for; broadening is the caller's call
        return await self._fetch_remote(category, scope, params, result.strategy, session)

    def _resolve_session(self, options: FetchOptions) -> Optional[Session]:
        """Per-request session first, then the orchestrator's; None without a token."""
        session = options.session or self._session
        if session is None or not session.token:
            return None
        return session

    async def _fetch_remote(
        self,
        category: PayloadCategory,
        scope: DataScope,
        params: FetchParams,
        strategy: CacheStrategy,
        session: Session,
    ) -> FetchResult:
        manager = self._managers[category]
        source_call = self._source_calls[category]
        key = self.request_key(category, scope, params)

        async def work():
            logger.info(f"API call: {key}")
            payload = await source_call(scope, params, session)
            # Stored by the shared task so the cache fills even if callers leave
            manager.set(scope, params, payload)
            return payload

        started = time.perf_counter()
        payload = await self._registry.dedupe(key, work)

        # A concurrent caller from another orchestrator joined someone else's task
        if not manager.contains(scope, params):
            manager.set(scope, params, payload)

        return FetchResult(
            payload=payload,
            from_cache=False,
            strategy=strategy,
            fetch_time_ms=(time.perf_counter() - started) * 1000,
        )

    async def fetch_usage(
        self,
        scope: DataScope,
        params: FetchParams,
        options: Optional[FetchOptions] = None,
    ) -> FetchResult:
        return await self.fetch(PayloadCategory.USAGE, scope, params, options)

    async def fetch_usage_for_key(
        self,
        account_id: Union[int, str],
        key_id: Union[int, str],
        start_date: str,
        end_date: str,
        app_id: Optional[Union[int, str]] = None,
        options: Optional[FetchOptions] = None,
    ) -> FetchResult:
        """Fetch usage for a single keyset."""
        return await self.fetch_usage(
            DataScope.keyset(account_id, key_id, app_id=app_id),
            FetchParams(start_date, end_date),
            options,
        )

    async def fetch_apps(
        self,
        account_id: Union[int, str],
        params: FetchParams,
        options: Optional[FetchOptions] = None,
    ) -> FetchResult:
        """Fetch every app of an account."""
        return await self.fetch(PayloadCategory.APPS, DataScope.account(account_id), params, options)

    async def fetch_keys(
        self,
        account_id: Union[int, str],
        app_id: Union[int, str],
        params: FetchParams,
        options: Optional[FetchOptions] = None,
    ) -> FetchResult:
        """Fetch every keyset of an app."""
        return await self.fetch(
            PayloadCategory.KEYSETS, DataScope.app(account_id, app_id), params, options
        )

    def get_cached_only(
        self,
        category: PayloadCategory,
        scope: DataScope,
        params: FetchParams,
    ) -> Optional[Any]:
        """Cached payload for an exact request; never fetches."""
        return self._managers[category].get(scope, params)

    # ------------------------------------------------------------------
    # Cache management
    # ------------------------------------------------------------------

    def invalidate(self, scope: Optional[DataScope] = None) -> int:
        """
        Invalidate a scope in every category, or everything.

        Cached ancestors of the scope are dropped too, so the next request for
        it is fetched rather than derived from stale broader data.

        Returns:
            Number of entries removed
        """
        removed = sum(
            manager.invalidate(scope, include_supersets=True)
            for manager in self._managers.values()
        )
        logger.info(f"Invalidated {removed} entries for {scope if scope else 'ALL'}")
        return removed

    def clear_all(self) -> None:
        """Clear every cache, and in-flight registrations when the registry is owned."""
        for manager in self._managers.values():
            manager.invalidate()
        if self._owns_registry:
            self._registry.clear()
        logger.info("Cleared all caches")

    def metrics(self) -> Dict[str, CacheMetrics]:
        return {category.value: manager.metrics() for category, manager in self._managers.items()}

    def reset_metrics(self) -> None:
        for manager in self._managers.values():
            manager.reset_metrics()

    def hit_rates(self) -> Dict[str, float]:
        """hits / (hits + misses) per category, 0 when nothing was requested."""
        return {category.value: manager.hit_rate() for category, manager in self._managers.items()}

    def get_stats(self) -> Dict[str, Any]:
        """Get orchestrator statistics."""
        return {
            "caches": {
                category.value: manager.get_stats()
                for category, manager in self._managers.items()
            },
            "hit_rates": self.hit_rates(),
            "coalescer": self._registry.get_stats(),
            "has_session": self.has_session,
        }

    def close(self) -> None:
        """Drop all cached state and release the data source."""
        self.clear_all()
        self._data_source.close()
