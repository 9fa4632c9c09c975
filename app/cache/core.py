"""
Core cache data structures.
"""
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, Optional, Union
from enum import Enum


class ScopeLevel(Enum):
    """Levels of the account > app > keyset hierarchy."""
    ACCOUNT = "account"   # broadest
    APP = "app"
    KEYSET = "keyset"     # narrowest


class CacheStrategy(Enum):
    """Outcome of a hierarchy-aware cache lookup."""
    HIT = "hit"                           # Exact, unexpired entry
    DERIVABLE = "derivable"               # A cached superset covers the request
    SUPERSET_NEEDED = "superset-needed"   # Only narrower overlapping entries exist
    MISS = "miss"


@dataclass(frozen=True)
class DataScope:
    """
    Identifies which node of the hierarchy a request targets.

    A keyset scope's app_id names the owning application. When it is unknown
    only account-level entries can act as its superset.
    """
    level: ScopeLevel
    account_id: Union[int, str]
    app_id: Optional[Union[int, str]] = None
    key_id: Optional[Union[int, str]] = None

    def __post_init__(self):
        if isinstance(self.level, str):
            object.__setattr__(self, "level", ScopeLevel(self.level))
        if self.level == ScopeLevel.APP and self.app_id is None:
            raise ValueError("App scope requires app_id")
        if self.level == ScopeLevel.KEYSET and self.key_id is None:
            raise ValueError("Keyset scope requires key_id")

    @classmethod
    def account(cls, account_id) -> "DataScope":
        return cls(ScopeLevel.ACCOUNT, account_id)

    @classmethod
    def app(cls, account_id, app_id) -> "DataScope":
        return cls(ScopeLevel.APP, account_id, app_id=app_id)

    @classmethod
    def keyset(cls, account_id, key_id, app_id=None) -> "DataScope":
        return cls(ScopeLevel.KEYSET, account_id, app_id=app_id, key_id=key_id)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON response."""
        return {
            "level": self.level.value,
            "accountId": self.account_id,
            "appId": self.app_id,
            "keyId": self.key_id,
        }


def _iso(value: Union[str, date]) -> str:
    if isinstance(value, date):
        return value.isoformat()
    return value


@dataclass(frozen=True)
class FetchParams:
    """
    Inclusive calendar-date window (YYYY-MM-DD) plus auxiliary filters.

    Dates compare lexicographically, which matches chronological order for
    ISO 8601 strings.
    """
    start_date: str
    end_date: str
    filters: Dict[str, Any] = field(default_factory=dict, hash=False)

    def __post_init__(self):
        object.__setattr__(self, "start_date", _iso(self.start_date))
        object.__setattr__(self, "end_date", _iso(self.end_date))
        if self.start_date > self.end_date:
            raise ValueError(
                f"start_date {self.start_date} is after end_date {self.end_date}"
            )

    @property
    def filter_key(self) -> str:
        """Deterministic rendering of the auxiliary filters."""
        return ",".join(
            f"{k}={v}" for k, v in sorted(self.filters.items()) if v is not None
        )

    def same_filters(self, other: "FetchParams") -> bool:
        return self.filter_key == other.filter_key


def generate_cache_key(scope: DataScope, params: FetchParams) -> str:
    """Generate the exact-match key for a (scope, params) pair."""
    app_key = scope.app_id if scope.app_id is not None else "all"
    key_key = scope.key_id if scope.key_id is not None else "all"
    key = (
        f"{scope.level.value}:{scope.account_id}:{app_key}:{key_key}:"
        f"{params.start_date}:{params.end_date}"
    )
    if params.filters:
        key += f":{params.filter_key}"
    return key


@dataclass
class CacheEntry:
    """
    A cached payload with the scope and window it was fetched for.
    """
    payload: Any
    fetched_at: float
    scope: DataScope
    params: FetchParams
    access_count: int = 0
    last_accessed_at: float = 0.0

    @property
    def key(self) -> str:
        return generate_cache_key(self.scope, self.params)

    def age_seconds(self, now: float) -> float:
        """Seconds since data was fetched."""
        return now - self.fetched_at

    def is_expired(self, now: float, max_age_seconds: float) -> bool:
        return self.age_seconds(now) > max_age_seconds

    def touch(self, now: float) -> None:
        """Record a read or derivation use."""
        self.access_count += 1
        self.last_accessed_at = now


@dataclass
class CacheMetrics:
    """
    Process-lifetime counters; everything but size only ever grows until reset.
    """
    hits: int = 0
    misses: int = 0
    derivations: int = 0
    evictions: int = 0
    size: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0

    def to_dict(self) -> dict:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "derivations": self.derivations,
            "evictions": self.evictions,
            "size": self.size,
        }


@dataclass
class StrategyResult:
    """Result of CacheHierarchyManager.check_strategy."""
    strategy: CacheStrategy
    entry: Optional[CacheEntry] = None
