"""
Hierarchical caching for account > app > keyset data, with derivation from
cached supersets and in-flight request deduplication.
"""
from .core import (
    CacheEntry,
    CacheMetrics,
    CacheStrategy,
    DataScope,
    FetchParams,
    ScopeLevel,
    StrategyResult,
    generate_cache_key,
)
from .hierarchy import date_contains, date_overlaps, get_scope_level, is_subset, is_superset, same_id
from .categories import (
    CATEGORY_CONFIG,
    PayloadCategory,
    get_cache_limits,
    get_empty_payload,
)
from .derivation import (
    DerivationStrategy,
    IdentityFilterDerivation,
    NoDerivation,
    get_derivation_for_category,
)
from .store import CacheStore
from .manager import CacheHierarchyManager
from .coalescer import InFlightRequestRegistry

__all__ = [
    # Core types
    "CacheEntry",
    "CacheMetrics",
    "CacheStrategy",
    "DataScope",
    "FetchParams",
    "ScopeLevel",
    "StrategyResult",
    "generate_cache_key",
    # Scope algebra
    "date_contains",
    "date_overlaps",
    "get_scope_level",
    "is_subset",
    "is_superset",
    "same_id",
    # Category policies
    "CATEGORY_CONFIG",
    "PayloadCategory",
    "get_cache_limits",
    "get_empty_payload",
    # Derivation
    "DerivationStrategy",
    "IdentityFilterDerivation",
    "NoDerivation",
    "get_derivation_for_category",
    # Storage
    "CacheStore",
    "CacheHierarchyManager",
    # Coalescing
    "InFlightRequestRegistry",
]
