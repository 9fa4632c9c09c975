"""
Pydantic schemas for API request/response models
"""
from pydantic import BaseModel
from typing import Any, Dict, Optional

from app.cache import CacheMetrics, DataScope, ScopeLevel
from app.fetcher import FetchResult


# ===== FETCH SCHEMAS =====

class FetchResponse(BaseModel):
    """Payload plus cache provenance"""
    data: Any
    from_cache: bool
    strategy: str
    fetch_time_ms: Optional[float] = None
    skipped: bool = False

    @classmethod
    def from_result(cls, result: FetchResult) -> "FetchResponse":
        return cls(
            data=result.payload,
            from_cache=result.from_cache,
            strategy=result.strategy.value,
            fetch_time_ms=round(result.fetch_time_ms, 1) if result.fetch_time_ms is not None else None,
            skipped=result.skipped,
        )


# ===== CACHE SCHEMAS =====

class CacheMetricsSchema(BaseModel):
    """Counters for one payload category"""
    hits: int
    misses: int
    derivations: int
    evictions: int
    size: int

    @classmethod
    def from_metrics(cls, metrics: CacheMetrics) -> "CacheMetricsSchema":
        return cls(**metrics.to_dict())


class ScopeSchema(BaseModel):
    """Hierarchy node to invalidate"""
    level: ScopeLevel
    account_id: int
    app_id: Optional[int] = None
    key_id: Optional[int] = None

    def to_scope(self) -> DataScope:
        return DataScope(self.level, self.account_id, app_id=self.app_id, key_id=self.key_id)


class InvalidateResponse(BaseModel):
    """Result of an invalidation"""
    removed: int
    scope: Optional[Dict[str, Any]] = None
