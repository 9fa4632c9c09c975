"""
Strategies for producing a narrower-scope payload from a cached broader one.
"""
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Tuple

from .categories import (
    DERIVATION_IDENTITY_FILTER,
    PayloadCategory,
    get_category_config,
)
from .core import CacheEntry, DataScope, ScopeLevel

logger = logging.getLogger("cache.derivation")


class DerivationStrategy(ABC):
    """
    Derives a payload for a request scope from a cached superset entry.

    Returning None means the derivation was declined and the caller has to
    fetch the requested scope instead.
    """

    @abstractmethod
    def derive(self, request_scope: DataScope, superset_entry: CacheEntry) -> Optional[Any]:
        pass


class NoDerivation(DerivationStrategy):
    """
    For pre-aggregated time series.

    Upstream aggregates usage per requested scope, so an account total cannot
    be split into per-app or per-keyset numbers on the client.
    """

    def derive(self, request_scope: DataScope, superset_entry: CacheEntry) -> Optional[Any]:
        return None


def _item_value(item: Any, field_name: str) -> Any:
    if isinstance(item, dict):
        return item.get(field_name)
    return getattr(item, field_name, None)


class IdentityFilterDerivation(DerivationStrategy):
    """
    For list payloads (apps, keysets).

    Same level returns the cached list unchanged; a narrower level keeps only
    the items whose identifying field matches the request scope.
    """

    def __init__(self, match_fields: Dict[ScopeLevel, Tuple[str, str]]):
        """
        Args:
            match_fields: request level -> (item field, scope attribute)
        """
        self.match_fields = match_fields

    def derive(self, request_scope: DataScope, superset_entry: CacheEntry) -> Optional[Any]:
        items = superset_entry.payload
        if request_scope.level == superset_entry.scope.level:
            return items

        if request_scope.level not in self.match_fields or items is None:
            return None

        item_field, scope_attr = self.match_fields[request_scope.level]
        wanted = getattr(request_scope, scope_attr)
        if wanted is None:
            logger.debug(f"Cannot filter by {item_field}: request has no {scope_attr}")
            return None

        # Ids arrive as ints from the API but as strings from query params
        return [item for item in items if str(_item_value(item, item_field)) == str(wanted)]


def get_derivation_for_category(category: PayloadCategory) -> DerivationStrategy:
    """Build the derivation strategy configured for a payload category."""
    config = get_category_config(category)
    if config["derivation"] == DERIVATION_IDENTITY_FILTER:
        return IdentityFilterDerivation(config["match_fields"])
    return NoDerivation()
