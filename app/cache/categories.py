"""
Payload categories and their per-category cache policy.
"""
from typing import Any, Dict, Tuple
from enum import Enum

from .core import ScopeLevel


class PayloadCategory(Enum):
    """Kinds of payload served by the fetch orchestrator."""
    USAGE = "usage"       # Pre-aggregated time series, one dict per scope
    APPS = "apps"         # List of app records
    KEYSETS = "keys"      # List of keyset records


# Derivation kinds
DERIVATION_NONE = "none"
DERIVATION_IDENTITY_FILTER = "identity_filter"


# Policy by category. max_entries / max_age_seconds of None fall back to settings.
# match_fields maps a request level to (item field, scope attribute) used to
# filter a broader cached list down to the requested node.
CATEGORY_CONFIG: Dict[PayloadCategory, Dict[str, Any]] = {
    PayloadCategory.USAGE: {
        "derivation": DERIVATION_NONE,   # Server-side aggregates can't be split
        "max_entries": None,
        "max_age_seconds": None,
    },
    PayloadCategory.APPS: {
        "derivation": DERIVATION_IDENTITY_FILTER,
        "match_fields": {
            ScopeLevel.APP: ("id", "app_id"),
            ScopeLevel.KEYSET: ("id", "app_id"),   # the keyset's owning app
        },
        "max_entries": None,
        "max_age_seconds": None,
    },
    PayloadCategory.KEYSETS: {
        "derivation": DERIVATION_IDENTITY_FILTER,
        "match_fields": {
            ScopeLevel.APP: ("app_id", "app_id"),
            ScopeLevel.KEYSET: ("id", "key_id"),
        },
        "max_entries": None,
        "max_age_seconds": None,
    },
}


def get_category_config(category: PayloadCategory) -> Dict[str, Any]:
    """Policy for a category (usage policy when unknown)."""
    return CATEGORY_CONFIG.get(category, CATEGORY_CONFIG[PayloadCategory.USAGE])


def get_cache_limits(
    category: PayloadCategory,
    default_max_entries: int,
    default_max_age_seconds: float,
) -> Tuple[int, float]:
    """
    Resolve store limits for a category.

    Args:
        category: The payload category
        default_max_entries: Fallback capacity (usually from settings)
        default_max_age_seconds: Fallback TTL (usually from settings)

    Returns:
        (max_entries, max_age_seconds)
    """
    config = get_category_config(category)
    max_entries = config.get("max_entries")
    max_age = config.get("max_age_seconds")
    if max_entries is None:
        max_entries = default_max_entries
    if max_age is None:
        max_age = default_max_age_seconds
    return max_entries, max_age


def get_empty_payload(category: PayloadCategory) -> Any:
    """Value returned when a fetch is skipped for lack of a session."""
    if category == PayloadCategory.USAGE:
        return {}
    return []
