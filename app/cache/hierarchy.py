"""
Scope and date-range reasoning for the account > app > keyset hierarchy.

Everything here is a pure predicate over well-formed inputs.
"""
from .core import DataScope, ScopeLevel


# Higher number = broader scope
SCOPE_ORDINALS = {
    ScopeLevel.ACCOUNT: 3,
    ScopeLevel.APP: 2,
    ScopeLevel.KEYSET: 1,
}


def get_scope_level(scope: DataScope) -> int:
    """Ordinal breadth of a scope."""
    return SCOPE_ORDINALS[scope.level]


def same_id(a, b) -> bool:
    """Compare ids the way cache keys render them, so 7 and "7" match."""
    if a is None or b is None:
        return a is b
    return str(a) == str(b)


def is_superset(a: DataScope, b: DataScope) -> bool:
    """
    Check whether scope a strictly contains scope b.

    Irreflexive and transitive:
    - account contains every app and keyset of the same account
    - app contains the keysets that carry its app_id
    """
    if not same_id(a.account_id, b.account_id):
        return False

    if get_scope_level(a) <= get_scope_level(b):
        return False

    if b.level == ScopeLevel.APP:
        return a.level == ScopeLevel.ACCOUNT

    if b.level == ScopeLevel.KEYSET:
        if a.level == ScopeLevel.ACCOUNT:
            return True
        return b.app_id is not None and same_id(a.app_id, b.app_id)

    return False


def is_subset(a: DataScope, b: DataScope) -> bool:
    """Check whether scope a is strictly contained by scope b."""
    return is_superset(b, a)


def date_contains(
    container_start: str,
    container_end: str,
    start: str,
    end: str,
) -> bool:
    """Check if [container_start, container_end] covers [start, end]."""
    return container_start <= start and container_end >= end


def date_overlaps(start1: str, end1: str, start2: str, end2: str) -> bool:
    """Check if two inclusive date ranges share at least one day."""
    return start1 <= end2 and start2 <= end1
