"""Per-kind object caches."""

from concrnt.cache.store import (
    NOT_FOUND,
    CacheResult,
    Found,
    Indeterminate,
    NotFound,
    ObjectCache,
    profile_key,
)

__all__ = [
    "NOT_FOUND",
    "CacheResult",
    "Found",
    "Indeterminate",
    "NotFound",
    "ObjectCache",
    "profile_key",
]
