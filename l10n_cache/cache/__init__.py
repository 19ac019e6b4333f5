"""
Tiered read-through cache: Redis, S3 versioned store, Tolgee origin.

The orchestrator lives in ``l10n_cache.cache.manager``; it depends on the
origin client, which itself imports the core types from here.
"""
from .core import (
    EMPTY_PAYLOAD,
    CacheEntry,
    CacheKey,
    CacheSource,
    Deadline,
    LookupResult,
    OutputMode,
    ResourceType,
)
from .coalescer import RequestCoalescer
from .primary import PrimaryCache
from .durable import DurableObject, DurableVersionedStore
from .refresher import BackgroundRefresher

__all__ = [
    # Core types
    "EMPTY_PAYLOAD",
    "CacheEntry",
    "CacheKey",
    "CacheSource",
    "Deadline",
    "LookupResult",
    "OutputMode",
    "ResourceType",
    # Coalescing
    "RequestCoalescer",
    # Tiers
    "PrimaryCache",
    "DurableObject",
    "DurableVersionedStore",
    # Refresh
    "BackgroundRefresher",
]
