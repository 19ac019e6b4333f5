"""
Construction of the process-wide clients.

Everything is built once at startup and handed to the orchestrator; nothing
here is a hidden global, so tests can pass fakes straight to
CacheOrchestrator instead.
"""
import logging
from typing import Optional

from config.settings import Settings

from .cache import (
    BackgroundRefresher,
    DurableVersionedStore,
    PrimaryCache,
    RequestCoalescer,
)
from .cache.manager import CacheOrchestrator
from .errors import ConfigError
from .origin import TolgeeClient

logger = logging.getLogger("deps")


def build_durable_store(settings: Settings) -> Optional[DurableVersionedStore]:
    """S3 tier, or None when disabled or misconfigured."""
    if not settings.s3_enabled:
        logger.info("[cache][s3] disabled via S3_ENABLED=false")
        return None
    try:
        store = DurableVersionedStore.from_settings(settings)
    except ConfigError as e:
        logger.warning(f"[cache][s3] disabled (config error): {e}")
        return None
    logger.info(f"[cache][s3] enabled bucket={store.bucket!r}")
    return store


def build_orchestrator(settings: Settings) -> CacheOrchestrator:
    coalescer = RequestCoalescer(timeout=settings.coalesce_timeout)
    refresher = BackgroundRefresher(
        coalescer,
        threshold_seconds=settings.staleness_threshold_seconds,
        refresh_timeout=settings.refresh_timeout_seconds,
        max_workers=settings.refresh_workers,
    )
    return CacheOrchestrator(
        origin=TolgeeClient.from_settings(settings),
        coalescer=coalescer,
        refresher=refresher,
        primary=PrimaryCache.from_settings(settings),
        durable=build_durable_store(settings),
    )
