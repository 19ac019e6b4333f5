"""
Staleness detection and detached background refresh.

Hits from the primary cache or the durable store are served as-is. When the
entry is older than the staleness threshold a refresh is queued on a
dedicated thread pool; the caller never waits for it.
"""
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, Optional, Set

from .coalescer import RequestCoalescer
from .core import CacheKey, Deadline

logger = logging.getLogger("cache.refresher")

DEFAULT_STALENESS_THRESHOLD = 900  # 15 minutes
DEFAULT_REFRESH_TIMEOUT = 30.0

RefreshFn = Callable[[CacheKey, Deadline], bytes]


class BackgroundRefresher:
    """
    Schedules at most one in-flight refresh per key.

    The refresh itself runs under the coalescer's ``refresh:`` namespace and
    with its own Deadline, so it is unaffected by the request that noticed
    the staleness finishing or being cancelled.
    """

    def __init__(
        self,
        coalescer: RequestCoalescer,
        threshold_seconds: float = DEFAULT_STALENESS_THRESHOLD,
        refresh_timeout: float = DEFAULT_REFRESH_TIMEOUT,
        max_workers: int = 4,
        clock: Callable[[], float] = time.time,
    ):
        self._coalescer = coalescer
        self.threshold_seconds = threshold_seconds
        self.refresh_timeout = refresh_timeout
        self._clock = clock
        self._refresh_fn: Optional[RefreshFn] = None

        self._pool = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix="cache-refresh",
        )
        self._scheduled: Set[str] = set()
        self._lock = threading.Lock()
        self._stats = {
            "scheduled": 0,
            "deduplicated": 0,
            "completed": 0,
            "failed": 0,
        }

    def attach(self, refresh_fn: RefreshFn) -> None:
        """Set the function that re-fills a key from the origin."""
        self._refresh_fn = refresh_fn

    def is_stale(self, fetched_at: float, now: Optional[float] = None) -> bool:
        now = self._clock() if now is None else now
        return (now - fetched_at) > self.threshold_seconds

    def observe(self, key: CacheKey, fetched_at: Optional[float]) -> bool:
        """
        Check a hit's age and schedule a refresh when it is stale.

        Returns:
            True if this observation scheduled a refresh
        """
        if fetched_at is None:
            return False
        now = self._clock()
        if not self.is_stale(fetched_at, now):
            return False
        logger.info(f"STALE: {key} [age={now - fetched_at:.0f}s > {self.threshold_seconds}s]")
        return self.schedule(key)

    def schedule(self, key: CacheKey) -> bool:
        """Queue a refresh unless one is already queued or running."""
        if self._refresh_fn is None:
            logger.warning(f"No refresh function attached, skipping {key}")
            return False

        name = str(key)
        with self._lock:
            if name in self._scheduled:
                self._stats["deduplicated"] += 1
                logger.debug(f"Already refreshing: {name}")
                return False
            self._scheduled.add(name)
            self._stats["scheduled"] += 1

        try:
            self._pool.submit(self._run, key)
        except RuntimeError as e:
            # pool already shut down
            with self._lock:
                self._scheduled.discard(name)
            logger.warning(f"Cannot schedule refresh for {name}: {e}")
            return False
        return True

    def _run(self, key: CacheKey) -> None:
        name = str(key)
        refresh_fn = self._refresh_fn
        try:
            logger.debug(f"Background refresh started: {name}")
            payload = self._coalescer.do(
                RequestCoalescer.refresh_key(name),
                lambda: refresh_fn(key, Deadline(self.refresh_timeout)),
            )
            with self._lock:
                self._stats["completed"] += 1
            logger.info(f"Background refresh complete: {name} bytes={len(payload or b'')}")
        except Exception as e:
            with self._lock:
                self._stats["failed"] += 1
            logger.warning(f"Background refresh failed: {name} - {e}")
        finally:
            with self._lock:
                self._scheduled.discard(name)

    def pending(self, key: CacheKey) -> bool:
        with self._lock:
            return str(key) in self._scheduled

    def shutdown(self, wait: bool = False) -> None:
        self._pool.shutdown(wait=wait)

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                **self._stats,
                "in_flight": len(self._scheduled),
                "threshold_seconds": self.threshold_seconds,
            }
