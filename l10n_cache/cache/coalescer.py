"""
Per-key fill coalescing.

A miss on the primary tier turns into a fill: durable store first, then
Tolgee. Concurrent misses on one cache key must not each walk those tiers,
so the first lookup owns the fill and the rest join it and get the same
payload, or the same error.
"""
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger("cache.coalescer")

REFRESH_PREFIX = "refresh:"


@dataclass
class PendingFill:
    """A fill some lookup owns; joiners block on ``done``."""
    done: threading.Event = field(default_factory=threading.Event)
    payload: Optional[Any] = None
    error: Optional[BaseException] = None
    started_at: float = field(default_factory=time.time)
    joined: int = 0

    def outcome(self) -> Any:
        if self.error is not None:
            raise self.error
        return self.payload


class RequestCoalescer:
    """
    At most one fill per cache key at a time.

    Foreground fills use the cache key itself. Background refreshes use
    ``refresh_key(key)``, so a refresh never hands its result to a
    foreground lookup and a foreground lookup never waits on a refresh.
    """

    def __init__(self, timeout: Optional[float] = 30.0):
        # timeout bounds how long a joiner waits; None waits for the owner
        self._pending: Dict[str, PendingFill] = {}
        self._lock = threading.Lock()
        self._timeout = timeout
        self._fills = 0
        self._joined = 0

    @staticmethod
    def refresh_key(key: str) -> str:
        return f"{REFRESH_PREFIX}{key}"

    def do(self, key: str, fill_fn: Callable[[], Any]) -> Any:
        """
        Run ``fill_fn`` for ``key``, or join the fill already running.

        Every caller gets the owner's payload, or the owner's exception
        re-raised. A joiner raises TimeoutError if the fill outlasts the
        coalescer timeout.
        """
        pending, owner = self._claim(key)
        if owner:
            return self._run(key, pending, fill_fn)
        return self._join(key, pending)

    def _claim(self, key: str):
        with self._lock:
            pending = self._pending.get(key)
            if pending is not None:
                pending.joined += 1
                self._joined += 1
                logger.debug(f"[coalescer] join key={key} joined={pending.joined}")
                return pending, False
            pending = PendingFill()
            self._pending[key] = pending
            self._fills += 1
            logger.debug(f"[coalescer] fill key={key}")
            return pending, True

    def _run(self, key: str, pending: PendingFill, fill_fn: Callable[[], Any]) -> Any:
        try:
            pending.payload = fill_fn()
        except Exception as e:
            pending.error = e
            logger.warning(f"[coalescer] fill failed key={key}: {e}")
        finally:
            # unregister before waking joiners so the next miss starts a new fill
            with self._lock:
                if self._pending.get(key) is pending:
                    del self._pending[key]
            pending.done.set()
        return pending.outcome()

    def _join(self, key: str, pending: PendingFill) -> Any:
        if not pending.done.wait(timeout=self._timeout):
            waited = time.time() - pending.started_at
            logger.error(f"[coalescer] gave up on fill key={key} after {waited:.1f}s")
            raise TimeoutError(f"fill for {key} still running after {self._timeout}s")
        return pending.outcome()

    def in_flight(self, key: str) -> bool:
        with self._lock:
            return key in self._pending

    @property
    def active_fills(self) -> int:
        with self._lock:
            return len(self._pending)

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "active_fills": len(self._pending),
                "active_keys": list(self._pending.keys()),
                "fills": self._fills,
                "joined": self._joined,
            }
