"""
Redis primary cache tier.

Each payload is stored under its cache key with a TTL, next to a sidecar
``<key>:fetched_utc`` entry holding the fetch time as unix seconds.
"""
import logging
from typing import Optional, Tuple

import redis

from ..errors import TransientTierError
from .core import CacheEntry, CacheKey, unix_now

logger = logging.getLogger("cache.primary")

DEFAULT_TTL = 600  # 10 minutes


def parse_redis_addr(addr: str) -> Tuple[str, int]:
    """Split ``host:port`` (port defaults to 6379)."""
    host, _, port = addr.rpartition(":")
    if not host:
        return addr or "localhost", 6379
    return host, int(port)


class PrimaryCache:
    """
    Thin wrapper over a shared redis-py client.

    Redis failures surface as TransientTierError so the orchestrator can skip
    the tier; a missing key is simply None.
    """

    def __init__(self, client: "redis.Redis", ttl_seconds: int = DEFAULT_TTL):
        self.client = client
        self.ttl_seconds = ttl_seconds

    @classmethod
    def from_settings(cls, settings) -> "PrimaryCache":
        host, port = parse_redis_addr(settings.redis_addr)
        client = redis.Redis(
            host=host,
            port=port,
            password=settings.redis_password or None,
            db=settings.redis_db,
            socket_timeout=settings.redis_socket_timeout,
            socket_connect_timeout=settings.redis_socket_timeout,
            decode_responses=False,  # payloads are raw bytes
        )
        return cls(client, ttl_seconds=settings.primary_ttl_seconds)

    def get(self, key: CacheKey) -> Optional[bytes]:
        """Cached payload, or None on a miss."""
        try:
            value = self.client.get(str(key))
        except redis.RedisError as e:
            raise TransientTierError(f"GET {key} failed: {e}", tier="primary") from e
        if value is None:
            logger.info(f"[redis] MISS key={key}")
            return None
        logger.info(f"[redis] HIT key={key} bytes={len(value)}")
        return value

    def get_fetched_at(self, key: CacheKey) -> Optional[int]:
        """Fetch time from the sidecar entry, None when absent or garbled."""
        try:
            raw = self.client.get(key.fetched_at_key)
        except redis.RedisError as e:
            raise TransientTierError(f"GET {key.fetched_at_key} failed: {e}", tier="primary") from e
        if raw is None:
            return None
        try:
            return int(raw)
        except (TypeError, ValueError):
            logger.warning(f"[redis] unreadable fetched_at key={key.fetched_at_key} value={raw!r}")
            return None

    def get_entry(self, key: CacheKey) -> Optional[CacheEntry]:
        """
        Payload and fetch time together.

        fetched_at is None when the sidecar is missing or unreadable.
        """
        payload = self.get(key)
        if not payload:
            return None
        fetched_at = self.get_fetched_at(key)
        return CacheEntry(payload=payload, fetched_at=fetched_at, ttl_seconds=self.ttl_seconds)

    def put(self, key: CacheKey, payload: bytes, fetched_at: Optional[int] = None) -> None:
        """Write payload and sidecar with the same TTL."""
        fetched_at = unix_now() if fetched_at is None else fetched_at
        try:
            pipe = self.client.pipeline(transaction=False)
            pipe.set(str(key), payload, ex=self.ttl_seconds)
            pipe.set(key.fetched_at_key, str(fetched_at), ex=self.ttl_seconds)
            pipe.execute()
        except redis.RedisError as e:
            raise TransientTierError(f"SET {key} failed: {e}", tier="primary") from e
        logger.info(f"[redis] SET key={key} ttl={self.ttl_seconds}s bytes={len(payload)}")

    def ping(self) -> bool:
        try:
            return bool(self.client.ping())
        except redis.RedisError:
            return False
