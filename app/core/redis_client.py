"""Redis client, doctor cache and notification channel helpers.

Redis is an optional accelerator here: the doctor directory cache and the
notification push channel both degrade gracefully when it is unreachable.
"""

import json
from collections.abc import Iterable
from typing import Any, cast

import redis

from app.config import settings

# Global Redis client instance
_redis_client: redis.Redis | None = None


def get_redis_client() -> redis.Redis:
    """
    Get or create the shared Redis client.

    Returns:
        Redis client instance
    """
    global _redis_client

    if _redis_client is None:
        _redis_client = redis.Redis(
            host=settings.redis_host,
            port=settings.redis_port,
            # Unauthenticated local Redis rejects AUTH, so only send it with a password
            username=settings.redis_username if settings.redis_password else None,
            password=settings.redis_password or None,
            decode_responses=settings.redis_decode_responses,
            socket_connect_timeout=5,
            socket_timeout=5,
            socket_keepalive=True,
            health_check_interval=30,
        )

    return _redis_client


async def check_redis_connection() -> bool:
    """Ping Redis; any failure reads as unhealthy."""
    try:
        return bool(get_redis_client().ping())
    except Exception:
        return False


def close_redis_connection() -> None:
    """Close the shared client so the next call reconnects."""
    global _redis_client

    if _redis_client is not None:
        _redis_client.close()
        _redis_client = None


def notification_channel(user_id: Any) -> str:
    """Pub/sub channel carrying a user's notifications."""
    return f"notifications:{user_id}"


class CacheManager:
    """JSON cache over Redis. Cache failures degrade to misses."""

    # Keys deleted per DEL command during pattern invalidation
    DELETE_BATCH = 500

    def __init__(self, redis_client: redis.Redis):
        """Initialize cache manager with Redis client."""
        self.redis = redis_client

    def get_json(self, key: str) -> Any | None:
        """
        Get a cached value.

        Args:
            key: Cache key

        Returns:
            Deserialized object, or None on a miss or any Redis error
        """
        try:
            value = cast(str | None, self.redis.get(key))
            return json.loads(value) if value else None
        except Exception:
            return None

    def set_json(
        self,
        key: str,
        value: Any,
        ttl: int | None = None,
    ) -> bool:
        """
        Cache a value as JSON; UUIDs and datetimes are stored as strings.

        Args:
            key: Cache key
            value: Value to serialize and cache
            ttl: Time to live in seconds

        Returns:
            True if stored, False otherwise
        """
        try:
            payload = json.dumps(value, default=str)
            if ttl:
                self.redis.setex(key, ttl, payload)
            else:
                self.redis.set(key, payload)
            return True
        except Exception:
            return False

    def delete_pattern(self, pattern: str) -> int:
        """
        Delete all keys matching a pattern.

        Uses SCAN rather than KEYS so large keyspaces do not block Redis.

        Args:
            pattern: Redis key pattern (e.g., 'doctor:list:*')

        Returns:
            Number of keys deleted
        """
        try:
            return self._delete_batched(cast(Iterable[str], self.redis.scan_iter(match=pattern)))
        except Exception:
            return 0

    def _delete_batched(self, keys: Iterable[str]) -> int:
        deleted = 0
        batch: list[str] = []
        for key in keys:
            batch.append(key)
            if len(batch) >= self.DELETE_BATCH:
                deleted += cast(int, self.redis.delete(*batch))
                batch = []
        if batch:
            deleted += cast(int, self.redis.delete(*batch))
        return deleted
