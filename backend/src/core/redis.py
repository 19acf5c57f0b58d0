"""Redis client with connection pooling and graceful fallback."""
import builtins
import logging
from typing import TYPE_CHECKING

from redis.asyncio import ConnectionPool, Redis
from redis.exceptions import RedisError

if TYPE_CHECKING:
    from core.config import Settings

logger = logging.getLogger(__name__)


class RedisClient:
    """Async Redis client with connection pooling and graceful fallback."""

    def __init__(self, url: str, enabled: bool = True, pool_size: int = 20) -> None:
        self._url = url
        self._enabled = enabled
        self._pool_size = pool_size
        self._pool: ConnectionPool | None = None
        self._client: Redis | None = None

    async def connect(self) -> None:
        """Initialize connection pool and verify the server is reachable."""
        if not self._enabled:
            logger.info("Redis disabled by configuration")
            return
        try:
            self._pool = ConnectionPool.from_url(self._url, max_connections=self._pool_size)
            self._client = Redis(connection_pool=self._pool)
            # Verify connection
            await self._client.ping()
            logger.info("Redis connected successfully")
        except RedisError as e:
            logger.warning("Redis connection failed: %s", e)
            self._client = None
            self._pool = None

    async def close(self) -> None:
        """Close connection pool."""
        if self._client:
            await self._client.aclose()
            self._client = None
            self._pool = None
            logger.info("Redis connection closed")

    @property
    def is_connected(self) -> bool:
        """Check if client is connected."""
        return self._client is not None

    async def ping(self) -> bool:
        """Check Redis connectivity."""
        if not self._client:
            return False
        try:
            return await self._client.ping()
        except RedisError:
            return False

    async def get(self, key: str) -> bytes | None:
        """Get value, returns None if Redis unavailable."""
        if not self._client:
            return None
        try:
            return await self._client.get(key)
        except RedisError as e:
            logger.warning("Redis GET failed: %s", e)
            return None

    async def set(self, key: str, value: str | bytes) -> bool:
        """Set value without expiry, returns False if Redis unavailable."""
        if not self._client:
            return False
        try:
            await self._client.set(key, value)
            return True
        except RedisError as e:
            logger.warning("Redis SET failed: %s", e)
            return False

    async def setex(self, key: str, seconds: int, value: str | bytes) -> bool:
        """Set value with expiry, returns False if Redis unavailable."""
        if not self._client:
            return False
        try:
            await self._client.setex(key, seconds, value)
            return True
        except RedisError as e:
            logger.warning("Redis SETEX failed: %s", e)
            return False

    async def delete(self, *keys: str | bytes) -> bool:
        """Delete key(s), returns False if Redis unavailable."""
        if not self._client:
            return False
        if not keys:
            return True
        try:
            await self._client.delete(*keys)
            return True
        except RedisError as e:
            logger.warning("Redis DELETE failed: %s", e)
            return False

    async def sadd(self, key: str, *members: str) -> bool:
        """Add member(s) to a set, returns False if Redis unavailable."""
        if not self._client:
            return False
        try:
            await self._client.sadd(key, *members)
            return True
        except RedisError as e:
            logger.warning("Redis SADD failed: %s", e)
            return False

    async def srem(self, key: str, *members: str | bytes) -> bool:
        """Remove member(s) from a set, returns False if Redis unavailable."""
        if not self._client:
            return False
        if not members:
            return True
        try:
            await self._client.srem(key, *members)
            return True
        except RedisError as e:
            logger.warning("Redis SREM failed: %s", e)
            return False

    async def smembers(self, key: str) -> builtins.set[bytes]:
        """Get set members, returns an empty set if Redis unavailable."""
        if not self._client:
            return builtins.set()
        try:
            return await self._client.smembers(key)
        except RedisError as e:
            logger.warning("Redis SMEMBERS failed: %s", e)
            return builtins.set()

    async def ttl(self, key: str) -> int:
        """
        Get the remaining lifetime of a key in seconds.

        Follows Redis semantics: -1 for a key without expiry, -2 for a missing
        key. Returns -2 if Redis unavailable.
        """
        if not self._client:
            return -2
        try:
            return await self._client.ttl(key)
        except RedisError as e:
            logger.warning("Redis TTL failed: %s", e)
            return -2

    async def expire(self, key: str, seconds: int) -> bool:
        """Set a key's lifetime, returns False if Redis unavailable."""
        if not self._client:
            return False
        try:
            await self._client.expire(key, seconds)
            return True
        except RedisError as e:
            logger.warning("Redis EXPIRE failed: %s", e)
            return False

    async def persist(self, key: str) -> bool:
        """Remove a key's lifetime, returns False if Redis unavailable."""
        if not self._client:
            return False
        try:
            await self._client.persist(key)
            return True
        except RedisError as e:
            logger.warning("Redis PERSIST failed: %s", e)
            return False

    async def flushdb(self) -> bool:
        """Flush current database (for testing). Returns False if unavailable."""
        if not self._client:
            return False
        try:
            await self._client.flushdb()
            return True
        except RedisError as e:
            logger.warning("Redis FLUSHDB failed: %s", e)
            return False


# Global Redis client state using a container to avoid global statement
class _RedisState:
    """Container for global Redis client state."""

    client: RedisClient | None = None


_state = _RedisState()


def get_redis_client() -> RedisClient | None:
    """Get the global Redis client instance."""
    return _state.client


def set_redis_client(client: RedisClient | None) -> None:
    """Set the global Redis client instance."""
    _state.client = client


def create_redis_client(settings: "Settings") -> RedisClient:
    """Build a Redis client from the application settings (call connect() before use)."""
    return RedisClient(
        url=settings.redis_url,
        enabled=settings.redis_enabled,
        pool_size=settings.redis_pool_size,
    )
