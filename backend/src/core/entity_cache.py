"""
Two-tier entity cache: an in-process memory cache and a Redis-backed persistent cache.

Both tiers support cache tags. A tag groups cache entries so they can be
invalidated together (e.g. every entry that refers to developer X, or every
entry owned by user 42) without knowing their cache ids.
"""
import logging
import time
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from core.redis import RedisClient

logger = logging.getLogger(__name__)

# Cache schema version - included in all persistent cache keys
# (e.g., "apigee_edge:v1:apigee_edge_entity:values:developer:...").
#
# Bump this version when the serialized entity format changes. Old entries are
# then never found (cache miss) and expire naturally, so deployments don't need
# an explicit cache flush.
CACHE_SCHEMA_VERSION = 1

KEY_PREFIX = "apigee_edge"
DEFAULT_BIN = "apigee_edge_entity"


@dataclass
class _MemoryItem:
    value: Any
    expires_at: float | None
    tags: frozenset[str] = field(default_factory=frozenset)

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and self.expires_at <= now


class MemoryCache:
    """
    In-process cache holding live objects for the lifetime of the process.

    Values are stored as-is (no serialization), so callers share the cached
    instance.
    """

    def __init__(self) -> None:
        self._items: dict[str, _MemoryItem] = {}

    def get(self, cid: str) -> Any | None:
        """Get a cached value, None on miss or expiry."""
        item = self._items.get(cid)
        if item is None:
            return None
        if item.is_expired(time.time()):
            del self._items[cid]
            return None
        return item.value

    def values(self) -> list[Any]:
        """All live (unexpired) cached values."""
        now = time.time()
        return [item.value for item in self._items.values() if not item.is_expired(now)]

    def set(
        self,
        cid: str,
        value: Any,
        expire: int | None = None,
        tags: Iterable[str] = (),
    ) -> None:
        """
        Cache a value.

        Args:
            cid: Cache id.
            value: The value to store.
            expire: Lifetime in seconds, None for no expiry.
            tags: Cache tags the entry is invalidated by.
        """
        expires_at = time.time() + expire if expire is not None else None
        self._items[cid] = _MemoryItem(value, expires_at, frozenset(tags))

    def delete(self, *cids: str) -> None:
        """Remove entries by cache id."""
        for cid in cids:
            self._items.pop(cid, None)

    def invalidate_tags(self, tags: Iterable[str]) -> None:
        """Remove every entry carrying at least one of the tags."""
        tags = frozenset(tags)
        stale = [cid for cid, item in self._items.items() if item.tags & tags]
        self.delete(*stale)

    def __len__(self) -> int:
        return len(self._items)


class PersistentCache:
    """
    Redis-backed cache bin with tag based invalidation.

    Each tag is stored as a Redis set holding the keys of the entries it
    covers, and each entry has an index set listing its tags. A tag set lives
    at least as long as the longest-lived entry it covers. Removing an entry
    removes its key from every tag set, so tag sets don't outgrow their
    entries.

    All operations degrade to misses/no-ops when Redis is disabled or down
    (see RedisClient), so the cache never raises.
    """

    def __init__(self, redis_client: "RedisClient", bin_name: str = DEFAULT_BIN) -> None:
        """Initialize the cache bin with a Redis client."""
        self._redis = redis_client
        self._bin = bin_name

    def _key(self, cid: str) -> str:
        """Generate the Redis key for a cache id."""
        return f"{KEY_PREFIX}:v{CACHE_SCHEMA_VERSION}:{self._bin}:{cid}"

    def _tag_key(self, tag: str) -> str:
        """Generate the Redis key of the set tracking a tag."""
        return f"{KEY_PREFIX}:v{CACHE_SCHEMA_VERSION}:tag:{tag}"

    def _index_key(self, key: str | bytes) -> str:
        """Generate the Redis key of the set listing the tags of an entry key."""
        if isinstance(key, bytes):
            key = key.decode("utf-8")
        return key.replace(
            f"{KEY_PREFIX}:v{CACHE_SCHEMA_VERSION}:",
            f"{KEY_PREFIX}:v{CACHE_SCHEMA_VERSION}:tags_of:",
            1,
        )

    async def get(self, cid: str) -> str | None:
        """
        Get cached data.

        Args:
            cid: Cache id.

        Returns:
            The cached string on hit, None on miss.
        """
        data = await self._redis.get(self._key(cid))
        if data is None:
            logger.debug("persistent_cache_miss bin=%s cid=%s", self._bin, cid)
            return None
        logger.debug("persistent_cache_hit bin=%s cid=%s", self._bin, cid)
        return data.decode("utf-8") if isinstance(data, bytes) else data

    async def set(
        self,
        cid: str,
        data: str,
        expire: int | None = None,
        tags: Iterable[str] = (),
    ) -> None:
        """
        Store data under a cache id.

        Args:
            cid: Cache id.
            data: Serialized value.
            expire: Lifetime in seconds, None for no expiry.
            tags: Cache tags the entry is invalidated by.
        """
        key = self._key(cid)
        index_key = self._index_key(key)
        tags = list(dict.fromkeys(tags))

        # Tags the entry carried before this write no longer cover it.
        previous = {tag.decode("utf-8") for tag in await self._redis.smembers(index_key)}
        for tag in previous.difference(tags):
            await self._redis.srem(self._tag_key(tag), key)
        await self._redis.delete(index_key)

        if expire is None:
            await self._redis.set(key, data)
        else:
            await self._redis.setex(key, expire, data)

        for tag in tags:
            await self._add_to_tag(self._tag_key(tag), key, expire)
        if tags:
            await self._redis.sadd(index_key, *tags)
            if expire is not None:
                await self._redis.expire(index_key, expire)

        logger.debug("persistent_cache_set bin=%s cid=%s expire=%s", self._bin, cid, expire)

    async def _add_to_tag(self, tag_key: str, key: str, expire: int | None) -> None:
        """Add an entry key to a tag set, extending the set's lifetime to cover the entry."""
        tag_ttl = await self._redis.ttl(tag_key)
        await self._redis.sadd(tag_key, key)
        if expire is None:
            await self._redis.persist(tag_key)
        # -1: the set already never expires.
        elif tag_ttl != -1 and tag_ttl < expire:
            await self._redis.expire(tag_key, expire)

    async def _delete_keys(self, keys: Iterable[str | bytes]) -> None:
        """Delete entry keys along with their tag index, and drop them from their tag sets."""
        keys = list(keys)
        if not keys:
            return
        index_keys = []
        for key in keys:
            index_key = self._index_key(key)
            index_keys.append(index_key)
            for tag in await self._redis.smembers(index_key):
                await self._redis.srem(self._tag_key(tag.decode("utf-8")), key)
        await self._redis.delete(*keys, *index_keys)

    async def delete_multiple(self, cids: Iterable[str]) -> None:
        """Remove entries by cache id."""
        await self._delete_keys(self._key(cid) for cid in cids)

    async def invalidate_tags(self, tags: Iterable[str]) -> None:
        """Remove every entry carrying at least one of the tags."""
        for tag in tags:
            tag_key = self._tag_key(tag)
            members = await self._redis.smembers(tag_key)
            await self._delete_keys(members)
            await self._redis.delete(tag_key)
            logger.debug("persistent_cache_invalidate tag=%s entries=%s", tag, len(members))
