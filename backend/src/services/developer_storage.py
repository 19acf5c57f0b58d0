"""
Storage for developers.

A developer can be referenced by email or by developer id (UUID) on Apigee
Edge, while the email is the primary id everywhere else. This storage keeps
both ids working for loading and caching:

- load_multiple() returns entities keyed by whichever id the caller passed.
- Every developer is cached twice in the persistent cache, once under each id.
- Cache resets drop the entries of both ids.
"""
import logging
from typing import TYPE_CHECKING
from urllib.parse import quote

from core.entity_cache import MemoryCache, PersistentCache
from schemas.developer import Developer
from services.developer_controller import DeveloperController
from services.entity_storage import EntityStorageBase, EntityType, SaveResult

if TYPE_CHECKING:
    import httpx

    from core.config import Settings
    from core.redis import RedisClient

logger = logging.getLogger(__name__)

DEVELOPER_ENTITY_TYPE_ID = "developer"


class DeveloperStorage(EntityStorageBase[Developer]):
    """Entity storage for developers."""

    entity_class = Developer

    def __init__(
        self,
        entity_type: EntityType,
        developer_controller: DeveloperController,
        cache: PersistentCache,
        memory_cache: MemoryCache,
        cache_expiration: int = -1,
    ) -> None:
        super().__init__(entity_type, developer_controller, cache, memory_cache, cache_expiration)
        self._developer_controller = developer_controller

    async def load_multiple(self, ids: list[str] | None = None) -> dict[str, Developer]:
        """
        Load developers by email and/or developer id.

        The base storage keys results by email, so a developer requested by
        developer id would not be found under the requested id. Results are
        re-keyed here by the ids the caller passed.

        Returns:
            Developers keyed by the passed ids, in the order of ids. Ids that
            don't resolve to a developer are omitted. Without ids, every
            developer keyed by email.
        """
        entities = await super().load_multiple(ids)
        if not ids:
            return entities

        by_developer_id = {
            entity.developer_id: entity for entity in entities.values() if entity.developer_id
        }
        merged = {**entities, **by_developer_id}
        # Apigee Edge matches emails case-insensitively.
        by_email = {entity.email.lower(): entity for entity in entities.values()}

        requested = {}
        for entity_id in ids:
            entity = merged.get(entity_id)
            if entity is None:
                entity = by_email.get(entity_id.lower())
            if entity is not None:
                requested[entity_id] = entity
        return requested

    async def _do_save(self, entity_id: str, entity: Developer) -> SaveResult:
        """
        Save the developer, then set its status with a separate API call.

        Apigee Edge ignores the status on create/update, it can only be
        changed through the status endpoint.
        """
        developer_status = entity.status
        result = await super()._do_save(entity_id, entity)

        # The original email has been used to address the update call.
        if result == SaveResult.UPDATED:
            entity.reset_original_email()

        with self._with_controller():
            await self._developer_controller.set_status(entity.id, developer_status)
        entity.status = developer_status

        return result

    def _encode_email(self, email: str) -> str:
        """Percent-encode an email for use in cache tags (e.g. accented characters)."""
        return quote(email, safe="")

    def get_persistent_cache_tags(self, entity: Developer) -> list[str]:
        """
        Cache tags for a developer.

        Besides the generic tags (with the email encoded), tags by developer id
        so invalidation works with both ids, and the owner's user tag so that
        changing or deleting the owner invalidates the cached developer.
        """
        encoded_email = self._encode_email(entity.id)
        tags = [
            tag.replace(entity.id, encoded_email)
            for tag in super().get_persistent_cache_tags(entity)
        ]
        if entity.developer_id:
            tags.append(f"{self.entity_type_id}:{entity.developer_id}")
            tags.append(f"{self.entity_type_id}:{entity.developer_id}:values")
        if entity.owner_id:
            tags.append(f"user:{entity.owner_id}")
        return list(dict.fromkeys(tags))

    async def set_persistent_cache(self, entities: dict[str, Developer]) -> None:
        """Cache developers under their email and, separately, their developer id."""
        await super().set_persistent_cache(entities)

        if not self.entity_type.persistent_cache:
            return

        expire = self.get_persistent_cache_expiration()
        for entity in entities.values():
            if not entity.developer_id:
                continue
            await self._cache.set(
                self.build_cache_id(entity.developer_id),
                entity.model_dump_json(),
                expire,
                self.get_persistent_cache_tags(entity),
            )

    async def reset_cache(self, ids: list[str] | None = None) -> None:
        """
        Drop cached developers by email or developer id.

        Each id is resolved to its (email, developer id) pair first, so the
        cache entries under the other id are dropped as well. Only the tags of
        those developers are invalidated. The class-wide "developer:values"
        tag is invalidated only as a fallback, when an id can't be resolved.
        """
        resolved = await self._resolve_cached_ids(ids) if ids else {}
        await self._reset_resolved(ids, resolved)

    async def _reset_entities_cache(self, stale: dict[str, Developer]) -> None:
        """Drop saved or deleted developers under both ids, without resolving through the cache."""
        resolved = {email: (email, entity.developer_id) for email, entity in stale.items()}
        await self._reset_resolved(list(stale), resolved)

    async def _reset_resolved(
        self,
        ids: list[str] | None,
        resolved: dict[str, tuple[str, str | None]],
    ) -> None:
        """Drop cache entries under both ids of every resolved developer."""
        await super().reset_cache(ids)
        if not ids:
            return

        self._memory_cache.delete(
            *(self.build_cache_id(email) for email, _ in resolved.values()),
        )

        if not self.entity_type.persistent_cache:
            return

        tags = []
        for email, developer_id in resolved.values():
            tags.append(f"{self.entity_type_id}:{self._encode_email(email)}:values")
            if developer_id:
                tags.append(f"{self.entity_type_id}:{developer_id}:values")
        unresolved = [entity_id for entity_id in ids if entity_id not in resolved]
        if unresolved:
            tags.append(f"{self.entity_type_id}:values")
        await self._cache.invalidate_tags(list(dict.fromkeys(tags)))

        logger.debug(
            "developer_cache_reset resolved=%s unresolved=%s",
            len(resolved),
            len(unresolved),
        )

    async def _resolve_cached_ids(self, ids: list[str]) -> dict[str, tuple[str, str | None]]:
        """Map ids to the (email, developer id) of the cached developer they refer to."""
        cached = [entity for entity in self._memory_cache.values() if isinstance(entity, Developer)]
        resolved = {}
        for entity_id in ids:
            match = next(
                (
                    entity
                    for entity in cached
                    if entity_id in (entity.developer_id, entity.email)
                    or entity_id.lower() == entity.email.lower()
                ),
                None,
            )
            if match is None and self.entity_type.persistent_cache:
                from_cache = await self._get_from_persistent_cache([entity_id])
                match = from_cache.get(entity_id)
            if match is not None:
                resolved[entity_id] = (match.email, match.developer_id)
        return resolved


def create_developer_storage(
    settings: "Settings",
    redis_client: "RedisClient",
    http_client: "httpx.AsyncClient",
) -> DeveloperStorage:
    """Build a developer storage from the application settings."""
    entity_type = EntityType(
        id=DEVELOPER_ENTITY_TYPE_ID,
        label="Developer",
        persistent_cache=settings.developer_persistent_cache,
    )
    return DeveloperStorage(
        entity_type,
        DeveloperController(http_client, settings.apigee_organization),
        PersistentCache(redis_client),
        MemoryCache(),
        cache_expiration=settings.developer_cache_expiration,
    )


# Global developer storage instance (set during app startup)
_developer_storage: DeveloperStorage | None = None


def get_developer_storage() -> DeveloperStorage | None:
    """Get the global developer storage instance."""
    return _developer_storage


def set_developer_storage(storage: DeveloperStorage | None) -> None:
    """Set the global developer storage instance."""
    global _developer_storage  # noqa: PLW0603
    _developer_storage = storage
