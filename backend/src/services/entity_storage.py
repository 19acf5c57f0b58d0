"""
Base storage class for entities kept on a remote API.

Provides the shared load/save/delete flow and the two-tier caching (memory
cache, then persistent cache, then the remote API) for entity types backed by
Apigee Edge. Entity-specific behavior is added by overriding the hooks.
"""
import logging
from abc import ABC
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from enum import IntEnum
from typing import TYPE_CHECKING, Any, Generic, Protocol, TypeVar

from pydantic import ValidationError

from services.exceptions import EntityStorageError
from shared.api_errors import ApiError

if TYPE_CHECKING:
    from core.entity_cache import MemoryCache, PersistentCache

logger = logging.getLogger(__name__)


class StorableEntity(Protocol):
    """Protocol defining the interface for entities handled by EntityStorageBase."""

    @property
    def id(self) -> str:
        """Primary id."""
        ...

    @property
    def original_id(self) -> str:
        """The id the remote API currently knows the entity by."""
        ...

    def is_new(self) -> bool: ...

    def enforce_is_new(self, value: bool = True) -> None: ...

    def get_cache_tags(self) -> list[str]: ...

    def apply_remote(self, remote: Any) -> None: ...

    def model_dump_json(self) -> str: ...


T = TypeVar("T", bound=StorableEntity)


class EntityController(Protocol[T]):
    """Remote API calls the storage needs for an entity type."""

    async def load_multiple(self, ids: list[str] | None = None) -> list[T]: ...

    async def create(self, entity: T) -> T: ...

    async def update(self, entity: T) -> T: ...

    async def delete(self, entity_id: str) -> T: ...


class SaveResult(IntEnum):
    """Outcome of a successful save."""

    NEW = 1
    UPDATED = 2


@dataclass(frozen=True)
class EntityType:
    """Definition of an entity type handled by a storage."""

    id: str
    label: str
    persistent_cache: bool = True


class EntityStorageBase(ABC, Generic[T]):
    """
    Abstract base class for remote entity storage.

    Subclasses must define:
    - entity_class: The pydantic model class (used to deserialize cache entries)

    Overridable hooks:
    - load_multiple(), _do_load_multiple(), _get_from_storage()
    - _do_save()
    - get_persistent_cache_tags(), set_persistent_cache()
    - reset_cache(), _reset_entities_cache()
    - build_cache_id(), get_persistent_cache_expiration()

    Remote API failures are raised as EntityStorageError, except "not found"
    on load, which just means the entity does not exist.
    """

    entity_class: type[T]

    def __init__(
        self,
        entity_type: EntityType,
        controller: EntityController[T],
        cache: "PersistentCache",
        memory_cache: "MemoryCache",
        cache_expiration: int = -1,
    ) -> None:
        """
        Initialize the storage.

        Args:
            entity_type: The entity type definition.
            controller: Remote API controller for the entity type.
            cache: Persistent cache bin.
            memory_cache: In-process cache.
            cache_expiration: Persistent cache lifetime in seconds, -1 for permanent.
        """
        self.entity_type = entity_type
        self._controller = controller
        self._cache = cache
        self._memory_cache = memory_cache
        self._cache_expiration = cache_expiration

    @property
    def entity_type_id(self) -> str:
        """Id of the handled entity type (e.g. "developer")."""
        return self.entity_type.id

    @property
    def _memory_cache_tag(self) -> str:
        return f"entity.memory_cache:{self.entity_type_id}"

    @contextmanager
    def _with_controller(self) -> Iterator[None]:
        """Run remote calls, converting API failures into EntityStorageError."""
        try:
            yield
        except ApiError as e:
            raise EntityStorageError(e.message, e.code) from e

    # --- Loading ---

    async def load(self, entity_id: str) -> T | None:
        """Load a single entity, None if it does not exist."""
        entities = await self.load_multiple([entity_id])
        return entities.get(entity_id)

    async def load_multiple(self, ids: list[str] | None = None) -> dict[str, T]:
        """
        Load entities from the memory cache, the persistent cache or the remote API.

        Args:
            ids: Ids to load, None to load every entity.

        Returns:
            Entities keyed by their primary id. Entities whose primary id was
            passed come first in the order of ids; entities that were found
            through another id are appended. Ids that don't exist are omitted.
        """
        entities: dict[str, T] = {}
        ids_to_load = list(dict.fromkeys(ids)) if ids is not None else None

        if ids_to_load:
            entities.update(self._get_from_static_cache(ids_to_load))
            ids_to_load = [entity_id for entity_id in ids_to_load if entity_id not in entities]

        if ids_to_load is None or ids_to_load:
            loaded = await self._do_load_multiple(ids_to_load)
            self._set_static_cache(loaded)
            entities.update(loaded)

        if ids:
            ordered = {entity_id: entities[entity_id] for entity_id in ids if entity_id in entities}
            ordered.update(entities)
            entities = ordered
        return entities

    async def _do_load_multiple(self, ids: list[str] | None) -> dict[str, T]:
        """Load entities missing from the memory cache, keyed by primary id."""
        entities: dict[str, T] = {}

        if ids and self.entity_type.persistent_cache:
            cached = await self._get_from_persistent_cache(ids)
            ids = [entity_id for entity_id in ids if entity_id not in cached]
            entities.update({entity.id: entity for entity in cached.values()})

        if ids is None or ids:
            stored = await self._get_from_storage(ids)
            await self.set_persistent_cache(stored)
            entities.update(stored)

        return entities

    async def _get_from_storage(self, ids: list[str] | None) -> dict[str, T]:
        """Load entities from the remote API, keyed by primary id."""
        with self._with_controller():
            loaded = await self._controller.load_multiple(ids)
        logger.debug(
            "entity_storage_remote_load type=%s requested=%s loaded=%s",
            self.entity_type_id,
            "all" if ids is None else len(ids),
            len(loaded),
        )
        return {entity.id: entity for entity in loaded}

    # --- Memory cache ---

    def _get_from_static_cache(self, ids: list[str]) -> dict[str, T]:
        """Get entities from the memory cache, keyed by the requested id."""
        found = {}
        for entity_id in ids:
            entity = self._memory_cache.get(self.build_cache_id(entity_id))
            if entity is not None:
                found[entity_id] = entity
        return found

    def _set_static_cache(self, entities: dict[str, T]) -> None:
        """Store entities in the memory cache under their primary id."""
        for entity in entities.values():
            self._memory_cache.set(
                self.build_cache_id(entity.id), entity, tags=[self._memory_cache_tag],
            )

    # --- Persistent cache ---

    def build_cache_id(self, entity_id: str) -> str:
        """Build the cache id of an entity."""
        return f"values:{self.entity_type_id}:{entity_id}"

    def get_persistent_cache_expiration(self) -> int | None:
        """Persistent cache lifetime in seconds, None for permanent."""
        if self._cache_expiration < 0:
            return None
        return self._cache_expiration

    def get_persistent_cache_tags(self, entity: T) -> list[str]:
        """Cache tags attached to the persistent cache entry of an entity."""
        tags = [
            self.entity_type_id,
            f"{self.entity_type_id}:values",
            f"{self.entity_type_id}:{entity.id}",
            f"{self.entity_type_id}:{entity.id}:values",
            *entity.get_cache_tags(),
        ]
        return list(dict.fromkeys(tags))

    async def _get_from_persistent_cache(self, ids: list[str]) -> dict[str, T]:
        """Get entities from the persistent cache, keyed by the requested id."""
        found = {}
        for entity_id in ids:
            data = await self._cache.get(self.build_cache_id(entity_id))
            if data is None:
                continue
            entity = self._deserialize(data)
            if entity is not None:
                found[entity_id] = entity
        return found

    async def set_persistent_cache(self, entities: dict[str, T]) -> None:
        """Store entities in the persistent cache under their primary id."""
        if not self.entity_type.persistent_cache:
            return
        expire = self.get_persistent_cache_expiration()
        for entity in entities.values():
            await self._cache.set(
                self.build_cache_id(entity.id),
                entity.model_dump_json(),
                expire,
                self.get_persistent_cache_tags(entity),
            )

    def _deserialize(self, data: str) -> T | None:
        """Rebuild an entity from a persistent cache entry, None if unreadable."""
        try:
            entity = self.entity_class.model_validate_json(data)
        except ValidationError as e:
            logger.warning("Unreadable %s cache entry: %s", self.entity_type_id, e)
            return None
        entity.enforce_is_new(False)
        return entity

    async def reset_cache(self, ids: list[str] | None = None) -> None:
        """
        Drop cached entities.

        Args:
            ids: Ids whose cache entries are dropped, None to drop every entity
                of this type.
        """
        if ids:
            self._memory_cache.delete(*(self.build_cache_id(entity_id) for entity_id in ids))
        else:
            self._memory_cache.invalidate_tags([self._memory_cache_tag])

        if not self.entity_type.persistent_cache:
            return

        if ids:
            await self._cache.delete_multiple(self.build_cache_id(entity_id) for entity_id in ids)
            await self._cache.invalidate_tags(
                f"{self.entity_type_id}:{entity_id}:values" for entity_id in ids
            )
        else:
            await self._cache.invalidate_tags([f"{self.entity_type_id}:values"])

    async def _reset_entities_cache(self, stale: dict[str, T]) -> None:
        """
        Drop the cache entries of entities that were just written or deleted.

        Args:
            stale: The entities keyed by every id they were cached under.
        """
        await self.reset_cache(list(stale))

    # --- Saving and deleting ---

    async def save(self, entity: T) -> SaveResult:
        """
        Create or update an entity on the remote API.

        Cache entries for the entity are dropped afterwards, also when the
        save fails, since the remote state may have changed anyway.

        Returns:
            SaveResult.NEW or SaveResult.UPDATED.

        Raises:
            EntityStorageError: The remote API call failed.
        """
        stale_ids = [entity.original_id, entity.id]
        try:
            result = await self._do_save(entity.id, entity)
        finally:
            # The remote response may have changed the id (e.g. email casing).
            await self._reset_entities_cache(
                {**dict.fromkeys(stale_ids, entity), entity.id: entity},
            )
        logger.debug(
            "entity_storage_saved type=%s id=%s result=%s",
            self.entity_type_id,
            entity.id,
            result.name,
        )
        return result

    async def _do_save(self, entity_id: str, entity: T) -> SaveResult:  # noqa: ARG002
        """Create or update the entity and copy the remote response onto it."""
        with self._with_controller():
            if entity.is_new():
                remote = await self._controller.create(entity)
                result = SaveResult.NEW
            else:
                remote = await self._controller.update(entity)
                result = SaveResult.UPDATED
        entity.apply_remote(remote)
        entity.enforce_is_new(False)
        return result

    async def delete(self, entities: Iterable[T]) -> None:
        """
        Delete entities on the remote API and drop their cache entries.

        Raises:
            EntityStorageError: A remote delete failed.
        """
        entities = list(entities)
        if not entities:
            return
        try:
            with self._with_controller():
                for entity in entities:
                    await self._controller.delete(entity.id)
        finally:
            await self._reset_entities_cache({entity.id: entity for entity in entities})
