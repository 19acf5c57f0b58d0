"""Pytest fixtures for testing."""
import json
from collections.abc import AsyncGenerator, Generator
from typing import Any
from urllib.parse import unquote
from uuid import uuid4

import httpx
import pytest
import respx
from redis.asyncio import Redis
from testcontainers.redis import RedisContainer

from core.entity_cache import (
    CACHE_SCHEMA_VERSION,
    DEFAULT_BIN,
    KEY_PREFIX,
    MemoryCache,
    PersistentCache,
)
from core.redis import RedisClient
from services.developer_controller import DeveloperController
from services.developer_storage import DEVELOPER_ENTITY_TYPE_ID, DeveloperStorage
from services.entity_storage import EntityType

APIGEE_ENDPOINT = "https://apigee.test/v1"
ORGANIZATION = "my-org"
DEVELOPERS_PATH = f"/v1/organizations/{ORGANIZATION}/developers"


class RedisCacheView:
    """Reads what the persistent cache wrote to Redis, by cache id and tag name."""

    def __init__(self, redis: Redis, bin_name: str = DEFAULT_BIN) -> None:
        self._redis = redis
        self._entry_prefix = f"{KEY_PREFIX}:v{CACHE_SCHEMA_VERSION}:{bin_name}:"
        self._tag_prefix = f"{KEY_PREFIX}:v{CACHE_SCHEMA_VERSION}:tag:"

    async def entries(self) -> dict[str, str]:
        """Stored entries keyed by cache id."""
        entries = {}
        for key in await self._redis.keys(f"{self._entry_prefix}*"):
            data = await self._redis.get(key)
            if data is not None:
                entries[key.decode()[len(self._entry_prefix):]] = data.decode()
        return entries

    async def ttl(self, cid: str) -> int:
        """Remaining lifetime of an entry (-1 permanent, -2 missing)."""
        return await self._redis.ttl(f"{self._entry_prefix}{cid}")

    async def tags(self) -> set[str]:
        """Names of the tag sets present in Redis."""
        keys = await self._redis.keys(f"{self._tag_prefix}*")
        return {key.decode()[len(self._tag_prefix):] for key in keys}

    async def tag_members(self, tag: str) -> set[str]:
        """Cache ids of the entries a tag set covers."""
        members = await self._redis.smembers(f"{self._tag_prefix}{tag}")
        return {member.decode()[len(self._entry_prefix):] for member in members}

    async def tag_ttl(self, tag: str) -> int:
        """Remaining lifetime of a tag set (-1 permanent, -2 missing)."""
        return await self._redis.ttl(f"{self._tag_prefix}{tag}")

    async def keys(self) -> list[bytes]:
        """Every key in the database."""
        return await self._redis.keys("*")


class FakeApigee:
    """
    Stateful simulation of the Apigee Edge developer endpoints, used as a respx side effect.

    Like Apigee Edge, developers are addressable by email (case-insensitive) or
    developer id, new developers are always created active, and create/update
    ignore the status in the payload.
    """

    def __init__(self) -> None:
        self.developers: dict[str, dict[str, Any]] = {}
        self.requests: list[tuple[str, str]] = []
        self.status_error: httpx.Response | None = None

    def add(self, email: str, **fields: Any) -> dict[str, Any]:
        """Seed a developer."""
        developer = {
            "email": email,
            "developerId": fields.pop("developer_id", None) or str(uuid4()),
            "firstName": fields.pop("first_name", "First"),
            "lastName": fields.pop("last_name", "Last"),
            "userName": fields.pop("user_name", email.split("@")[0]),
            "status": fields.pop("status", "active"),
            "attributes": fields.pop("attributes", []),
            "apps": [],
            "companies": [],
            "organizationName": ORGANIZATION,
            "createdAt": 1546300800000,
            "lastModifiedAt": 1546300800000,
        }
        self.developers[email.lower()] = developer
        return developer

    def find(self, identifier: str) -> dict[str, Any] | None:
        """Look a developer up by email or developer id."""
        if identifier.lower() in self.developers:
            return self.developers[identifier.lower()]
        for developer in self.developers.values():
            if developer["developerId"] == identifier:
                return developer
        return None

    def remote_calls(self, method: str | None = None) -> list[tuple[str, str]]:
        """Recorded requests, optionally filtered by HTTP method."""
        return [call for call in self.requests if method is None or call[0] == method]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = unquote(request.url.path)
        self.requests.append((request.method, path))
        identifier = path[len(DEVELOPERS_PATH):].lstrip("/")

        if not identifier:
            if request.method == "GET":
                return httpx.Response(200, json={"developer": list(self.developers.values())})
            return self._create(json.loads(request.content))

        developer = self.find(identifier)
        if developer is None:
            return httpx.Response(404, json={
                "code": "developer.service.DeveloperDoesNotExist",
                "message": f"DeveloperId {identifier} does not exist in organization {ORGANIZATION}",
                "contexts": [],
            })

        if request.method == "GET":
            return httpx.Response(200, json=developer)
        if request.method == "DELETE":
            del self.developers[developer["email"].lower()]
            return httpx.Response(200, json=developer)
        if request.method == "PUT":
            return self._update(developer, json.loads(request.content))
        # POST ?action=active|inactive
        if self.status_error is not None:
            return self.status_error
        developer["status"] = request.url.params["action"]
        return httpx.Response(204)

    def _create(self, payload: dict[str, Any]) -> httpx.Response:
        if payload["email"].lower() in self.developers:
            return httpx.Response(409, json={
                "code": "developer.service.DeveloperAlreadyExists",
                "message": f"Developer with email {payload['email']} already exists",
            })
        developer = self.add(
            payload["email"],
            first_name=payload.get("firstName", ""),
            last_name=payload.get("lastName", ""),
            user_name=payload.get("userName", ""),
            attributes=payload.get("attributes", []),
        )
        return httpx.Response(201, json=developer)

    def _update(self, developer: dict[str, Any], payload: dict[str, Any]) -> httpx.Response:
        del self.developers[developer["email"].lower()]
        developer.update({
            "email": payload["email"],
            "firstName": payload.get("firstName", ""),
            "lastName": payload.get("lastName", ""),
            "userName": payload.get("userName", ""),
            "attributes": payload.get("attributes", []),
            "lastModifiedAt": developer["lastModifiedAt"] + 1,
        })
        self.developers[developer["email"].lower()] = developer
        return httpx.Response(200, json=developer)


@pytest.fixture(scope="session")
def redis_container() -> Generator[RedisContainer]:
    """Start a Redis container for the test session."""
    with RedisContainer("redis:7") as redis:
        yield redis


@pytest.fixture(scope="session")
def redis_url(redis_container: RedisContainer) -> str:
    """URL of the Redis container."""
    host = redis_container.get_container_host_ip()
    port = redis_container.get_exposed_port(redis_container.port)
    return f"redis://{host}:{port}"


@pytest.fixture
async def redis_client(redis_url: str) -> AsyncGenerator[RedisClient]:
    """
    Connected Redis client with an empty database.

    The database is flushed before and after each test so tests don't see
    each other's cache entries.
    """
    client = RedisClient(redis_url, enabled=True)
    await client.connect()
    await client.flushdb()
    yield client
    await client.flushdb()
    await client.close()


@pytest.fixture
def redis_cache(redis_client: RedisClient) -> RedisCacheView:
    """What the persistent cache stored in the test Redis."""
    return RedisCacheView(redis_client._client)


@pytest.fixture
def fake_apigee() -> Generator[FakeApigee]:
    """Route every Apigee Edge request to a FakeApigee instance."""
    apigee = FakeApigee()
    with respx.mock(base_url=APIGEE_ENDPOINT, assert_all_called=False) as respx_mock:
        respx_mock.route().mock(side_effect=apigee)
        yield apigee


@pytest.fixture
async def http_client() -> AsyncGenerator[httpx.AsyncClient]:
    """HTTP client pointed at the Apigee Edge test endpoint."""
    async with httpx.AsyncClient(base_url=APIGEE_ENDPOINT) as client:
        yield client


@pytest.fixture
def controller(http_client: httpx.AsyncClient) -> DeveloperController:
    """Developer controller for the test organization."""
    return DeveloperController(http_client, ORGANIZATION)


@pytest.fixture
def persistent_cache(redis_client: RedisClient) -> PersistentCache:
    """Persistent cache bin in the test Redis."""
    return PersistentCache(redis_client)


@pytest.fixture
def memory_cache() -> MemoryCache:
    """Fresh in-process cache."""
    return MemoryCache()


@pytest.fixture
def developer_storage(
    controller: DeveloperController,
    persistent_cache: PersistentCache,
    memory_cache: MemoryCache,
) -> DeveloperStorage:
    """Persistently cached developer storage."""
    return DeveloperStorage(
        EntityType(DEVELOPER_ENTITY_TYPE_ID, "Developer", persistent_cache=True),
        controller,
        persistent_cache,
        memory_cache,
        cache_expiration=900,
    )
