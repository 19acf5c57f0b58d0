"""
Developer controller for the Apigee Edge Management API.

Resource:
  /organizations/{org}/developers[/{email_or_developer_id}]

Every developer endpoint accepts either the email address or the developer
id in the path. Failed calls raise ApiError.
"""
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from urllib.parse import quote

import httpx

from schemas.developer import Developer, DeveloperStatus
from services.api_client import api_delete, api_get, api_post, api_put
from shared.api_errors import ApiError

logger = logging.getLogger(__name__)


@contextmanager
def _translate_errors() -> Iterator[None]:
    """Convert httpx failures into ApiError."""
    try:
        yield
    except httpx.HTTPStatusError as e:
        raise ApiError.from_http_error(e) from e
    except httpx.RequestError as e:
        raise ApiError.from_transport_error(e) from e


class DeveloperController:
    """Create, read, update, delete and status-change calls for developers."""

    def __init__(self, client: httpx.AsyncClient, organization: str) -> None:
        self._client = client
        self._organization = organization

    @property
    def organization(self) -> str:
        """Name of the Apigee Edge organization."""
        return self._organization

    def _path(self, developer_id: str | None = None) -> str:
        path = f"/organizations/{quote(self._organization, safe='')}/developers"
        if developer_id is not None:
            path = f"{path}/{quote(developer_id, safe='@')}"
        return path

    async def load(self, developer_id: str) -> Developer:
        """
        Load a developer by email or developer id.

        Raises:
            ApiError: Not found (code 404) or any other API failure.
        """
        with _translate_errors():
            data = await api_get(self._client, self._path(developer_id))
        return Developer.from_api(data)

    async def load_all(self) -> list[Developer]:
        """Load every developer of the organization."""
        with _translate_errors():
            data = await api_get(self._client, self._path(), params={"expand": "true"})
        items = data.get("developer", []) if isinstance(data, dict) else []
        return [Developer.from_api(item) for item in items]

    async def load_multiple(self, ids: list[str] | None = None) -> list[Developer]:
        """
        Load developers by email or developer id, all of them when ids is None.

        Ids that do not exist on Apigee Edge are skipped.
        """
        if ids is None:
            return await self.load_all()
        developers = []
        for developer_id in ids:
            try:
                developers.append(await self.load(developer_id))
            except ApiError as e:
                if not e.is_not_found:
                    raise
                logger.debug("developer_not_found id=%s", developer_id)
        return developers

    async def create(self, developer: Developer) -> Developer:
        """Create a developer, returns the developer as stored by Apigee Edge."""
        with _translate_errors():
            data = await api_post(self._client, self._path(), json=developer.to_api())
        return Developer.from_api(data)

    async def update(self, developer: Developer) -> Developer:
        """
        Update a developer, returns the developer as stored by Apigee Edge.

        Addressed by the email Apigee Edge currently knows, so a pending rename
        is applied by this call.
        """
        with _translate_errors():
            data = await api_put(
                self._client, self._path(developer.original_id), json=developer.to_api(),
            )
        return Developer.from_api(data)

    async def delete(self, developer_id: str) -> Developer:
        """Delete a developer, returns the deleted developer."""
        with _translate_errors():
            data = await api_delete(self._client, self._path(developer_id))
        return Developer.from_api(data)

    async def set_status(self, developer_id: str, status: DeveloperStatus | str) -> None:
        """Activate or deactivate a developer."""
        with _translate_errors():
            await api_post(
                self._client,
                self._path(developer_id),
                params={"action": str(status)},
                content_type="application/octet-stream",
            )
        logger.debug("developer_status_set id=%s status=%s", developer_id, status)
