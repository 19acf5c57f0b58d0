"""HTTP client helpers for calling the Apigee Edge Management API."""

from typing import TYPE_CHECKING, Any

import httpx

if TYPE_CHECKING:
    from core.config import Settings


def _get_headers() -> dict[str, str]:
    """Get common headers for API requests."""
    return {
        "Accept": "application/json",
        "X-Request-Source": "apigee-edge-storage",
    }


def create_http_client(settings: "Settings") -> httpx.AsyncClient:
    """Create an HTTP client bound to the configured Apigee Edge endpoint."""
    return httpx.AsyncClient(
        base_url=settings.apigee_endpoint,
        auth=settings.apigee_credentials,
        timeout=settings.apigee_timeout,
        headers=_get_headers(),
    )


def _json_or_none(response: httpx.Response) -> Any:
    """Decode a JSON body, None for empty (e.g. 204) responses."""
    if not response.content:
        return None
    return response.json()


async def api_get(
    client: httpx.AsyncClient,
    path: str,
    params: dict[str, Any] | None = None,
) -> Any:
    """Make a GET request to the API."""
    response = await client.get(path, params=params)
    response.raise_for_status()
    return _json_or_none(response)


async def api_post(
    client: httpx.AsyncClient,
    path: str,
    json: dict[str, Any] | None = None,
    params: dict[str, Any] | None = None,
    content_type: str | None = None,
) -> Any:
    """Make a POST request to the API."""
    headers = {"Content-Type": content_type} if content_type else None
    response = await client.post(path, json=json, params=params, headers=headers)
    response.raise_for_status()
    return _json_or_none(response)


async def api_put(
    client: httpx.AsyncClient,
    path: str,
    json: dict[str, Any],
) -> Any:
    """Make a PUT request to the API."""
    response = await client.put(path, json=json)
    response.raise_for_status()
    return _json_or_none(response)


async def api_delete(
    client: httpx.AsyncClient,
    path: str,
) -> Any:
    """Make a DELETE request to the API."""
    response = await client.delete(path)
    response.raise_for_status()
    return _json_or_none(response)
