"""
Apigee Edge API error type and HTTP error parsing.

Controllers convert every failed HTTP exchange into an ApiError carrying the
remote message and code, so storage code never has to deal with httpx
exceptions directly.
"""

from dataclasses import dataclass
from typing import Any, Literal

import httpx

ErrorCategory = Literal[
    "auth",        # 401 - Invalid credentials
    "forbidden",   # 403 - Access denied
    "not_found",   # 404 - Resource not found
    "validation",  # 400 - Invalid request
    "conflict",    # 409 - Resource already exists
    "transport",   # No response (connection error, timeout)
    "internal",    # 5xx or unexpected errors
]


@dataclass
class ParsedApiError:
    """Parsed API error with semantic category and message."""

    category: ErrorCategory
    message: str
    error_code: str | None = None


class ApiError(Exception):
    """
    Raised when a call to the Apigee Edge API fails.

    Attributes:
        message: Error message reported by Apigee Edge (or a generic one).
        code: HTTP status code, 0 when no response was received.
        error_code: Apigee Edge error code, e.g. "developer.service.DeveloperDoesNotExist".
        category: Semantic category of the failure.
    """

    def __init__(
        self,
        message: str,
        code: int = 0,
        error_code: str | None = None,
        category: ErrorCategory = "internal",
    ) -> None:
        self.message = message
        self.code = code
        self.error_code = error_code
        self.category = category
        super().__init__(message)

    @property
    def is_not_found(self) -> bool:
        """Whether the addressed resource does not exist."""
        return self.category == "not_found"

    @classmethod
    def from_http_error(cls, e: httpx.HTTPStatusError) -> "ApiError":
        """Build an ApiError from an httpx status error."""
        parsed = parse_http_error(e)
        return cls(
            parsed.message,
            code=e.response.status_code,
            error_code=parsed.error_code,
            category=parsed.category,
        )

    @classmethod
    def from_transport_error(cls, e: httpx.RequestError) -> "ApiError":
        """Build an ApiError for a request that got no response."""
        return cls(f"Apigee Edge request failed: {e}", code=0, category="transport")


def parse_http_error(e: httpx.HTTPStatusError) -> ParsedApiError:  # noqa: PLR0911
    """
    Parse HTTP error into semantic categories.

    Args:
        e: The HTTP status error from httpx

    Returns:
        ParsedApiError with category, message and the Apigee Edge error code if any
    """
    status = e.response.status_code
    message, error_code = _extract_error(e)

    if status == 401:
        return ParsedApiError("auth", message or "Invalid credentials", error_code)

    if status == 403:
        return ParsedApiError("forbidden", message or "Access denied", error_code)

    if status == 404:
        return ParsedApiError("not_found", message or "Not found", error_code)

    if status == 409:
        return ParsedApiError("conflict", message or "Resource already exists", error_code)

    if status in (400, 422):
        return ParsedApiError("validation", message or "Validation error", error_code)

    # Generic error for other status codes
    return ParsedApiError("internal", message or f"API error {status}", error_code)


def _extract_error(e: httpx.HTTPStatusError) -> tuple[str, str | None]:
    """
    Extract (message, error_code) from an error response body.

    Apigee Edge reports errors in two shapes:
        {"code": "...", "message": "...", "contexts": []}
        {"fault": {"faultstring": "...", "detail": {"errorcode": "..."}}}
    """
    try:
        body = e.response.json()
    except ValueError:
        return "", None
    if not isinstance(body, dict):
        return "", None

    fault = body.get("fault")
    if isinstance(fault, dict):
        detail: Any = fault.get("detail")
        error_code = detail.get("errorcode") if isinstance(detail, dict) else None
        return str(fault.get("faultstring", "")), error_code

    return str(body.get("message", "")), body.get("code")
