"""Base HTTP client for SF Tree Migrate.

This module provides a base async HTTP client with connection pooling,
rate limiting, error mapping, and request logging.
"""

import asyncio
import logging
import time
from typing import Any
from urllib.parse import urljoin

import httpx

from sf_migration.client.exceptions import (
    APIError,
    AuthenticationError,
    AuthorizationError,
    NetworkError,
    NotFoundError,
    RateLimitError,
    ServerError,
)
from sf_migration.utils.logging import get_logger, log_api_request, sanitize_payload, truncate_payload

logger = get_logger(__name__)

# Returned with 403 when the org's daily API allocation is used up.
REQUEST_LIMIT_EXCEEDED = "REQUEST_LIMIT_EXCEEDED"

_STATUS_ERRORS: dict[int, tuple[type[APIError], str]] = {
    401: (AuthenticationError, "Authentication failed"),
    403: (AuthorizationError, "Authorization failed"),
    404: (NotFoundError, "Resource not found"),
    429: (RateLimitError, "API request limit exceeded"),
}


def parse_error_body(response: httpx.Response) -> tuple[Any, list[str], str]:
    """Split an error response into (body, error codes, message).

    Salesforce reports errors as a list of ``{"message", "errorCode"}``
    objects; OAuth endpoints return a single object and proxies plain text.
    """
    try:
        body = response.json()
    except ValueError:
        body = {"message": response.text}

    items = body if isinstance(body, list) else [body]
    items = [item for item in items if isinstance(item, dict)]
    codes = [str(item["errorCode"]) for item in items if item.get("errorCode")]
    message = "; ".join(
        f"{item.get('message') or item.get('error_description', '')}"
        + (f" ({item['errorCode']})" if item.get("errorCode") else "")
        for item in items
    )
    return body, codes, message or "Unknown error"


class BaseAPIClient:
    """Base async HTTP client with rate limiting and error mapping.

    This client provides:
    - Connection pooling
    - Rate limiting
    - Request/response logging
    - Proper error handling and exception mapping
    """

    def __init__(
        self,
        base_url: str,
        token: str,
        timeout: int = 120,
        rate_limit: int = 20,
        log_payloads: bool = False,
        max_payload_size: int = 10000,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize base API client.

        Args:
            base_url: Instance URL
            token: OAuth access token
            timeout: Request timeout in seconds
            rate_limit: Maximum requests per second
            log_payloads: Log request and response bodies at DEBUG level
            max_payload_size: Characters of a body to log before truncation
            transport: Optional httpx transport (used by tests)
        """
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.log_payloads = log_payloads
        self.max_payload_size = max_payload_size

        self._rate_limit_lock = asyncio.Lock()
        self._last_request_time: float = 0
        self._min_request_interval = 1.0 / rate_limit if rate_limit > 0 else 0

        self.client = httpx.AsyncClient(
            headers={
                "Authorization": f"Bearer {token}",
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
            timeout=httpx.Timeout(timeout, connect=10.0),
            limits=httpx.Limits(max_connections=10, max_keepalive_connections=5),
            follow_redirects=True,
            transport=transport,
        )

        logger.debug("client_initialized", base_url=self.base_url, rate_limit=rate_limit)

    def _build_url(self, endpoint: str) -> str:
        """Build full URL from an endpoint path or an absolute service path."""
        return urljoin(f"{self.base_url}/", endpoint.lstrip("/"))

    async def _rate_limit_wait(self) -> None:
        if self._min_request_interval <= 0:
            return
        async with self._rate_limit_lock:
            elapsed = time.time() - self._last_request_time
            if elapsed < self._min_request_interval:
                await asyncio.sleep(self._min_request_interval - elapsed)
            self._last_request_time = time.time()

    def _log_payload(self, event: str, payload: Any, **context: Any) -> None:
        if not self.log_payloads or not logging.getLogger(__name__).isEnabledFor(logging.DEBUG):
            return
        logger.debug(
            event,
            payload=truncate_payload(sanitize_payload(payload), self.max_payload_size),
            **context,
        )

    def _handle_error_response(self, response: httpx.Response) -> None:
        """Raise the exception matching an error response.

        Raises:
            AuthenticationError: For 401 responses
            RateLimitError: For 403 REQUEST_LIMIT_EXCEEDED and 429 responses
            AuthorizationError: For other 403 responses
            NotFoundError: For 404 responses
            ServerError: For 5xx responses
            APIError: For other error responses
        """
        status_code = response.status_code
        body, codes, message = parse_error_body(response)

        if status_code == 403 and REQUEST_LIMIT_EXCEEDED in codes:
            status_error = _STATUS_ERRORS[429]
        elif 500 <= status_code < 600:
            status_error = (ServerError, "Server error")
        else:
            status_error = _STATUS_ERRORS.get(status_code, (APIError, "API error"))

        error_class, prefix = status_error
        raise error_class(f"{prefix}: {message}", status_code=status_code, response=body)

    async def request(
        self,
        method: str,
        endpoint: str,
        params: dict[str, Any] | None = None,
        json_data: Any | None = None,
    ) -> Any:
        """Make an HTTP request with rate limiting and error handling.

        Args:
            method: HTTP method
            endpoint: Path below the instance URL
            params: Query parameters
            json_data: JSON request body

        Returns:
            Decoded JSON body (object or list), or {} for empty bodies

        Raises:
            NetworkError: On timeouts and connection failures
            APIError: Or a subclass, for error statuses
        """
        url = self._build_url(endpoint)
        await self._rate_limit_wait()

        if json_data is not None:
            self._log_payload("api_request_payload", json_data, method=method, url=url)

        start_time = time.time()
        try:
            response = await self.client.request(method, url, params=params, json=json_data)
        except httpx.TimeoutException as e:
            logger.error("timeout_error", method=method, url=url, error=str(e))
            raise NetworkError(f"Request timeout: {e}") from e
        except httpx.TransportError as e:
            logger.error("network_error", method=method, url=url, error=str(e))
            raise NetworkError(f"Network error: {e}") from e

        log_api_request(
            logger,
            method=method,
            url=url,
            status_code=response.status_code,
            duration_ms=(time.time() - start_time) * 1000,
        )

        if response.status_code >= 400:
            self._handle_error_response(response)

        if not response.text:
            return {}
        body = response.json()
        self._log_payload("api_response_payload", body, method=method, url=url)
        return body

    async def get(self, endpoint: str, params: dict[str, Any] | None = None) -> Any:
        return await self.request("GET", endpoint, params=params)

    async def delete(self, endpoint: str, params: dict[str, Any] | None = None) -> Any:
        return await self.request("DELETE", endpoint, params=params)

    async def close(self) -> None:
        """Close the HTTP client and clean up resources."""
        await self.client.aclose()
        logger.debug("client_closed", base_url=self.base_url)

    async def __aenter__(self) -> "BaseAPIClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()
