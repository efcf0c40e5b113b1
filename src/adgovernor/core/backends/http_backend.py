"""
HTTP Backend implementation using httpx.

Provides async HTTP calls with:
- Persistent connection pooling
- Default headers on every request
- Form or JSON bodies

Retrying is left to the caller so that every failure is classified
exactly once.
"""

from __future__ import annotations

import time

import httpx

from adgovernor.core.logging import get_contextual_logger

from .base import ApiResponse, Backend, BackendError, RequestSpec

SUPPORTED_METHODS = {"GET", "POST", "DELETE"}


class HttpBackend(Backend):
    """HTTP backend using httpx for async requests."""

    def __init__(
        self,
        timeout: float = 30.0,
        user_agent: str = "adgovernor/0.1.0",
        default_headers: dict[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize HTTP backend.

        Args:
            timeout: Default request timeout in seconds
            user_agent: User-Agent header value
            default_headers: Default headers for all requests
            transport: Custom httpx transport (e.g. a mock in tests)
        """
        self.timeout = timeout
        self.default_headers = {
            "User-Agent": user_agent,
            "Accept": "application/json",
            **(default_headers or {}),
        }
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def name(self) -> str:
        return "http"

    async def _ensure_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                headers=self.default_headers,
                limits=httpx.Limits(
                    max_connections=20,
                    max_keepalive_connections=10,
                ),
                transport=self._transport,
            )
        return self._client

    async def send(self, request: RequestSpec) -> ApiResponse:
        """Issue one request.

        Args:
            request: Request specification

        Returns:
            ApiResponse for any HTTP status
        """
        method = request.method.upper()
        if method not in SUPPORTED_METHODS:
            raise BackendError(f"Unsupported method: {request.method}", url=request.url)

        client = await self._ensure_client()
        headers = dict(request.headers)
        content: str | None = None
        data = None

        if isinstance(request.data, str):
            content = request.data
            headers.setdefault("Content-Type", "application/x-www-form-urlencoded")
        else:
            data = request.data

        log = get_contextual_logger("backends.http", account_id=request.account_id, context=request.context)
        start = time.perf_counter()
        try:
            response = await client.request(
                method,
                request.url,
                headers=headers,
                params=request.params or None,
                content=content,
                data=data,
                json=request.json_data,
                timeout=request.timeout if request.timeout is not None else httpx.USE_CLIENT_DEFAULT,
            )
        except httpx.HTTPError as e:
            log.debug(f"{method} {request.url} failed: {e}")
            raise BackendError(
                f"Transport error: {e}",
                url=request.url,
                cause=e,
            ) from e

        elapsed_ms = (time.perf_counter() - start) * 1000
        log.debug(f"{method} {request.url} -> {response.status_code} ({elapsed_ms:.0f}ms)")

        return ApiResponse(
            url=str(response.url),
            status_code=response.status_code,
            text=response.text,
            headers=dict(response.headers),
            elapsed_ms=elapsed_ms,
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None
