"""
Graph API client.

Wires the governor together for real calls: rate admission per account,
classified retries around each network call, and page parsing and
traversal for collection endpoints.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any
from urllib.parse import urlencode

from adgovernor.core.backends import Backend, BackendError, HttpBackend, RequestSpec
from adgovernor.core.config.models import ApiConfig, PaginationSettings
from adgovernor.core.fetch.errors import (
    FailureKind,
    GraphApiError,
    RetryExhaustedError,
    handle_response,
)
from adgovernor.core.fetch.pagination import (
    PageIterator,
    PageResult,
    PaginationParams,
    collect_all_pages,
    fetch_all_pages,
    parse_page,
    process_batches,
)
from adgovernor.core.fetch.retries import SleepFn, retry_with_backoff
from adgovernor.core.fetch.throttling import RateLimiter
from adgovernor.core.logging import get_logger

logger = get_logger("client")

ACCOUNT_PREFIX = "act_"


def format_account_id(account_id: str) -> str:
    """Return the ``act_``-prefixed form of an ad account id."""
    if account_id.startswith(ACCOUNT_PREFIX):
        return account_id
    return f"{ACCOUNT_PREFIX}{account_id}"


def extract_account_number(account_id: str) -> str:
    """Return the bare account number of an ad account id."""
    if account_id.startswith(ACCOUNT_PREFIX):
        return account_id[len(ACCOUNT_PREFIX):]
    return account_id


def build_query(params: dict[str, Any]) -> dict[str, str]:
    """Serialize query parameters; lists and dicts are sent as JSON."""
    query: dict[str, str] = {}
    for key, value in params.items():
        if value is None:
            continue
        if isinstance(value, (list, dict)):
            query[key] = json.dumps(value, separators=(",", ":"))
        elif isinstance(value, bool):
            query[key] = "true" if value else "false"
        else:
            query[key] = str(value)
    return query


class GraphApiClient:
    """Rate-limited, retrying Graph API client.

    Usage:
        async with GraphApiClient(config.api, RateLimiter(tier), pagination=config.pagination) as client:
            campaigns = await client.collect("act_123/campaigns", account_id="act_123")
    """

    def __init__(
        self,
        settings: ApiConfig,
        rate_limiter: RateLimiter,
        backend: Backend | None = None,
        *,
        pagination: PaginationSettings | None = None,
        sleep: SleepFn | None = None,
    ):
        """Initialize the client.

        Args:
            settings: Endpoint and credential settings
            rate_limiter: Limiter shared by every caller of this API
            backend: HTTP backend (default: HttpBackend from settings)
            pagination: Page and batch limits used when a call does not give its own
            sleep: Sleep used between retries and between batches (default: asyncio.sleep)
        """
        self.settings = settings
        self.rate_limiter = rate_limiter
        self.backend = backend or HttpBackend(
            timeout=settings.timeout_seconds,
            user_agent=settings.user_agent,
        )
        self.pagination = pagination or PaginationSettings()
        self._sleep = sleep or asyncio.sleep

    def _auth_headers(self) -> dict[str, str]:
        if self.settings.access_token is None:
            raise GraphApiError(
                FailureKind.AUTH,
                "Meta access token is required. Set META_ACCESS_TOKEN environment variable.",
                http_status=401,
            )
        return {"Authorization": f"Bearer {self.settings.access_token.get_secret_value()}"}

    def _url(self, endpoint: str) -> str:
        return f"{self.settings.versioned_url}/{endpoint.lstrip('/')}"

    async def request(
        self,
        endpoint: str,
        method: str = "GET",
        params: dict[str, Any] | None = None,
        body: dict[str, Any] | str | None = None,
        account_id: str | None = None,
        is_write_call: bool = False,
    ) -> Any:
        """Make one governed API call.

        Args:
            endpoint: Path below the versioned base URL
            method: GET, POST or DELETE
            params: Query parameters
            body: Form string or JSON-serializable dict (ignored for GET)
            account_id: Account to charge against the rate limiter
            is_write_call: Whether the call mutates remote state

        Returns:
            Parsed JSON body (raw text if the body is not JSON)

        Raises:
            GraphApiError: Rate limited or non-retryable failure
            RetryExhaustedError: Retryable failure outlasted its budget
            BackendError: Transport failure
        """
        method = method.upper()
        context = f"{method} {endpoint}"
        if account_id:
            await self.rate_limiter.check_rate_limit(format_account_id(account_id), is_write_call)

        spec = RequestSpec(
            url=self._url(endpoint),
            method=method,
            params=build_query(params or {}),
            account_id=account_id,
            context=context,
        )
        if body is not None and method != "GET":
            if isinstance(body, str):
                spec.data = body
            else:
                spec.json_data = body

        async def send_once() -> Any:
            spec.headers = self._auth_headers()
            response = await self.backend.send(spec)
            return handle_response(response.status_code, response.text)

        return await retry_with_backoff(send_once, context, sleep=self._sleep)

    async def get_page(
        self,
        endpoint: str,
        params: PaginationParams | None = None,
        account_id: str | None = None,
    ) -> PageResult[dict[str, Any]]:
        """Fetch and parse one page of a collection endpoint."""
        query = (params or PaginationParams()).to_query()
        raw = await self.request(endpoint, params=query, account_id=account_id)
        if not isinstance(raw, dict):
            raise GraphApiError(FailureKind.PROCESSING, f"Unexpected page body from {endpoint}")
        return parse_page(raw)

    def iter_pages(
        self,
        endpoint: str,
        params: PaginationParams | None = None,
        account_id: str | None = None,
        max_pages: int | None = None,
    ) -> PageIterator[dict[str, Any]]:
        """Lazily traverse a collection endpoint page by page.

        ``max_pages`` defaults to the configured ``pagination.max_pages``.
        """

        async def fetch_page(page_params: PaginationParams) -> PageResult[dict[str, Any]]:
            return await self.get_page(endpoint, page_params, account_id)

        return fetch_all_pages(fetch_page, params, max_pages or self.pagination.max_pages)

    async def collect(
        self,
        endpoint: str,
        params: PaginationParams | None = None,
        account_id: str | None = None,
        max_pages: int | None = None,
        max_items: int | None = None,
    ) -> list[dict[str, Any]]:
        """Collect a collection endpoint into one bounded list.

        Unset limits fall back to ``pagination.collect_max_pages`` and
        ``pagination.max_items``.
        """

        async def fetch_page(page_params: PaginationParams) -> PageResult[dict[str, Any]]:
            return await self.get_page(endpoint, page_params, account_id)

        return await collect_all_pages(
            fetch_page,
            params,
            max_pages or self.pagination.collect_max_pages,
            max_items or self.pagination.max_items,
        )

    async def batch_request(
        self,
        requests: list[dict[str, Any]],
        account_id: str | None = None,
    ) -> list[Any]:
        """Submit relative requests as batch calls.

        Requests are split into ``pagination.batch_size`` chunks sent one
        after another, ``pagination.batch_delay_ms`` apart. Each chunk is a
        write call charged to ``account_id``.

        Returns:
            Per-request responses in submission order

        Raises:
            GraphApiError: A chunk failed; later chunks are not sent
        """

        async def submit(chunk: list[dict[str, Any]]) -> list[Any]:
            form = urlencode(build_query({"batch": chunk}))
            result = await self.request(
                "",
                method="POST",
                body=form,
                account_id=account_id,
                is_write_call=True,
            )
            if not isinstance(result, list):
                raise GraphApiError(FailureKind.PROCESSING, "Unexpected batch response body")
            return result

        return await process_batches(
            requests,
            submit,
            batch_size=self.pagination.batch_size,
            delay_ms=self.pagination.batch_delay_ms,
            sleep=self._sleep,
        )

    async def validate_token(self) -> bool:
        """Check the access token against ``me``."""
        try:
            await self.request("me")
        except (GraphApiError, RetryExhaustedError, BackendError) as e:
            logger.warning(f"Token validation failed: {e}")
            return False
        return True

    async def close(self) -> None:
        await self.backend.close()

    async def __aenter__(self) -> "GraphApiClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

