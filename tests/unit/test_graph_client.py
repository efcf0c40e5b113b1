"""
Tests for the Graph API client over a mocked HTTP transport.
"""

import json
import logging
from unittest.mock import AsyncMock
from urllib.parse import parse_qs

import httpx
import pytest

from adgovernor.core.backends import BackendError, HttpBackend, RequestSpec
from adgovernor.core.client import (
    GraphApiClient,
    build_query,
    extract_account_number,
    format_account_id,
)
from adgovernor.core.config import ApiConfig
from adgovernor.core.config.models import PaginationSettings, RateLimitTier
from adgovernor.core.fetch.errors import FailureKind, GraphApiError, RetryExhaustedError
from adgovernor.core.fetch.pagination import PaginationParams
from adgovernor.core.fetch.throttling import RateLimiter

TOKEN = "EAAB-test-token"


def _error(code, subcode=None, message="failed"):
    error = {"code": code, "message": message}
    if subcode is not None:
        error["error_subcode"] = subcode
    return {"error": error}


class Recorder:
    """Mock transport handler replaying queued responses."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        return response


def _client(handler, limiter=None, token=TOKEN, sleep=None, pagination=None):
    settings = ApiConfig(access_token=token)
    backend = HttpBackend(transport=httpx.MockTransport(handler))
    return GraphApiClient(
        settings,
        limiter or RateLimiter(RateLimitTier.STANDARD),
        backend,
        pagination=pagination,
        sleep=sleep or AsyncMock(),
    )


class TestHelpers:
    def test_format_account_id(self):
        assert format_account_id("123") == "act_123"
        assert format_account_id("act_123") == "act_123"

    def test_extract_account_number(self):
        assert extract_account_number("act_123") == "123"
        assert extract_account_number("123") == "123"

    def test_build_query(self):
        query = build_query({
            "fields": "id,name",
            "limit": 25,
            "filtering": [{"field": "spend", "operator": "GREATER_THAN", "value": 0}],
            "summary": True,
            "after": None,
        })

        assert query == {
            "fields": "id,name",
            "limit": "25",
            "filtering": '[{"field":"spend","operator":"GREATER_THAN","value":0}]',
            "summary": "true",
        }


class TestRequest:
    """Tests for single governed calls."""

    @pytest.mark.asyncio
    async def test_sends_auth_and_versioned_url(self):
        recorder = Recorder(httpx.Response(200, json={"id": "42", "name": "me"}))

        async with _client(recorder) as client:
            result = await client.request("me", params={"fields": "id,name"})

        assert result == {"id": "42", "name": "me"}
        request = recorder.requests[0]
        assert request.url.path == "/v23.0/me"
        assert request.url.params["fields"] == "id,name"
        assert request.headers["Authorization"] == f"Bearer {TOKEN}"
        assert request.headers["User-Agent"] == "adgovernor/0.1.0"

    @pytest.mark.asyncio
    async def test_missing_token_fails_without_sending(self):
        recorder = Recorder(httpx.Response(200, json={}))

        async with _client(recorder, token=None) as client:
            with pytest.raises(GraphApiError) as exc_info:
                await client.request("me")

        assert exc_info.value.kind is FailureKind.AUTH
        assert recorder.requests == []

    @pytest.mark.asyncio
    async def test_charges_rate_limiter_per_account(self):
        limiter = RateLimiter(RateLimitTier.DEVELOPMENT)
        recorder = Recorder(httpx.Response(200, json={"id": "1"}))

        async with _client(recorder, limiter) as client:
            await client.request("act_1/campaigns", account_id="1")
            await client.request("act_1/campaigns", method="POST", body={"name": "c"}, account_id="act_1", is_write_call=True)
            await client.request("me")

        assert limiter.get_current_score("act_1") == 4
        assert limiter.stats()["accounts_tracked"] == 1

    @pytest.mark.asyncio
    async def test_blocked_account_never_reaches_network(self):
        limiter = RateLimiter(RateLimitTier.DEVELOPMENT)
        recorder = Recorder(httpx.Response(200, json={"id": "1"}))

        async with _client(recorder, limiter) as client:
            for _ in range(60):
                await client.request("act_1/ads", account_id="act_1")
            with pytest.raises(GraphApiError) as exc_info:
                await client.request("act_1/ads", account_id="act_1")

        assert exc_info.value.kind is FailureKind.RATE_LIMIT
        assert exc_info.value.retry_after_ms == 300_000
        assert len(recorder.requests) == 60

    @pytest.mark.asyncio
    async def test_validation_error_not_retried(self):
        sleep = AsyncMock()
        recorder = Recorder(httpx.Response(400, json=_error(100, message="Invalid parameter")))

        async with _client(recorder, sleep=sleep) as client:
            with pytest.raises(GraphApiError) as exc_info:
                await client.request("act_1/ads")

        assert exc_info.value.kind is FailureKind.VALIDATION
        assert exc_info.value.message == "Invalid parameter"
        assert len(recorder.requests) == 1
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_server_error_retried_then_succeeds(self):
        sleep = AsyncMock()
        recorder = Recorder(
            httpx.Response(500, text="Internal Server Error"),
            httpx.Response(200, json={"data": []}),
        )

        async with _client(recorder, sleep=sleep) as client:
            result = await client.request("act_1/ads")

        assert result == {"data": []}
        assert len(recorder.requests) == 2
        assert sleep.await_count == 1

    @pytest.mark.asyncio
    async def test_remote_rate_limit_waits_and_exhausts(self):
        sleep = AsyncMock()
        recorder = Recorder(httpx.Response(400, json=_error(613, 1487742, "Calls within one hour")))

        async with _client(recorder, sleep=sleep) as client:
            with pytest.raises(RetryExhaustedError) as exc_info:
                await client.request("act_1/insights")

        assert len(recorder.requests) == 4
        assert [c.args[0] for c in sleep.await_args_list] == [60.0, 60.0, 60.0]
        assert exc_info.value.context == "GET act_1/insights"
        assert exc_info.value.kind is FailureKind.RATE_LIMIT

    @pytest.mark.asyncio
    async def test_transport_error_surfaces_as_backend_error(self):
        recorder = Recorder(httpx.ConnectError("connection refused"))

        async with _client(recorder) as client:
            with pytest.raises(BackendError):
                await client.request("me")

        assert len(recorder.requests) == 1

    @pytest.mark.asyncio
    async def test_post_json_body(self):
        recorder = Recorder(httpx.Response(200, json={"id": "c1"}))

        async with _client(recorder) as client:
            await client.request("act_1/campaigns", method="post", body={"name": "Spring", "status": "PAUSED"})

        request = recorder.requests[0]
        assert request.method == "POST"
        assert json.loads(request.content) == {"name": "Spring", "status": "PAUSED"}


class TestPaging:
    """Tests for page fetching and traversal."""

    @pytest.mark.asyncio
    async def test_collect_follows_cursors(self):
        recorder = Recorder(
            httpx.Response(200, json={
                "data": [{"id": "1"}, {"id": "2"}],
                "paging": {"cursors": {"after": "c2"}, "next": "https://graph.facebook.com/v23.0/act_1/ads?after=c2"},
            }),
            httpx.Response(200, json={"data": [{"id": "3"}], "paging": {"cursors": {"before": "c2"}}}),
        )

        async with _client(recorder) as client:
            items = await client.collect(
                "act_1/ads",
                PaginationParams(limit=2, extra={"fields": "id"}),
                account_id="act_1",
            )

        assert [item["id"] for item in items] == ["1", "2", "3"]
        assert "after" not in recorder.requests[0].url.params
        assert recorder.requests[1].url.params["after"] == "c2"
        assert recorder.requests[1].url.params["limit"] == "2"
        assert recorder.requests[1].url.params["fields"] == "id"

    @pytest.mark.asyncio
    async def test_iter_pages_respects_max_pages(self):
        endless = httpx.Response(200, json={"data": [{"id": "x"}], "paging": {"cursors": {"after": "more"}}})
        recorder = Recorder(endless)

        async with _client(recorder) as client:
            pages = [page async for page in client.iter_pages("act_1/ads", max_pages=3)]

        assert len(pages) == 3
        assert len(recorder.requests) == 3

    @pytest.mark.asyncio
    async def test_iter_pages_defaults_to_configured_max_pages(self):
        endless = httpx.Response(200, json={"data": [{"id": "x"}], "paging": {"cursors": {"after": "more"}}})
        recorder = Recorder(endless)

        async with _client(recorder, pagination=PaginationSettings(max_pages=2)) as client:
            pages = [page async for page in client.iter_pages("act_1/ads")]

        assert len(pages) == 2
        assert len(recorder.requests) == 2

    @pytest.mark.asyncio
    async def test_collect_defaults_to_configured_limits(self):
        endless = httpx.Response(200, json={
            "data": [{"id": "a"}, {"id": "b"}],
            "paging": {"cursors": {"after": "more"}},
        })

        recorder = Recorder(endless)
        async with _client(recorder, pagination=PaginationSettings(collect_max_pages=3)) as client:
            items = await client.collect("act_1/ads")
        assert len(items) == 6
        assert len(recorder.requests) == 3

        recorder = Recorder(endless)
        async with _client(recorder, pagination=PaginationSettings(max_items=3)) as client:
            items = await client.collect("act_1/ads")
        assert len(items) == 3
        assert len(recorder.requests) == 2

    @pytest.mark.asyncio
    async def test_get_page_rejects_non_object_body(self):
        recorder = Recorder(httpx.Response(200, text="true"))

        async with _client(recorder) as client:
            with pytest.raises(GraphApiError) as exc_info:
                await client.get_page("act_1/ads")

        assert exc_info.value.kind is FailureKind.PROCESSING


class TestBatchAndToken:
    @pytest.mark.asyncio
    async def test_batch_request_posts_form(self):
        recorder = Recorder(httpx.Response(200, json=[{"code": 200, "body": "{}"}]))
        batch = [{"method": "GET", "relative_url": "me"}]

        async with _client(recorder) as client:
            result = await client.batch_request(batch)

        assert result == [{"code": 200, "body": "{}"}]
        request = recorder.requests[0]
        assert request.method == "POST"
        assert request.headers["Content-Type"] == "application/x-www-form-urlencoded"
        assert json.loads(parse_qs(request.content.decode())["batch"][0]) == batch

    @pytest.mark.asyncio
    async def test_batch_request_splits_by_configured_size(self):
        sent = []

        def handler(request):
            sent.append(request)
            chunk = json.loads(parse_qs(request.content.decode())["batch"][0])
            return httpx.Response(200, json=[{"code": 200, "body": item["relative_url"]} for item in chunk])

        requests = [{"method": "GET", "relative_url": f"ad_{i}"} for i in range(5)]
        sleep = AsyncMock()

        pagination = PaginationSettings(batch_size=2, batch_delay_ms=5)
        async with _client(handler, sleep=sleep, pagination=pagination) as client:
            result = await client.batch_request(requests)

        assert [item["body"] for item in result] == [f"ad_{i}" for i in range(5)]
        assert len(sent) == 3
        assert sleep.await_count == 2
        sleep.assert_awaited_with(0.005)

    @pytest.mark.asyncio
    async def test_batch_request_charges_account_per_chunk(self):
        limiter = RateLimiter(RateLimitTier.DEVELOPMENT)
        recorder = Recorder(httpx.Response(200, json=[{"code": 200, "body": "{}"}]))
        requests = [{"method": "GET", "relative_url": f"ad_{i}"} for i in range(3)]

        async with _client(recorder, limiter, pagination=PaginationSettings(batch_size=1)) as client:
            await client.batch_request(requests, account_id="1")

        assert len(recorder.requests) == 3
        assert limiter.get_current_score("act_1") == 9

    @pytest.mark.asyncio
    async def test_validate_token(self):
        async with _client(Recorder(httpx.Response(200, json={"id": "1"}))) as client:
            assert await client.validate_token() is True

        rejected = Recorder(httpx.Response(400, json=_error(190, message="Invalid OAuth access token")))
        async with _client(rejected) as client:
            assert await client.validate_token() is False


class TestHttpBackend:
    @pytest.mark.asyncio
    async def test_unsupported_method(self):
        backend = HttpBackend(transport=httpx.MockTransport(Recorder(httpx.Response(200))))
        with pytest.raises(BackendError):
            await backend.send(RequestSpec(url="https://graph.facebook.com/v23.0/me", method="PATCH"))
        await backend.close()

    @pytest.mark.asyncio
    async def test_response_fields(self):
        backend = HttpBackend(
            default_headers={"X-Trace": "1"},
            transport=httpx.MockTransport(Recorder(httpx.Response(201, text="created", headers={"X-Usage": "5"}))),
        )

        async with backend:
            response = await backend.send(RequestSpec(url="https://graph.facebook.com/v23.0/me"))

        assert response.status_code == 201
        assert response.ok
        assert response.text == "created"
        assert response.headers["x-usage"] == "5"

    @pytest.mark.asyncio
    async def test_logs_account_and_operation(self, caplog):
        recorder = Recorder(httpx.Response(200, json={"data": []}))

        with caplog.at_level(logging.DEBUG, logger="adgovernor.backends.http"):
            async with _client(recorder) as client:
                await client.request("act_1/ads", account_id="act_1")

        record = [r for r in caplog.records if r.name == "adgovernor.backends.http"][-1]
        assert record.account_id == "act_1"
        assert record.context == "GET act_1/ads"
        assert "-> 200" in record.getMessage()
