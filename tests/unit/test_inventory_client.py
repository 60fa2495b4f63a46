"""
Unit tests for InventoryClient — paging, retries, throttling, auth.

Uses httpx.MockTransport so no network is touched and an injected sleep
so backoff is instant.
Version: 1.0.0
"""
from unittest.mock import MagicMock

import httpx
import pytest

from inventory_sync.clients.inventory_client import InventoryClient
from inventory_sync.core.exceptions import (
    AuthenticationError,
    ConnectionTimeoutError,
    ExternalAPIError,
    RateLimitError,
    UpstreamRequestError,
)
from inventory_sync.utils.rate_limiter import NoopRateLimiter


def _client(mock_settings, handler, rate_limiter=None):
    sleeps = []
    http = httpx.Client(base_url=mock_settings.inventory_api_url, transport=httpx.MockTransport(handler))
    client = InventoryClient(
        mock_settings,
        rate_limiter=rate_limiter or NoopRateLimiter(),
        http_client=http,
        sleep=sleeps.append,
    )
    return client, sleeps


def _sequence(*responses):
    """Handler returning the given responses in order, recording requests."""
    calls = []
    queue = list(responses)

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        item = queue.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    return handler, calls


# ---------------------------------------------------------------------------
# Paging
# ---------------------------------------------------------------------------

@pytest.mark.unit
class TestFetchPage:
    """Request shape and response parsing."""

    def test_first_page_sends_limit_without_cursor(self, mock_settings):
        handler, calls = _sequence(httpx.Response(200, json={"items": [{"sku": "A"}], "next_cursor": "c2"}))
        client, _ = _client(mock_settings, handler)

        page = client.fetch_page()

        assert page.records == [{"sku": "A"}]
        assert page.next_cursor == "c2"
        assert calls[0].url.path == "/v1/inventory"
        assert calls[0].url.params["limit"] == "100"
        assert "cursor" not in calls[0].url.params

    def test_cursor_is_forwarded(self, mock_settings):
        handler, calls = _sequence(httpx.Response(200, json={"items": [], "next_cursor": None}))
        client, _ = _client(mock_settings, handler)

        page = client.fetch_page("abc")

        assert calls[0].url.params["cursor"] == "abc"
        assert page.is_last

    def test_camel_case_next_cursor_accepted(self, mock_settings):
        handler, _ = _sequence(httpx.Response(200, json={"items": [], "nextCursor": 42}))
        client, _ = _client(mock_settings, handler)

        assert client.fetch_page().next_cursor == "42"

    def test_missing_items_is_upstream_error(self, mock_settings):
        handler, _ = _sequence(httpx.Response(200, json={"data": []}))
        client, _ = _client(mock_settings, handler)

        with pytest.raises(UpstreamRequestError):
            client.fetch_page()

    def test_non_json_body_is_upstream_error(self, mock_settings):
        handler, _ = _sequence(httpx.Response(200, text="<html>oops</html>"))
        client, _ = _client(mock_settings, handler)

        with pytest.raises(UpstreamRequestError):
            client.fetch_page()

    def test_iter_pages_follows_cursor_until_exhausted(self, mock_settings):
        handler, calls = _sequence(
            httpx.Response(200, json={"items": [{"sku": "A"}], "next_cursor": "p2"}),
            httpx.Response(200, json={"items": [{"sku": "B"}], "next_cursor": "p3"}),
            httpx.Response(200, json={"items": [{"sku": "C"}], "next_cursor": None}),
        )
        client, _ = _client(mock_settings, handler)

        pages = list(client.iter_pages())

        assert [p.records[0]["sku"] for p in pages] == ["A", "B", "C"]
        assert [c.url.params.get("cursor") for c in calls] == [None, "p2", "p3"]


# ---------------------------------------------------------------------------
# Retries
# ---------------------------------------------------------------------------

@pytest.mark.unit
class TestRetries:
    """Backoff on 5xx and network errors."""

    def test_5xx_retried_with_exponential_backoff(self, mock_settings):
        handler, calls = _sequence(
            httpx.Response(503),
            httpx.Response(502),
            httpx.Response(200, json={"items": [], "next_cursor": None}),
        )
        client, sleeps = _client(mock_settings, handler)

        client.fetch_page()

        assert len(calls) == 3
        assert sleeps == [1.0, 2.0]

    def test_5xx_exhaustion_raises_external_api_error(self, mock_settings):
        handler, calls = _sequence(*[httpx.Response(500) for _ in range(4)])
        client, sleeps = _client(mock_settings, handler)

        with pytest.raises(ExternalAPIError) as exc_info:
            client.fetch_page()

        assert exc_info.value.status_code == 500
        assert len(calls) == 4
        assert sleeps == [1.0, 2.0, 4.0]

    def test_backoff_capped_at_max_delay(self, mock_settings):
        settings = mock_settings.model_copy(update={"inventory_max_retries": 6, "inventory_retry_max_delay": 5.0})
        handler, _ = _sequence(*[httpx.Response(500) for _ in range(7)])
        client, sleeps = _client(settings, handler)

        with pytest.raises(ExternalAPIError):
            client.fetch_page()

        assert max(sleeps) == 5.0

    def test_transport_error_retried_then_succeeds(self, mock_settings):
        handler, calls = _sequence(
            httpx.ConnectError("refused"),
            httpx.Response(200, json={"items": [], "next_cursor": None}),
        )
        client, sleeps = _client(mock_settings, handler)

        client.fetch_page()

        assert len(calls) == 2
        assert sleeps == [1.0]

    def test_timeout_exhaustion_raises_connection_timeout(self, mock_settings):
        handler, _ = _sequence(*[httpx.ReadTimeout("slow") for _ in range(4)])
        client, _ = _client(mock_settings, handler)

        with pytest.raises(ConnectionTimeoutError):
            client.fetch_page()

    def test_other_4xx_not_retried(self, mock_settings):
        handler, calls = _sequence(httpx.Response(404, text="nope"))
        client, _ = _client(mock_settings, handler)

        with pytest.raises(UpstreamRequestError) as exc_info:
            client.fetch_page()

        assert exc_info.value.status_code == 404
        assert len(calls) == 1


# ---------------------------------------------------------------------------
# Auth and throttling
# ---------------------------------------------------------------------------

@pytest.mark.unit
class TestAuthAndThrottling:
    """401/403 fail fast; 429 honors Retry-After."""

    @pytest.mark.parametrize("status", [401, 403])
    def test_auth_failure_is_not_retried(self, mock_settings, status):
        handler, calls = _sequence(httpx.Response(status))
        client, sleeps = _client(mock_settings, handler)

        with pytest.raises(AuthenticationError):
            client.fetch_page()

        assert len(calls) == 1
        assert sleeps == []

    def test_missing_credentials_raise_before_request(self, mock_settings):
        settings = mock_settings.model_copy(update={"inventory_api_password": None})
        client = InventoryClient(settings, rate_limiter=NoopRateLimiter())

        with pytest.raises(AuthenticationError):
            client.fetch_page()

    def test_429_waits_retry_after_seconds(self, mock_settings):
        handler, _ = _sequence(
            httpx.Response(429, headers={"Retry-After": "7"}),
            httpx.Response(200, json={"items": [], "next_cursor": None}),
        )
        client, sleeps = _client(mock_settings, handler)

        client.fetch_page()

        assert sleeps == [7.0]

    def test_429_without_header_uses_default_wait(self, mock_settings):
        handler, _ = _sequence(
            httpx.Response(429),
            httpx.Response(200, json={"items": [], "next_cursor": None}),
        )
        client, sleeps = _client(mock_settings, handler)

        client.fetch_page()

        assert sleeps == [30.0]

    def test_429_wait_capped(self, mock_settings):
        handler, _ = _sequence(
            httpx.Response(429, headers={"Retry-After": "9999"}),
            httpx.Response(200, json={"items": [], "next_cursor": None}),
        )
        client, sleeps = _client(mock_settings, handler)

        client.fetch_page()

        assert sleeps == [120.0]

    def test_429_http_date_in_past_waits_zero(self, mock_settings):
        handler, _ = _sequence(
            httpx.Response(429, headers={"Retry-After": "Wed, 21 Oct 2015 07:28:00 GMT"}),
            httpx.Response(200, json={"items": [], "next_cursor": None}),
        )
        client, sleeps = _client(mock_settings, handler)

        client.fetch_page()

        assert sleeps == [0.0]

    def test_429_exhaustion_raises_rate_limit_error(self, mock_settings):
        handler, calls = _sequence(*[httpx.Response(429, headers={"Retry-After": "1"}) for _ in range(4)])
        client, _ = _client(mock_settings, handler)

        with pytest.raises(RateLimitError):
            client.fetch_page()

        assert len(calls) == 4

    def test_token_acquired_before_every_request(self, mock_settings):
        limiter = MagicMock()
        limiter.wait_for_token.return_value = True
        handler, calls = _sequence(
            httpx.Response(503),
            httpx.Response(200, json={"items": [], "next_cursor": None}),
        )
        client, _ = _client(mock_settings, handler, rate_limiter=limiter)

        client.fetch_page()

        assert limiter.wait_for_token.call_count == len(calls) == 2

    def test_token_timeout_raises_rate_limit_error(self, mock_settings):
        limiter = MagicMock()
        limiter.wait_for_token.return_value = False
        handler, calls = _sequence()
        client, _ = _client(mock_settings, handler, rate_limiter=limiter)

        with pytest.raises(RateLimitError):
            client.fetch_page()

        assert calls == []


@pytest.mark.unit
class TestHealthCheck:
    def test_healthy(self, mock_settings):
        handler, calls = _sequence(httpx.Response(200, json={"items": [], "next_cursor": None}))
        client, _ = _client(mock_settings, handler)

        result = client.health_check()

        assert result["healthy"] is True
        assert calls[0].url.params["limit"] == "1"

    def test_unhealthy_on_auth_error(self, mock_settings):
        handler, _ = _sequence(httpx.Response(401))
        client, _ = _client(mock_settings, handler)

        result = client.health_check()

        assert result["healthy"] is False
        assert "authentication" in result["error"].lower()
