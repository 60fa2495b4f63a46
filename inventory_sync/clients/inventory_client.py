"""
Inventory API HTTP client — rate-limited, retrying page fetches.

Every request acquires a token from the shared rate limiter first.
- 5xx and network failures: exponential backoff, bounded attempts
- 429: waits for Retry-After (or a conservative default), bounded attempts
- 401/403: AuthenticationError immediately, never retried
Version: 1.0.0
"""
import logging
import time
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Callable, Dict, Iterator, Optional

import httpx

from inventory_sync.core.config import Settings
from inventory_sync.core.exceptions import (
    AuthenticationError,
    ConnectionTimeoutError,
    ExternalAPIError,
    RateLimitError,
    UpstreamRequestError,
)
from inventory_sync.schemas.inventory import InventoryPage
from inventory_sync.utils.rate_limiter import RateLimiter

logger = logging.getLogger("inventory_client")

SERVICE_NAME = "Inventory"


class InventoryClient:
    def __init__(
        self,
        settings: Settings,
        rate_limiter: RateLimiter,
        http_client: Optional[httpx.Client] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._base_url = settings.inventory_api_url.rstrip("/")
        self._username = settings.inventory_api_username
        self._password = settings.inventory_api_password
        self._page_size = settings.inventory_api_page_size
        self._timeout = settings.inventory_api_timeout
        self._max_retries = settings.inventory_max_retries
        self._retry_base_delay = settings.inventory_retry_base_delay
        self._retry_max_delay = settings.inventory_retry_max_delay
        self._rate_limit_default_wait = settings.inventory_rate_limit_default_wait
        self._rate_limit_max_wait = settings.inventory_rate_limit_max_wait
        self._token_timeout = settings.inventory_rate_limit_timeout
        self._rate_limiter = rate_limiter
        self._http = http_client
        self._sleep = sleep

    @property
    def rate_limiter(self) -> RateLimiter:
        return self._rate_limiter

    def _get_http(self) -> httpx.Client:
        if self._http is None:
            if not (self._username and self._password):
                raise AuthenticationError(
                    "INVENTORY_API_USERNAME and INVENTORY_API_PASSWORD env vars are required"
                )
            self._http = httpx.Client(
                base_url=self._base_url,
                auth=(self._username, self._password),
                timeout=self._timeout,
                headers={"Accept": "application/json"},
            )
        return self._http

    def close(self) -> None:
        if self._http is not None:
            self._http.close()
            self._http = None

    def fetch_page(self, cursor: Optional[str] = None, limit: Optional[int] = None) -> InventoryPage:
        """
        Fetch one page of inventory records.

        Args:
            cursor: Opaque cursor from the previous page (None for the first page)
            limit: Page size override

        Returns:
            InventoryPage with raw records and next_cursor (None when done)

        Raises:
            AuthenticationError: Credentials rejected (401/403)
            RateLimitError: Still throttled after all attempts
            ExternalAPIError: 5xx after all attempts
            ConnectionTimeoutError: Network failure after all attempts
            UpstreamRequestError: Other 4xx or malformed body
        """
        params: Dict[str, Any] = {"limit": limit or self._page_size}
        if cursor:
            params["cursor"] = cursor

        resp = self._request("/inventory", params)

        try:
            body = resp.json()
        except ValueError:
            raise UpstreamRequestError("Inventory API returned a non-JSON body", resp.status_code)

        if not isinstance(body, dict) or not isinstance(body.get("items"), list):
            raise UpstreamRequestError("Inventory API response is missing an 'items' list", resp.status_code)

        next_cursor = body.get("next_cursor", body.get("nextCursor"))
        page = InventoryPage(
            records=body["items"],
            next_cursor=str(next_cursor) if next_cursor not in (None, "") else None,
        )
        logger.debug(f"Fetched page cursor={cursor} records={len(page.records)} next={page.next_cursor}")
        return page

    def iter_pages(self, cursor: Optional[str] = None) -> Iterator[InventoryPage]:
        """Yield pages until the upstream reports no next cursor."""
        while True:
            page = self.fetch_page(cursor)
            yield page
            if page.is_last:
                return
            cursor = page.next_cursor

    def health_check(self) -> Dict[str, Any]:
        """Fetch a single record to verify connectivity and credentials."""
        start = time.monotonic()
        try:
            self.fetch_page(limit=1)
            return {"healthy": True, "latency_ms": int((time.monotonic() - start) * 1000)}
        except Exception as e:
            logger.warning(f"Inventory API health check failed: {e}")
            return {"healthy": False, "error": str(e)}

    # ============================================
    # Internals
    # ============================================
    def _request(self, path: str, params: Dict[str, Any]) -> httpx.Response:
        http = self._get_http()
        attempt = 0

        while True:
            if not self._rate_limiter.wait_for_token(timeout=self._token_timeout):
                raise RateLimitError(SERVICE_NAME, retry_after=self._token_timeout)

            try:
                resp = http.get(path, params=params)
            except httpx.TimeoutException as e:
                error = ConnectionTimeoutError(f"{SERVICE_NAME} request timed out: {e}")
            except httpx.TransportError as e:
                error = ConnectionTimeoutError(f"{SERVICE_NAME} network error: {e}")
            else:
                status = resp.status_code

                if status < 400:
                    return resp

                if status in (401, 403):
                    logger.error(f"{SERVICE_NAME} API rejected credentials (HTTP {status})")
                    raise AuthenticationError(f"{SERVICE_NAME} API authentication failed: HTTP {status}")

                if status == 429:
                    wait = self._retry_after_seconds(resp)
                    if attempt >= self._max_retries:
                        raise RateLimitError(SERVICE_NAME, retry_after=wait)
                    attempt += 1
                    logger.warning(
                        f"{SERVICE_NAME} API throttled (429), waiting {wait:.1f}s "
                        f"(attempt {attempt}/{self._max_retries})"
                    )
                    self._sleep(wait)
                    continue

                if status < 500:
                    raise UpstreamRequestError(
                        f"{SERVICE_NAME} API error {status}: {resp.text[:200]}", status
                    )

                error = ExternalAPIError(SERVICE_NAME, f"HTTP {status}: {resp.text[:200]}", status)

            if attempt >= self._max_retries:
                logger.error(f"{SERVICE_NAME} API retries exhausted: {error}")
                raise error

            attempt += 1
            delay = min(self._retry_base_delay * (2 ** (attempt - 1)), self._retry_max_delay)
            logger.warning(f"{error} - retrying in {delay:.1f}s (attempt {attempt}/{self._max_retries})")
            self._sleep(delay)

    def _retry_after_seconds(self, resp: httpx.Response) -> float:
        """Seconds to wait from a Retry-After header (delta-seconds or HTTP-date)."""
        header = resp.headers.get("Retry-After")
        if not header:
            return self._rate_limit_default_wait

        try:
            wait = float(header)
        except ValueError:
            try:
                retry_at = parsedate_to_datetime(header)
            except (TypeError, ValueError):
                return self._rate_limit_default_wait
            if retry_at.tzinfo is None:
                retry_at = retry_at.replace(tzinfo=timezone.utc)
            wait = (retry_at - datetime.now(timezone.utc)).total_seconds()

        return min(max(wait, 0.0), self._rate_limit_max_wait)
