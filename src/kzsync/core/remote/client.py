"""
Rate-limited client for the remote records authority.

Purpose
-------
Fetch single records and ban pages one request at a time, turning every
HTTP outcome into a FetchResult variant.

Architecture Notes
------------------
**Pacing**:
- Every request, from any task, passes through one asyncio.Lock and waits
  until `request_delay_ms` has elapsed since the previous request. The
  scraper and the ban sync therefore draw from a single rate budget.

**Retries** (two RetryPolicy instances, nested):
- Inner, throttling: HTTP 429 -> fixed cooldown, retry the same resource up
  to `max_attempts` times, then `Throttled`.
- Outer, transient: timeouts, transport errors and 5xx -> exponential
  backoff (`backoff_ms * 2^(n-1)`), then `TransientError`.
- 404 is `NotFound` on the first answer and is never retried.

Configuration
-------------
- GLOBAL_API_URL
- GLOBAL_API_TIMEOUT_SECONDS (default: 10)
- GLOBAL_API_REQUEST_DELAY_MS (default: 100)
- GLOBAL_API_MAX_ATTEMPTS (default: 3)
- GLOBAL_API_BACKOFF_MS (default: 2000)
- GLOBAL_API_THROTTLE_COOLDOWN_SECONDS (default: 60)
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Dict, Optional

import httpx

from kzsync.core.config.config import Config
from kzsync.core.exceptions import RemoteApiError, RemoteThrottledError
from kzsync.core.logging.logger import get_logger
from kzsync.core.remote.results import (
    FetchResult,
    Found,
    NotFound,
    Throttled,
    TransientError,
)
from kzsync.core.retry import RetryConfig, RetryPolicy, SleepFunc

logger = get_logger(__name__)


def _is_throttled(exc: BaseException) -> bool:
    return isinstance(exc, RemoteThrottledError)


def _is_transient(exc: BaseException) -> bool:
    return isinstance(exc, RemoteApiError) and not isinstance(exc, RemoteThrottledError)


def throttle_retry_config(
    max_attempts: Optional[int] = None,
    cooldown_seconds: Optional[float] = None,
) -> RetryConfig:
    attempts = max_attempts or int(Config.GLOBAL_API_MAX_ATTEMPTS)
    cooldown_ms = int(
        (cooldown_seconds if cooldown_seconds is not None else Config.GLOBAL_API_THROTTLE_COOLDOWN_SECONDS)
        * 1000
    )
    return RetryConfig(
        max_attempts=attempts,
        initial_backoff_ms=cooldown_ms,
        max_backoff_ms=cooldown_ms,
        multiplier=1.0,
        retryable=_is_throttled,
    )


def transient_retry_config(
    max_attempts: Optional[int] = None,
    backoff_ms: Optional[int] = None,
) -> RetryConfig:
    attempts = max_attempts or int(Config.GLOBAL_API_MAX_ATTEMPTS)
    initial = backoff_ms if backoff_ms is not None else int(Config.GLOBAL_API_BACKOFF_MS)
    return RetryConfig(
        max_attempts=attempts,
        initial_backoff_ms=initial,
        max_backoff_ms=initial * (2 ** max(attempts - 1, 0)),
        multiplier=2.0,
        retryable=_is_transient,
    )


class GlobalApiClient:
    """
    Async client for `GET /records/{id}` and `GET /bans`.

    Public API
    ----------
    - fetch_record(record_id) -> FetchResult
    - fetch_bans(limit, offset) -> FetchResult (data is a list)
    - aclose()

    Usage
    -----
    >>> async with GlobalApiClient() as client:
    ...     result = await client.fetch_record(101)
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
        request_delay_ms: Optional[int] = None,
        timeout_seconds: Optional[float] = None,
        throttle_policy: Optional[RetryPolicy] = None,
        transient_policy: Optional[RetryPolicy] = None,
        sleep: Optional[SleepFunc] = None,
    ) -> None:
        self._base_url = (base_url or Config.GLOBAL_API_URL).rstrip("/")
        timeout = timeout_seconds if timeout_seconds is not None else Config.GLOBAL_API_TIMEOUT_SECONDS

        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            base_url=self._base_url,
            timeout=timeout,
            headers={"Accept": "application/json", "User-Agent": "kzsync"},
        )

        self._sleep: SleepFunc = sleep or asyncio.sleep
        self._request_delay = (
            request_delay_ms if request_delay_ms is not None else Config.GLOBAL_API_REQUEST_DELAY_MS
        ) / 1000.0
        self._throttle_policy = throttle_policy or RetryPolicy(throttle_retry_config(), sleep=sleep)
        self._transient_policy = transient_policy or RetryPolicy(transient_retry_config(), sleep=sleep)

        self._pace_lock = asyncio.Lock()
        self._last_request_at: Optional[float] = None
        self.requests_made = 0

    @property
    def base_url(self) -> str:
        return self._base_url

    async def __aenter__(self) -> "GlobalApiClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # ========================================================================
    # Public fetches
    # ========================================================================

    async def fetch_record(self, record_id: int) -> FetchResult:
        return await self._fetch(f"/records/{record_id}", None, context={"record_id": record_id})

    async def fetch_bans(self, limit: int = 250, offset: int = 0) -> FetchResult:
        result = await self._fetch("/bans", {"limit": limit, "offset": offset}, context={"limit": limit})
        if isinstance(result, Found) and not isinstance(result.data, list):
            return TransientError(RemoteApiError("/bans", "expected a JSON array"))
        return result

    # ========================================================================
    # Internals
    # ========================================================================

    async def _fetch(
        self,
        path: str,
        params: Optional[Dict[str, Any]],
        *,
        context: Dict[str, Any],
    ) -> FetchResult:
        async def once() -> Any:
            return await self._get_json(path, params)

        async def with_cooldown() -> Any:
            return await self._throttle_policy.execute(
                once, operation_name="remote.throttle_cooldown", context=context
            )

        try:
            data = await self._transient_policy.execute(
                with_cooldown, operation_name="remote.fetch", context=context
            )
        except RemoteThrottledError:
            logger.warning(
                "Remote authority still throttling; giving up on resource",
                extra={**context, "path": path},
            )
            return Throttled(attempts=self._throttle_policy.config.max_attempts)
        except RemoteApiError as exc:
            logger.warning(
                "Remote fetch failed after retries",
                extra={**context, "path": path, "error": str(exc)},
            )
            return TransientError(exc)

        if data is None:
            return NotFound()
        return Found(data)

    async def _paced(self) -> None:
        if self._last_request_at is None or self._request_delay <= 0:
            return
        remaining = self._request_delay - (time.monotonic() - self._last_request_at)
        if remaining > 0:
            await self._sleep(remaining)

    async def _get_json(self, path: str, params: Optional[Dict[str, Any]]) -> Any:
        """
        One paced GET.

        Returns the decoded body, or None on 404.

        Raises
        ------
        RemoteThrottledError
            HTTP 429.
        RemoteApiError
            Timeout, transport failure, 5xx, other unexpected status, or a
            body that is not JSON.
        """
        async with self._pace_lock:
            await self._paced()
            try:
                response = await self._client.get(path, params=params)
            except httpx.TimeoutException as exc:
                raise RemoteApiError(path, f"timeout: {exc}") from exc
            except httpx.RequestError as exc:
                raise RemoteApiError(path, f"transport error: {exc}") from exc
            finally:
                self._last_request_at = time.monotonic()
                self.requests_made += 1

        if response.status_code == 404:
            return None
        if response.status_code == 429:
            raise RemoteThrottledError(path)
        if response.status_code >= 400:
            raise RemoteApiError(path, f"HTTP {response.status_code}", status_code=response.status_code)

        try:
            return response.json()
        except ValueError as exc:
            raise RemoteApiError(path, "response body is not JSON", status_code=response.status_code) from exc
