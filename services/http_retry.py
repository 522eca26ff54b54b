"""
Shared outbound-call policy for the wallet and price providers.

- Every provider call goes through `call_with_retry`.
- Only rate limiting is retried (HTTP 429 or a provider-specific "rate limit"
  payload); other failures surface immediately as ProviderError.
- Delay grows linearly: delay, 2*delay, 3*delay, ...
"""
from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

import httpx
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_incrementing,
)

from utils.common_helpers import safe_json

logger = logging.getLogger(__name__)

T = TypeVar("T")

RATE_LIMIT_STATUS_CODES = {429}


class ProviderError(RuntimeError):
    """Raised when an outbound provider call fails."""

    def __init__(self, message: str, *, provider: str = "", status: Optional[int] = None):
        super().__init__(message)
        self.provider = provider
        self.status = status


class RateLimitError(ProviderError):
    """Provider refused the call because of rate limiting. Retryable."""


async def call_with_retry(
    fn: Callable[[], Awaitable[T]],
    *,
    retries: int,
    delay_sec: float,
    label: str,
) -> T:
    """
    Run `fn` and retry it on RateLimitError up to `retries` extra times.
    Raises RateLimitError once retries are exhausted.
    """
    retries = max(0, int(retries))
    delay = max(0.0, float(delay_sec))
    retrying = AsyncRetrying(
        stop=stop_after_attempt(retries + 1),
        wait=wait_incrementing(start=delay, increment=delay),
        retry=retry_if_exception_type(RateLimitError),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    try:
        return await retrying(fn)
    except RateLimitError as exc:
        raise RateLimitError(
            f"{label}: rate limited after {retries} retr{'y' if retries == 1 else 'ies'}",
            provider=exc.provider,
            status=exc.status,
        ) from exc


def raise_for_provider_status(resp: httpx.Response, provider: str) -> None:
    status = resp.status_code
    if status in RATE_LIMIT_STATUS_CODES:
        raise RateLimitError(f"{provider} rate limited (HTTP {status})", provider=provider, status=status)
    if status >= 400:
        raise ProviderError(f"{provider} request failed (HTTP {status})", provider=provider, status=status)


async def get_json(
    client: httpx.AsyncClient,
    url: str,
    *,
    provider: str,
    params: Optional[Dict[str, Any]] = None,
    headers: Optional[Dict[str, str]] = None,
) -> Dict[str, Any]:
    """GET a JSON object; transport errors and bad statuses become ProviderError."""
    try:
        r = await client.get(url, params=params, headers=headers)
    except httpx.TimeoutException as exc:
        raise ProviderError(f"{provider} request timed out", provider=provider) from exc
    except httpx.HTTPError as exc:
        raise ProviderError(f"{provider} request failed: {exc}", provider=provider) from exc

    raise_for_provider_status(r, provider)
    data = safe_json(r)
    if data is None:
        raise ProviderError(f"{provider} returned a non-JSON response", provider=provider, status=r.status_code)
    return data
