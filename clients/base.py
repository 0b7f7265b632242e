"""
ProviderApiClient — shared request plumbing for provider API clients.

Handles Bearer auth, JSON decoding, error classification and cursor
pagination.  Subclasses set ``provider`` / ``base_url`` and override
``_extract_error`` for their error body shape.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

import httpx

from config.settings import Settings, config
from connectors.errors import ProviderApiError
from utils.rate_limiter import RateLimiter, RateLimiterRegistry
from utils.retry import with_retry

logger = logging.getLogger(__name__)


class ProviderApiClient:
    provider: str = ""
    base_url: str = ""

    def __init__(
        self,
        access_token: str,
        *,
        rate_limiter: Optional[RateLimiter] = None,
        max_retries: Optional[int] = None,
        base_delay: Optional[float] = None,
        quota_multiplier: Optional[float] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        settings: Optional[Settings] = None,
    ):
        settings = settings or config
        self._access_token = access_token
        self._rate_limiter = rate_limiter or RateLimiterRegistry().get(self.provider)
        self.max_retries = settings.api_max_retries if max_retries is None else max_retries
        self.base_delay = settings.api_retry_base_delay if base_delay is None else base_delay
        self.quota_multiplier = (
            settings.quota_backoff_multiplier if quota_multiplier is None else quota_multiplier
        )
        self._timeout = settings.http_timeout if timeout is None else timeout
        self._transport = transport
        self._sleep = sleep

    # ── Requests ────────────────────────────────────────────────────────

    async def request(
        self,
        method: str,
        url: str,
        *,
        params: Any = None,
        json: Any = None,
    ) -> Any:
        """
        Send one logical request and return the decoded JSON body.

        The call occupies a single rate-limiter slot; retries of a failed
        attempt happen inside that slot.

        Raises
        ------
        ProviderApiError     – non-2xx answer (after retries, if retryable)
        httpx.TransportError – network failure on the last attempt
        RateLimiterQueueFull – the provider's dispatch queue is saturated
        """
        full_url = url if url.startswith("http") else f"{self.base_url}{url}"

        async def send_once() -> Any:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                resp = await client.request(
                    method,
                    full_url,
                    params=params,
                    json=json,
                    headers=self._headers(),
                )
            return self._decode(resp)

        return await self._rate_limiter.execute(
            lambda: with_retry(
                send_once,
                max_retries=self.max_retries,
                base_delay=self.base_delay,
                quota_multiplier=self.quota_multiplier,
                sleep=self._sleep,
                label=f"{self.provider} {method} {url}",
            )
        )

    async def paginate(
        self,
        url: str,
        *,
        items_key: str,
        cursor_param: str,
        cursor_field: str,
        params: Optional[Dict[str, Any]] = None,
        max_results: Optional[int] = None,
    ) -> List[Any]:
        """Follow ``cursor_field`` until exhausted (or ``max_results`` reached)."""
        results: List[Any] = []
        cursor: Optional[str] = None
        while True:
            page_params = dict(params or {})
            if cursor:
                page_params[cursor_param] = cursor
            body = await self.request("GET", url, params=page_params)
            results.extend(body.get(items_key, []))

            if max_results is not None and len(results) >= max_results:
                return results[:max_results]
            cursor = body.get(cursor_field)
            if not cursor:
                return results

    # ── Internals ───────────────────────────────────────────────────────

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self._access_token}",
            "Accept": "application/json",
        }

    def _decode(self, resp: httpx.Response) -> Any:
        if resp.is_success:
            return resp.json() if resp.content else {}

        try:
            body: Any = resp.json()
        except ValueError:
            body = resp.text

        message, codes = self._extract_error(body)
        raise ProviderApiError(
            message or f"{self.provider} API returned HTTP {resp.status_code}",
            status_code=resp.status_code,
            error_codes=codes,
            raw_body=body,
            provider=self.provider,
        )

    def _extract_error(self, body: Any) -> Tuple[Optional[str], List[str]]:
        """Return ``(message, provider error codes)`` from an error body."""
        if isinstance(body, dict):
            error = body.get("error")
            if isinstance(error, dict):
                return error.get("message"), [c for c in (error.get("status"), error.get("type")) if c]
            if isinstance(error, str):
                return body.get("message") or error, [error]
        return None, []

    def _not_found(self, message: str) -> ProviderApiError:
        return ProviderApiError(message, status_code=404, provider=self.provider)
