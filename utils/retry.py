"""
Retry / backoff wrapper for transient upstream failures.

Retried:      network failures (``httpx.TransportError``), 5xx, 429 / quota.
Not retried:  structural 4xx, auth errors (401 / 403), anything else.

After the last attempt the original exception propagates unmodified so the
caller still sees its classification.
"""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Awaitable, Callable, TypeVar

import httpx

from connectors.errors import ProviderApiError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, ProviderApiError):
        return exc.retryable
    return isinstance(exc, httpx.TransportError)


def compute_backoff_delay(
    attempt: int,
    base_delay: float,
    *,
    quota_error: bool = False,
    quota_multiplier: float = 3.0,
    exponential: bool = True,
    jitter: float = 1.0,
) -> float:
    """
    ``base_delay * 2**attempt`` (× ``quota_multiplier`` for quota errors)
    plus up to ``jitter`` seconds of random noise.  ``attempt`` is 0-based.
    """
    delay = base_delay * (2 ** attempt if exponential else 1)
    if quota_error:
        delay *= quota_multiplier
    return delay + random.uniform(0, jitter)


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    base_delay: float = 1.0,
    *,
    quota_multiplier: float = 3.0,
    exponential: bool = True,
    jitter: float = 1.0,
    retry_if: Callable[[BaseException], bool] = is_retryable,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    label: str = "request",
) -> T:
    """Run ``fn`` up to ``max_retries + 1`` times with exponential backoff."""
    for attempt in range(max_retries + 1):
        try:
            return await fn()
        except Exception as exc:
            if attempt >= max_retries or not retry_if(exc):
                raise

            quota_error = isinstance(exc, ProviderApiError) and exc.is_quota_error
            delay = compute_backoff_delay(
                attempt,
                base_delay,
                quota_error=quota_error,
                quota_multiplier=quota_multiplier,
                exponential=exponential,
                jitter=jitter,
            )
            logger.warning(
                "%s failed (attempt %d/%d), retrying in %.2fs: %s",
                label,
                attempt + 1,
                max_retries + 1,
                delay,
                exc,
            )
            await sleep(delay)

    raise RuntimeError("unreachable")  # pragma: no cover
