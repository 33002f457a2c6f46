"""Tenacity retry wrapper driven by RetryConfig."""

from __future__ import annotations

from collections.abc import Callable

from tenacity import (
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from .config import RetryConfig


def with_retry(
    config: RetryConfig,
    *,
    retryable: Callable[[BaseException], bool] = lambda exc: isinstance(exc, Exception),
) -> Callable:
    """Return a tenacity retry decorator configured from *config*.

    *retryable* decides, per raised exception, whether another attempt is
    made.  The last exception is re-raised once attempts are exhausted.

    Usage::

        @with_retry(config.retry, retryable=is_transient)
        async def connect() -> None: ...
    """
    return retry(
        stop=stop_after_attempt(max(config.max_attempts, 1)),
        wait=wait_exponential(
            multiplier=config.multiplier,
            min=config.initial_wait_seconds,
            max=config.max_wait_seconds,
        ),
        retry=retry_if_exception(retryable),
        reraise=True,
    )
