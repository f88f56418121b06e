"""
VDF Retry Decorator

Exponential backoff with jitter for the minute-bar fetch. Retries only on
transient errors: connection/timeout failures and HTTP 429/5xx responses.
Cancellation is never retried.
"""

from __future__ import annotations

import asyncio
import functools
import random
from typing import Any, Callable, Type

import httpx
import structlog

log = structlog.get_logger(__name__)

DEFAULT_RETRYABLE: tuple[Type[BaseException], ...] = (
    ConnectionError,
    TimeoutError,
    httpx.TransportError,
)

RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


def is_retryable(exc: BaseException, retry_on: tuple[Type[BaseException], ...]) -> bool:
    """True for transport-level failures and throttled / 5xx HTTP responses."""
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code in RETRYABLE_STATUS_CODES
    return isinstance(exc, retry_on)


def with_retry(
    max_attempts: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    backoff_factor: float = 2.0,
    jitter: bool = True,
    retryable_exceptions: tuple[Type[BaseException], ...] | None = None,
    on_retry: Callable[..., Any] | None = None,
) -> Callable:
    """Decorator that retries an async function on transient failures.

    Args:
        max_attempts: Maximum number of attempts (including the first).
        base_delay: Initial delay between retries in seconds.
        max_delay: Maximum delay cap in seconds.
        backoff_factor: Multiplier for delay after each retry.
        jitter: Add randomized jitter to prevent thundering herd.
        retryable_exceptions: Exception types to retry on.
            Defaults to ConnectionError, TimeoutError, httpx.TransportError.
        on_retry: Optional callback(attempt, exception, delay) called before sleeping.

    Usage::

        @with_retry(max_attempts=3, base_delay=1.0)
        async def fetch_page(ticker: str, token: str | None):
            ...
    """
    retry_on = retryable_exceptions or DEFAULT_RETRYABLE

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            for attempt in range(1, max_attempts + 1):
                try:
                    return await func(*args, **kwargs)
                except Exception as exc:
                    if not is_retryable(exc, retry_on):
                        raise
                    if attempt == max_attempts:
                        log.error(
                            "retry.exhausted",
                            func=func.__qualname__,
                            attempts=max_attempts,
                            error=str(exc),
                        )
                        raise
                    delay = compute_delay(attempt, base_delay, max_delay, backoff_factor, jitter)
                    log.warning(
                        "retry.attempt",
                        func=func.__qualname__,
                        attempt=attempt,
                        max_attempts=max_attempts,
                        delay=round(delay, 2),
                        error=str(exc),
                    )
                    if on_retry:
                        on_retry(attempt, exc, delay)
                    await asyncio.sleep(delay)

        return wrapper

    return decorator


def compute_delay(
    attempt: int,
    base_delay: float,
    max_delay: float,
    backoff_factor: float,
    jitter: bool,
) -> float:
    """Calculate delay for a given attempt with exponential backoff + jitter."""
    delay = base_delay * (backoff_factor ** (attempt - 1))
    if jitter:
        delay *= random.uniform(0.5, 1.5)
    return min(delay, max_delay)
