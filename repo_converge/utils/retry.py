"""Retry for idempotent hosting API reads.

Only reads are wrapped: a retried POST whose first response was lost could
create a second release or milestone. Cancellation (asyncio.CancelledError)
is never retried since it is not an Exception subclass.

Example:
    >>> @async_retry(max_attempts=3, exceptions=(httpx.TransportError,))
    ... async def list_groups(pool) -> list[dict]:
    ...     response = await pool.get("/groups")
    ...     return response.json()

Backoff:
    The delay after failed attempt N is ``backoff_factor ** N`` seconds,
    capped at ``max_delay`` (2s, 4s, 8s, ... for the defaults).
"""

import asyncio
import functools
from collections.abc import Awaitable, Callable
from typing import ParamSpec, TypeVar

import structlog

log = structlog.get_logger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


def backoff_delay(attempt: int, backoff_factor: float, max_delay: float) -> float:
    return min(backoff_factor**attempt, max_delay)


def async_retry(
    max_attempts: int = 3,
    backoff_factor: float = 2.0,
    exceptions: tuple[type[Exception], ...] = (Exception,),
    max_delay: float = 30.0,
) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[T]]]:
    """Retry an async function on the given exception types.

    Args:
        max_attempts: Total number of calls before the last error propagates
        backoff_factor: Base of the exponential delay between attempts
        exceptions: Exception types that trigger a retry; anything else
            propagates on the first occurrence
        max_delay: Upper bound for a single delay, in seconds

    Each retry is logged at warning level (``api_retry``), the final
    failure at error level (``api_retry_exhausted``).
    """

    def decorator(func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            attempt = 1
            while True:
                try:
                    return await func(*args, **kwargs)
                except exceptions as e:
                    if attempt >= max_attempts:
                        log.error("api_retry_exhausted", function=func.__name__, attempts=attempt, error=str(e))
                        raise
                    delay = backoff_delay(attempt, backoff_factor, max_delay)
                    log.warning(
                        "api_retry",
                        function=func.__name__,
                        attempt=attempt,
                        max_attempts=max_attempts,
                        delay=delay,
                        error=str(e),
                    )
                    await asyncio.sleep(delay)
                    attempt += 1

        return wrapper

    return decorator
