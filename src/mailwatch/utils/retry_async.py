"""
Retry decorator with exponential backoff for coroutine functions.
"""

from __future__ import annotations
import asyncio
import functools
from typing import Awaitable, Callable, Tuple, Type, TypeVar

from mailwatch.logging import logger

T = TypeVar("T")


def async_retry_with_backoff(
    max_retries: int = 3,
    initial_delay: float = 1.0,
    backoff_factor: float = 2.0,
    max_delay: float = 30.0,
    exceptions: Tuple[Type[BaseException], ...] = (Exception,),
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """
    Retry a coroutine function when it raises one of ``exceptions``.

    Args:
        max_retries: Retries after the first attempt (0 disables retrying)
        initial_delay: Delay before the first retry in seconds
        backoff_factor: Multiplier applied to the delay after each retry
        max_delay: Upper bound for a single delay
        exceptions: Exception types that trigger a retry; others propagate

    Returns:
        Decorator. The last exception is re-raised once retries are exhausted.
    """
    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> T:
            delay = initial_delay
            for attempt in range(max_retries + 1):
                try:
                    return await func(*args, **kwargs)
                except exceptions as e:
                    if attempt >= max_retries:
                        logger.error(f"{func.__qualname__} failed after {attempt + 1} attempt(s): {e}")
                        raise
                    logger.warning(
                        f"{func.__qualname__} failed (attempt {attempt + 1}/{max_retries + 1}): {e}. "
                        f"Retrying in {delay:.1f}s"
                    )
                    await asyncio.sleep(delay)
                    delay = min(delay * backoff_factor, max_delay)
            raise AssertionError("unreachable")

        return wrapper

    return decorator
