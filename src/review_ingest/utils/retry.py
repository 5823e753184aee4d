"""Retry decorators and utilities."""
import asyncio
import functools
from typing import Awaitable, Callable, Any, Optional, TypeVar
import logging
from tenacity import (
    AsyncRetrying,
    retry,
    retry_if_exception_type,
    retry_if_result,
    stop_after_attempt,
    wait_exponential,
    before_sleep_log,
)

from ..core.logging import logger

T = TypeVar("T")


def retry_async(
    max_attempts: int = 3,
    min_wait: float = 1.0,
    max_wait: float = 60.0,
    backoff_multiplier: float = 2.0,
    retry_exceptions: Optional[tuple] = None
):
    """
    Decorator for retrying async functions with exponential backoff.

    Args:
        max_attempts: Maximum number of retry attempts
        min_wait: Minimum wait time between retries (seconds)
        max_wait: Maximum wait time between retries (seconds)
        backoff_multiplier: Exponential backoff multiplier
        retry_exceptions: Tuple of exception types to retry on (default: all exceptions)
    """
    if retry_exceptions is None:
        retry_exceptions = (Exception,)

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> Any:
            retry_config = retry(
                stop=stop_after_attempt(max_attempts),
                wait=wait_exponential(
                    multiplier=backoff_multiplier,
                    min=min_wait,
                    max=max_wait
                ),
                retry=retry_if_exception_type(retry_exceptions),
                before_sleep=before_sleep_log(logger, logging.WARNING),
                reraise=True
            )

            async def async_func():
                return await func(*args, **kwargs)

            return await retry_config(async_func)()

        return wrapper
    return decorator


class RetryConfig:
    """Configuration for per-item retry behavior."""

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 2.0,
        max_delay: float = 60.0,
    ):
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay


async def retry_with_backoff(
    fn: Callable[[], Awaitable[T]],
    config: RetryConfig,
    is_retryable: Callable[[T], bool],
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """
    Call ``fn`` until it returns a non-retryable result or attempts run out.

    Waits ``base_delay * 2 ** (n - 1)`` seconds (capped at ``max_delay``)
    after the n-th failed attempt. ``fn`` is expected to report failures
    through its return value; the last result is returned when all
    ``max_attempts`` are exhausted.

    Args:
        fn: Zero-argument coroutine function to call
        config: Attempt count and delay settings
        is_retryable: Predicate deciding whether a result warrants another attempt
        sleep: Awaitable sleep used between attempts

    Returns:
        The first non-retryable result, or the last result
    """
    retrying = AsyncRetrying(
        stop=stop_after_attempt(config.max_attempts),
        wait=wait_exponential(multiplier=config.base_delay, min=0, max=config.max_delay),
        retry=retry_if_result(is_retryable),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        retry_error_callback=lambda retry_state: retry_state.outcome.result(),
        sleep=sleep,
    )
    return await retrying(fn)
