"""Retry helper for Bot API calls"""

import asyncio
from typing import Awaitable, Callable, TypeVar

from aiogram.exceptions import TelegramRetryAfter

from tgdrive.exceptions import is_retryable
from tgdrive.utils.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


async def retry_operation(
    operation: Callable[[], Awaitable[T]],
    operation_name: str = "operation",
    max_retries: int = 5,
    retry_delay: float = 3.0,
    backoff_multiplier: float = 1.5,
) -> T:
    """
    Run an async operation with exponential backoff

    Only transient failures (timeouts, resets, unavailable service) are
    retried; anything else is raised immediately.

    Args:
        operation: Zero-argument coroutine factory
        operation_name: Name used in log messages
        max_retries: Total number of attempts
        retry_delay: Delay before the second attempt (seconds)
        backoff_multiplier: Factor applied to the delay after each attempt

    Returns:
        Result of the first successful attempt

    Raises:
        The last error once attempts are exhausted
    """
    last_error: Exception = RuntimeError(f"{operation_name} was never attempted")

    for attempt in range(1, max_retries + 1):
        try:
            return await operation()
        except Exception as e:
            last_error = e
            if not is_retryable(e):
                raise

            logger.warning(f"{operation_name} attempt {attempt}/{max_retries} failed: {e}")
            if attempt == max_retries:
                break

            if isinstance(e, TelegramRetryAfter):
                # Flood control tells us exactly how long to wait
                delay = float(e.retry_after)
            else:
                delay = retry_delay * (backoff_multiplier ** (attempt - 1))
            logger.debug(f"Retrying {operation_name} in {delay:.1f}s")
            await asyncio.sleep(delay)

    raise last_error
