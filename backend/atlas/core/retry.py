"""
Retry Helpers
Exponential backoff for calls to external providers
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def retry_with_backoff(
    func: Callable[..., Awaitable[T]],
    *args: Any,
    attempts: int = 3,
    base_delay: float = 1.0,
    factor: float = 2.0,
    label: str = "operation",
    **kwargs: Any,
) -> T:
    """
    Await ``func`` until it succeeds or ``attempts`` are exhausted.

    Args:
        func: Coroutine function to call
        attempts: Total number of attempts (>= 1)
        base_delay: Delay in seconds before the second attempt
        factor: Multiplier applied to the delay after every failure
        label: Name used in log lines

    Raises:
        The last exception if every attempt fails.
    """
    last_exception: Optional[Exception] = None
    attempts = max(1, attempts)

    for attempt in range(attempts):
        try:
            return await func(*args, **kwargs)
        except Exception as e:
            last_exception = e
            if attempt < attempts - 1:
                delay = base_delay * (factor ** attempt)
                logger.warning(
                    f"{label} attempt {attempt + 1}/{attempts} failed: {e}. "
                    f"Retrying in {delay:.1f}s"
                )
                await asyncio.sleep(delay)
            else:
                logger.error(f"{label} failed after {attempts} attempts: {e}")

    raise last_exception

