"""Bounded retry helper for eventually-consistent reads.

Used wherever infrastructure lags behind a user action: allowance reads after
an approval, active-network reads after a switch request.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def retry_async(
    func: Callable[[], Awaitable[T]],
    *,
    max_attempts: int = 5,
    delay: float = 1.0,
    backoff: float = 1.5,
    max_delay: Optional[float] = None,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    operation: str = "operation",
) -> T:
    """Call ``func`` until it succeeds or the attempt budget is spent.

    Args:
        func: Zero-argument coroutine function
        max_attempts: Total number of calls (at least 1)
        delay: Sleep before the second call
        backoff: Multiplier applied to the delay after each failure
        max_delay: Optional ceiling for the delay
        retry_on: Exception types that trigger another attempt
        operation: Description for logging

    Returns:
        The first successful result

    Raises:
        The last exception raised by ``func`` once the budget is exhausted.
        Exceptions outside ``retry_on`` propagate immediately.
    """
    attempts = max(1, max_attempts)
    wait = delay

    for attempt in range(1, attempts + 1):
        try:
            return await func()
        except retry_on as e:
            if attempt >= attempts:
                logger.warning(f"{operation} failed after {attempts} attempts: {e}")
                raise
            logger.debug(f"{operation} attempt {attempt}/{attempts} failed: {e}; retrying in {wait:.2f}s")
            await asyncio.sleep(wait)
            wait = wait * backoff
            if max_delay is not None:
                wait = min(wait, max_delay)

    raise RuntimeError("unreachable")  # pragma: no cover
