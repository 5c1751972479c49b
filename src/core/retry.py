"""
Retry with exponential backoff.

Used on both sides of the chunk pipeline: the backend retries pushing a
chunk to cloud storage, the capture client retries posting a chunk to the
backend. Delays double after each failed attempt and are capped.
"""

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def backoff_delays(attempts: int, base_delay: float, max_delay: float) -> list[float]:
    """Delays slept between consecutive attempts (one fewer than attempts)."""
    return [min(base_delay * (2 ** i), max_delay) for i in range(max(attempts - 1, 0))]


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    *,
    attempts: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    description: str = "operation",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Run an async operation, retrying on failure.

    Args:
        operation: Zero-argument callable returning a fresh awaitable per attempt
        attempts: Total number of calls, including the first
        base_delay: Delay after the first failure; doubles afterwards
        max_delay: Upper bound for a single delay
        retry_on: Exception types that trigger a retry; others propagate at once
        description: Label used in log messages
        sleep: Injected for tests

    Raises:
        The last exception when every attempt failed.
    """
    if attempts < 1:
        raise ValueError("attempts must be at least 1")

    delays = backoff_delays(attempts, base_delay, max_delay)

    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except retry_on as e:
            if attempt == attempts:
                logger.error(
                    f"{description} failed after {attempts} attempts",
                    extra={"error": str(e)}
                )
                raise

            delay = delays[attempt - 1]
            logger.warning(
                f"{description} failed, retrying",
                extra={
                    "attempt": attempt,
                    "max_attempts": attempts,
                    "delay_seconds": delay,
                    "error": str(e),
                }
            )
            await sleep(delay)

    # unreachable: the loop either returns or raises
    raise RuntimeError(f"{description}: retry loop exited unexpectedly")
