"""
Retry-with-backoff combinator
"""

import asyncio
from typing import Awaitable, Callable, Tuple, Type, TypeVar

import structlog
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt

logger = structlog.get_logger(__name__)

T = TypeVar("T")


def exponential_delay(attempt: int) -> float:
    """2^attempt seconds after the given failed attempt"""
    return float(2 ** attempt)


def linear_delay(step: float) -> Callable[[int], float]:
    """attempt * step seconds after the given failed attempt"""
    def delay(attempt: int) -> float:
        return attempt * step
    return delay


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    *,
    attempts: int,
    delay: Callable[[int], float],
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    label: str = "operation",
) -> T:
    """
    Await ``operation`` up to ``attempts`` times.

    ``delay`` receives the number of the attempt that just failed (1-based)
    and returns the seconds to wait before the next one. The last error is
    re-raised unchanged once attempts are exhausted.
    """

    def log_retry(retry_state):
        logger.warning(
            "Retrying after failure",
            label=label,
            attempt=retry_state.attempt_number,
            max_attempts=attempts,
            error=str(retry_state.outcome.exception()),
        )

    retrying = AsyncRetrying(
        stop=stop_after_attempt(attempts),
        wait=lambda retry_state: delay(retry_state.attempt_number),
        retry=retry_if_exception_type(retry_on),
        before_sleep=log_retry,
        sleep=sleep,
        reraise=True,
    )

    async for attempt in retrying:
        with attempt:
            result = await operation()
    return result
