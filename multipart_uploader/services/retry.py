"""
Retrying operation executor.

Capped exponential backoff with jitter around async operations that take
the attempt index, e.g. fetching a presigned URL or putting a part.
"""
import asyncio
import functools
import logging
import random
from typing import Any, Awaitable, Callable, Optional, TypeVar

from ..errors import is_retryable
from ..models import RetryPolicy

logger = logging.getLogger(__name__)

T = TypeVar("T")

JITTER_MIN = 0.85
JITTER_MAX = 1.15


def jitter(delay: float, rand: Callable[[], float] = random.random) -> float:
    """Scale ``delay`` by a random factor in [0.85, 1.15]."""
    return delay * (JITTER_MIN + rand() * (JITTER_MAX - JITTER_MIN))


async def execute(
    operation: Callable[[int], Awaitable[T]],
    retries: int,
    base_delay: float,
    max_delay: float,
    *,
    label: str = "operation",
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    rand: Callable[[], float] = random.random,
    retry_on: Callable[[BaseException], bool] = is_retryable,
) -> T:
    """
    Run ``operation(attempt)`` until it succeeds or the budget runs out.

    Args:
        operation: Async callable receiving the 0-based attempt index
        retries: Retries after the first attempt (total calls <= retries + 1)
        base_delay: Delay in seconds after the first failure
        max_delay: Cap on the un-jittered delay
        label: Name used in log messages
        retry_on: Predicate deciding whether an error may be retried

    Returns:
        The operation's result

    Raises:
        The last error once ``attempt == retries``, or any non-retryable error
        immediately.
    """
    attempt = 0
    while True:
        try:
            return await operation(attempt)
        except Exception as exc:
            if not retry_on(exc):
                logger.debug("%s: non-retryable error: %s", label, exc)
                raise
            if attempt >= retries:
                logger.error("%s: giving up after %d attempts: %s", label, attempt + 1, exc)
                raise
            delay = jitter(min(max_delay, base_delay * (2 ** attempt)), rand)
            logger.warning(
                "%s: attempt %d/%d failed (%s), retrying in %.2fs",
                label, attempt + 1, retries + 1, exc, delay,
            )
            await sleep(delay)
            attempt += 1


class RetryExecutor:
    """Executor bound to a ``RetryPolicy``."""

    def __init__(
        self,
        policy: RetryPolicy,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rand: Callable[[], float] = random.random,
    ):
        self._policy = policy
        self._sleep = sleep
        self._rand = rand

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    async def run(
        self,
        operation: Callable[[int], Awaitable[T]],
        label: str = "operation",
        retry_on: Callable[[BaseException], bool] = is_retryable,
    ) -> T:
        return await execute(
            operation,
            self._policy.retries,
            self._policy.base_delay,
            self._policy.max_delay,
            label=label,
            sleep=self._sleep,
            rand=self._rand,
            retry_on=retry_on,
        )


def with_retry(policy: RetryPolicy, label: Optional[str] = None):
    """
    Decorator form: the wrapped coroutine function gets ``attempt`` as its
    first argument.

        @with_retry(RetryPolicy(3, 0.5, 5))
        async def fetch(attempt, url): ...
    """
    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> T:
            return await execute(
                lambda attempt: func(attempt, *args, **kwargs),
                policy.retries,
                policy.base_delay,
                policy.max_delay,
                label=label or func.__name__,
            )
        return wrapper
    return decorator
