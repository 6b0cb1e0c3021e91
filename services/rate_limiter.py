"""
Concurrency gate and retry policy for upstream calls.

ConcurrencyLimiter bounds how many coroutines run at once (no queue depth
limit, excess callers wait for a slot). retry_async re-runs a coroutine
factory on transient failures with linear or exponential backoff.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable, List, Optional, TypeVar

import httpx

from services.exceptions import TransientUpstreamError

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


@dataclass
class RetryPolicy:
    """How many times to try and how long to wait in between"""
    attempts: int = 3
    base_delay: float = 0.8
    backoff: str = "linear"   # linear | exponential
    max_delay: float = 30.0

    def delay_for(self, attempt: int) -> float:
        """Delay after the given (1-based) failed attempt"""
        if self.backoff == "exponential":
            delay = self.base_delay * (2 ** (attempt - 1))
        else:
            delay = self.base_delay * attempt
        return min(delay, self.max_delay)


def is_transient(exc: BaseException) -> bool:
    """5xx/429 responses and network-level failures are worth retrying"""
    return isinstance(exc, (TransientUpstreamError, httpx.TransportError))


async def retry_async(
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    retry_on: Callable[[BaseException], bool] = is_transient,
    label: str = "call",
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """
    Await fn() up to policy.attempts times.

    Only exceptions accepted by retry_on are retried; anything else
    propagates immediately. The last transient error propagates once
    attempts are exhausted.
    """
    attempt = 1
    while True:
        try:
            return await fn()
        except Exception as e:
            if not retry_on(e) or attempt >= policy.attempts:
                raise
            delay = policy.delay_for(attempt)
            logger.warning(
                f"[RETRY] {label}: attempt {attempt}/{policy.attempts} failed "
                f"({type(e).__name__}: {e}), retrying in {delay:.1f}s"
            )
            await sleep(delay)
            attempt += 1


class ConcurrencyLimiter:
    """
    Bounded-parallelism task gate.

    Create one per fan-out; the underlying semaphore binds to the running
    event loop on first use.
    """

    def __init__(self, concurrency: int):
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self.concurrency = concurrency
        self._semaphore = asyncio.Semaphore(concurrency)

    async def run(self, fn: Callable[..., Awaitable[R]], *args: Any) -> R:
        async with self._semaphore:
            return await fn(*args)

    async def map(
        self,
        fn: Callable[[T], Awaitable[R]],
        items: Iterable[T],
        default: Optional[R] = None,
    ) -> List[Optional[R]]:
        """
        Run fn over items under the gate; results keep input order.

        Every task runs to completion. A task that raises is logged and
        its slot holds `default`, so one failure never discards the rest
        of the batch.
        """
        results = await asyncio.gather(
            *(self.run(fn, item) for item in items), return_exceptions=True
        )
        mapped: List[Optional[R]] = []
        for result in results:
            if isinstance(result, Exception):
                logger.error(f"[LIMITER] task failed: {type(result).__name__}: {result}")
                mapped.append(default)
            elif isinstance(result, BaseException):
                raise result
            else:
                mapped.append(result)
        return mapped
