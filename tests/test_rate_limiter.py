"""
Tests for retry policy and the concurrency gate.
"""

import asyncio

import httpx
import pytest

from services.exceptions import EbayAPIError, TransientUpstreamError
from services.rate_limiter import ConcurrencyLimiter, RetryPolicy, is_transient, retry_async
from tests.conftest import SleepRecorder


def test_linear_and_exponential_delays():
    linear = RetryPolicy(attempts=3, base_delay=0.8)
    assert linear.delay_for(1) == pytest.approx(0.8)
    assert linear.delay_for(2) == pytest.approx(1.6)

    exponential = RetryPolicy(base_delay=1.0, backoff="exponential", max_delay=3.0)
    assert [exponential.delay_for(n) for n in (1, 2, 3)] == [1.0, 2.0, 3.0]


def test_transient_classification():
    assert is_transient(TransientUpstreamError("ebay", "503"))
    assert is_transient(httpx.ConnectError("unreachable"))
    assert not is_transient(EbayAPIError("bad request", status_code=400))


def test_retry_recovers_after_transient_failures():
    sleeper = SleepRecorder()
    calls = []

    async def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise TransientUpstreamError("ebay", "temporary")
        return "ok"

    result = asyncio.run(retry_async(flaky, RetryPolicy(attempts=3, base_delay=0.8), sleep=sleeper))

    assert result == "ok"
    assert len(calls) == 3
    assert sleeper.delays == pytest.approx([0.8, 1.6])


def test_non_transient_error_is_not_retried():
    sleeper = SleepRecorder()
    calls = []

    async def rejected():
        calls.append(1)
        raise EbayAPIError("forbidden", status_code=403)

    with pytest.raises(EbayAPIError):
        asyncio.run(retry_async(rejected, RetryPolicy(attempts=3), sleep=sleeper))
    assert len(calls) == 1
    assert sleeper.delays == []


def test_exhausted_retries_raise_last_error():
    sleeper = SleepRecorder()

    async def always_down():
        raise TransientUpstreamError("ebay", "still down")

    with pytest.raises(TransientUpstreamError):
        asyncio.run(retry_async(always_down, RetryPolicy(attempts=2), sleep=sleeper))
    assert len(sleeper.delays) == 1


def test_limiter_bounds_concurrency_and_keeps_order():
    active = 0
    peak = 0

    async def work(n):
        nonlocal active, peak
        active += 1
        peak = max(peak, active)
        await asyncio.sleep(0.01 * (5 - n))
        active -= 1
        return n * 10

    async def run():
        return await ConcurrencyLimiter(2).map(work, range(5))

    assert asyncio.run(run()) == [0, 10, 20, 30, 40]
    assert peak == 2


def test_limiter_rejects_zero_concurrency():
    with pytest.raises(ValueError):
        ConcurrencyLimiter(0)


def test_limiter_failure_leaves_default_and_finishes_siblings():
    finished = []

    async def work(n):
        await asyncio.sleep(0.001 * n)
        if n == 1:
            raise KeyError("boom")
        finished.append(n)
        return n

    async def run():
        return await ConcurrencyLimiter(2).map(work, range(4), default=-1)

    assert asyncio.run(run()) == [0, -1, 2, 3]
    assert sorted(finished) == [0, 2, 3]
