from __future__ import annotations

import asyncio

import httpx
import pytest

from switchboard.errors import APIError, AuthError, ProviderError, RateLimitError
from switchboard.retry import (
    RetryPolicy,
    compute_backoff_delay,
    retry_async,
    should_retry_request,
)

pytestmark = pytest.mark.unit


def test_policy_rejects_invalid_values() -> None:
    with pytest.raises(ValueError):
        RetryPolicy(max_attempts=0)
    with pytest.raises(ValueError):
        RetryPolicy(initial_delay_s=-1)
    with pytest.raises(ValueError):
        RetryPolicy(backoff_multiplier=0)


def test_with_max_retries_counts_the_first_attempt() -> None:
    assert RetryPolicy().with_max_retries(4).max_attempts == 5
    assert RetryPolicy().with_max_retries(0).max_attempts == 1


def test_backoff_grows_exponentially_and_caps() -> None:
    policy = RetryPolicy(initial_delay_s=1.0, backoff_multiplier=2.0, max_delay_s=5.0, jitter=False)
    delays = [compute_backoff_delay(policy, retry_index=i) for i in range(1, 6)]
    assert delays == [1.0, 2.0, 4.0, 5.0, 5.0]


def test_full_jitter_stays_within_base() -> None:
    policy = RetryPolicy(initial_delay_s=1.0, jitter=True)
    for _ in range(50):
        assert 0.0 <= compute_backoff_delay(policy, retry_index=1) <= 1.0


@pytest.mark.parametrize(
    ("exc", "expected"),
    [
        (ProviderError("x", status_code=500), True),
        (ProviderError("x", status_code=503), True),
        (RateLimitError("x", status_code=429), True),
        (ProviderError("x", status_code=400, retryable=True), False),
        (ProviderError("x", status_code=404), False),
        (APIError("x", status_code=401, retryable=True), False),
        (AuthError("x", kind="invalid_credential", status_code=401), False),
        (APIError("x", retryable=True), True),
        (APIError("x"), False),
        (httpx.ConnectError("refused"), True),
        (httpx.ReadTimeout("slow"), True),
        (ValueError("bug"), False),
        (asyncio.CancelledError(), False),
    ],
)
def test_should_retry_request_contract(exc: BaseException, expected: bool) -> None:
    assert should_retry_request(exc) is expected


@pytest.mark.asyncio
async def test_retry_async_retries_until_success() -> None:
    calls = 0
    sleeps: list[float] = []

    async def factory() -> str:
        nonlocal calls
        calls += 1
        if calls < 3:
            raise ProviderError("server", status_code=502)
        return "ok"

    async def fake_sleep(delay: float) -> None:
        sleeps.append(delay)

    policy = RetryPolicy(max_attempts=5, initial_delay_s=0.5, jitter=False)
    assert await retry_async(factory, policy=policy, sleep=fake_sleep) == "ok"
    assert calls == 3
    assert sleeps == [0.5, 1.0]


@pytest.mark.asyncio
async def test_retry_async_honours_retry_after() -> None:
    sleeps: list[float] = []
    calls = 0

    async def factory() -> str:
        nonlocal calls
        calls += 1
        if calls == 1:
            raise RateLimitError("slow", status_code=429, retry_after_s=7.0)
        return "ok"

    async def fake_sleep(delay: float) -> None:
        sleeps.append(delay)

    policy = RetryPolicy(initial_delay_s=0.1, jitter=False)
    await retry_async(factory, policy=policy, sleep=fake_sleep)
    assert sleeps == [7.0]


@pytest.mark.asyncio
async def test_retry_async_stops_at_max_attempts() -> None:
    calls = 0

    async def factory() -> str:
        nonlocal calls
        calls += 1
        raise ProviderError("down", status_code=503)

    async def fake_sleep(delay: float) -> None:
        del delay

    with pytest.raises(ProviderError):
        await retry_async(factory, policy=RetryPolicy(max_attempts=3), sleep=fake_sleep)
    assert calls == 3


@pytest.mark.asyncio
async def test_retry_async_does_not_retry_client_errors() -> None:
    calls = 0

    async def factory() -> str:
        nonlocal calls
        calls += 1
        raise ProviderError("bad request", status_code=400)

    with pytest.raises(ProviderError):
        await retry_async(factory, policy=RetryPolicy(max_attempts=5))
    assert calls == 1
