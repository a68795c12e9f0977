"""Minimal async retry with explicit error contracts.

Design goals:
- Small API surface
- Explicit state (policy + attempt counters)
- No brittle substring matching for retry decisions
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, replace
import logging
import random
import time
from typing import TYPE_CHECKING, TypeVar

import httpx

from switchboard._http import AUTH_STATUS_CODES, RETRYABLE_STATUS_CODES
from switchboard.errors import APIError, AuthError, _walk_exception_chain

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

T = TypeVar("T")

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry policy with exponential backoff and optional jitter."""

    max_attempts: int = 5
    initial_delay_s: float = 0.2
    backoff_multiplier: float = 2.0
    max_delay_s: float = 10.0
    jitter: bool = True  # "full jitter" when enabled
    max_elapsed_s: float | None = None

    def __post_init__(self) -> None:
        """Validate invariants to keep retry behavior predictable."""
        if self.max_attempts < 1:
            raise ValueError("RetryPolicy.max_attempts must be >= 1")
        if self.initial_delay_s < 0:
            raise ValueError("RetryPolicy.initial_delay_s must be >= 0")
        if self.backoff_multiplier <= 0:
            raise ValueError("RetryPolicy.backoff_multiplier must be > 0")
        if self.max_delay_s < 0:
            raise ValueError("RetryPolicy.max_delay_s must be >= 0")
        if self.max_elapsed_s is not None and self.max_elapsed_s < 0:
            raise ValueError("RetryPolicy.max_elapsed_s must be >= 0 or None")

    def with_max_retries(self, max_retries: int) -> RetryPolicy:
        """Copy of this policy allowing *max_retries* retries after the first attempt."""
        return replace(self, max_attempts=max_retries + 1)


def _retry_after_from_error(exc: BaseException) -> float | None:
    if isinstance(exc, APIError):
        v = exc.retry_after_s
        if isinstance(v, (int, float)) and v >= 0:
            return float(v)
    return None


def _is_transient_network_error(exc: BaseException) -> bool:
    for e in _walk_exception_chain(exc):
        if isinstance(e, (TimeoutError, asyncio.TimeoutError)):
            return True
        # RequestError is a stable base class for transport-level failures.
        if isinstance(e, (httpx.TimeoutException, httpx.RequestError)):
            return True
    return False


def should_retry_request(exc: BaseException) -> bool:
    """Return True when opening a provider stream should be retried.

    Contract:
    - Cancellation is never retried.
    - AuthError (including 401/403) is never retried.
    - APIError is retried when marked retryable or carrying 429/5xx.
    - Other 4xx are never retried.
    - Network errors and timeouts are retried.
    """
    if isinstance(exc, asyncio.CancelledError):
        return False
    if isinstance(exc, AuthError):
        return False

    if isinstance(exc, APIError):
        status = exc.status_code
        if isinstance(status, int) and status in AUTH_STATUS_CODES:
            return False
        if isinstance(status, int) and status in RETRYABLE_STATUS_CODES:
            return True
        if isinstance(status, int):
            return False
        return exc.retryable is True

    return _is_transient_network_error(exc)


def compute_backoff_delay(policy: RetryPolicy, *, retry_index: int) -> float:
    """Delay before retry number *retry_index* (1-based)."""
    base = policy.initial_delay_s * (
        policy.backoff_multiplier ** max(0, retry_index - 1)
    )
    base = min(policy.max_delay_s, base)
    if base <= 0:
        return 0.0
    if not policy.jitter:
        return base
    # Full jitter: random in [0, base] to avoid thundering herd.
    return random.random() * base  # noqa: S311


async def retry_async(
    factory: Callable[[], Awaitable[T]],
    *,
    policy: RetryPolicy,
    should_retry: Callable[[BaseException], bool] = should_retry_request,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run an async factory with bounded retries."""
    start = time.monotonic()
    last_exc: BaseException | None = None

    for attempt in range(1, policy.max_attempts + 1):
        try:
            return await factory()
        except Exception as exc:
            last_exc = exc
            if not should_retry(exc) or attempt >= policy.max_attempts:
                raise

            retry_after = _retry_after_from_error(exc)
            delay = compute_backoff_delay(policy, retry_index=attempt)
            if retry_after is not None:
                delay = max(delay, retry_after)

            if policy.max_elapsed_s is not None:
                remaining = policy.max_elapsed_s - (time.monotonic() - start)
                if remaining <= 0:
                    raise
                delay = min(delay, remaining)

            logger.warning(
                "Attempt %d/%d failed (%s); retrying in %.2fs",
                attempt,
                policy.max_attempts,
                exc,
                delay,
            )
            if delay > 0:
                await sleep(delay)

    # Unreachable: the loop always returns or raises.
    if last_exc is None:  # pragma: no cover
        raise RuntimeError("retry_async exhausted without an exception")
    raise last_exc
