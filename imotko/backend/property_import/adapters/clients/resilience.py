# property_import/adapters/clients/resilience.py
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

log = logging.getLogger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class RetryPolicy:
    """
    attempts: total tries (not extra retries)
    delay before retry n (1-based): base * 2**(n-1), capped at max_delay_s
    linear=True switches to base * n (the completion-service policy)
    """
    attempts: int = 3
    base_delay_s: float = 1.0
    max_delay_s: float = 30.0
    linear: bool = False

    def delay_for(self, attempt: int) -> float:
        if self.linear:
            d = self.base_delay_s * attempt
        else:
            d = self.base_delay_s * (2 ** (attempt - 1))
        return max(0.0, min(self.max_delay_s, d))


async def retry_async(
    fn: Callable[[], Awaitable[T]],
    *,
    policy: RetryPolicy,
    is_retryable: Callable[[BaseException], bool],
    context: str,
    sleep: Sleep = asyncio.sleep,
) -> T:
    """
    Run fn until it succeeds, a non-retryable error is raised, or attempts run out.
    The last error is re-raised unchanged.
    """
    attempt = 1
    while True:
        try:
            return await fn()
        except Exception as e:
            if attempt >= policy.attempts or not is_retryable(e):
                if attempt > 1:
                    log.error("%s failed after %d attempt(s): %s", context, attempt, e)
                raise
            delay = policy.delay_for(attempt)
            log.warning(
                "%s attempt %d/%d failed: %s. Retrying in %.1fs",
                context, attempt, policy.attempts, e, delay,
            )
            await sleep(delay)
            attempt += 1


class MinIntervalLimiter:
    """
    Enforces a minimum gap between consecutive calls, across every caller holding
    the same instance. The lock serializes the read-wait-write of the timestamp.
    """

    def __init__(self, min_gap_s: float, *, clock: Callable[[], float] = time.monotonic, sleep: Sleep = asyncio.sleep):
        self.min_gap_s = max(0.0, float(min_gap_s))
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._last_ts: float | None = None

    async def wait(self) -> None:
        if self.min_gap_s <= 0:
            return
        async with self._lock:
            if self._last_ts is not None:
                wait = (self._last_ts + self.min_gap_s) - self._clock()
                if wait > 0:
                    await self._sleep(wait)
            self._last_ts = self._clock()
