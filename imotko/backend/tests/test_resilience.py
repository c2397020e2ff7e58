import pytest

from property_import.adapters.clients.resilience import MinIntervalLimiter, RetryPolicy, retry_async


def test_exponential_and_linear_delays():
    exp = RetryPolicy(attempts=3, base_delay_s=1.0)
    assert [exp.delay_for(n) for n in (1, 2, 3)] == [1.0, 2.0, 4.0]

    lin = RetryPolicy(attempts=2, base_delay_s=1.0, linear=True)
    assert [lin.delay_for(n) for n in (1, 2)] == [1.0, 2.0]

    capped = RetryPolicy(attempts=10, base_delay_s=1.0, max_delay_s=5.0)
    assert capped.delay_for(8) == 5.0


async def test_retry_until_success_records_backoff():
    calls = {"n": 0}
    slept: list[float] = []

    async def flaky():
        calls["n"] += 1
        if calls["n"] < 3:
            raise ConnectionError("boom")
        return "ok"

    async def fake_sleep(d: float) -> None:
        slept.append(d)

    out = await retry_async(
        flaky,
        policy=RetryPolicy(attempts=3, base_delay_s=1.0),
        is_retryable=lambda e: True,
        context="test",
        sleep=fake_sleep,
    )
    assert out == "ok"
    assert calls["n"] == 3
    assert slept == [1.0, 2.0]


async def test_non_retryable_error_is_raised_immediately():
    calls = {"n": 0}

    async def bad():
        calls["n"] += 1
        raise ValueError("permanent")

    async def fake_sleep(d: float) -> None:
        raise AssertionError("should not sleep")

    with pytest.raises(ValueError):
        await retry_async(
            bad,
            policy=RetryPolicy(attempts=3),
            is_retryable=lambda e: not isinstance(e, ValueError),
            context="test",
            sleep=fake_sleep,
        )
    assert calls["n"] == 1


async def test_last_error_is_reraised_after_attempts():
    async def always():
        raise TimeoutError("slow")

    async def fake_sleep(d: float) -> None:
        return None

    with pytest.raises(TimeoutError):
        await retry_async(always, policy=RetryPolicy(attempts=2), is_retryable=lambda e: True, context="t", sleep=fake_sleep)


async def test_min_interval_limiter_waits_for_the_gap():
    now = {"t": 100.0}
    slept: list[float] = []

    def clock() -> float:
        return now["t"]

    async def fake_sleep(d: float) -> None:
        slept.append(d)
        now["t"] += d

    limiter = MinIntervalLimiter(0.1, clock=clock, sleep=fake_sleep)
    await limiter.wait()  # first call: no wait
    now["t"] += 0.03
    await limiter.wait()
    now["t"] += 0.5
    await limiter.wait()  # gap already elapsed

    assert slept == [pytest.approx(0.07)]
