from __future__ import annotations

import pytest

from federation_checks.errors import CollaboratorError, LoginError
from federation_checks.retry import RetryPolicy


def test_delay_schedule_is_exponential_and_capped() -> None:
    policy = RetryPolicy(max_attempts=5, initial_delay_seconds=5.0, multiplier=2.0, max_delay_seconds=30.0)
    assert [policy.delay_for(n) for n in range(1, 6)] == [5.0, 10.0, 20.0, 30.0, 30.0]


def test_fixed_delay_with_multiplier_one() -> None:
    policy = RetryPolicy(initial_delay_seconds=5.0, multiplier=1.0)
    assert policy.delay_for(1) == policy.delay_for(4) == 5.0


@pytest.mark.asyncio
async def test_call_retries_until_success() -> None:
    sleeps: list[float] = []
    calls = 0

    async def fake_sleep(seconds: float) -> None:
        sleeps.append(seconds)

    async def flaky() -> str:
        nonlocal calls
        calls += 1
        if calls < 3:
            raise CollaboratorError("temporary")
        return "done"

    policy = RetryPolicy(max_attempts=3, initial_delay_seconds=1.0, multiplier=2.0)
    assert await policy.call(flaky, retry_on=(CollaboratorError,), sleep=fake_sleep) == "done"
    assert sleeps == [1.0, 2.0]


@pytest.mark.asyncio
async def test_call_gives_up_after_max_attempts() -> None:
    calls = 0

    async def fake_sleep(seconds: float) -> None:
        return None

    async def always_fails() -> None:
        nonlocal calls
        calls += 1
        raise CollaboratorError("down")

    with pytest.raises(CollaboratorError):
        await RetryPolicy(max_attempts=2).call(always_fails, retry_on=(CollaboratorError,), sleep=fake_sleep)
    assert calls == 2


@pytest.mark.asyncio
async def test_call_does_not_retry_fatal_errors() -> None:
    calls = 0

    async def rejected() -> None:
        nonlocal calls
        calls += 1
        raise LoginError("bad password")

    with pytest.raises(LoginError):
        await RetryPolicy(max_attempts=5).call(rejected, retry_on=(CollaboratorError,), fatal=(LoginError,))
    assert calls == 1


@pytest.mark.asyncio
async def test_call_does_not_retry_unlisted_errors() -> None:
    async def broken() -> None:
        raise KeyError("nope")

    with pytest.raises(KeyError):
        await RetryPolicy(max_attempts=5).call(broken, retry_on=(CollaboratorError,))


@pytest.mark.asyncio
async def test_single_attempt_propagates_without_sleeping() -> None:
    sleeps: list[float] = []

    async def fake_sleep(seconds: float) -> None:
        sleeps.append(seconds)

    async def always_fails() -> None:
        raise CollaboratorError("down")

    with pytest.raises(CollaboratorError):
        await RetryPolicy(max_attempts=1).call(always_fails, retry_on=(CollaboratorError,), sleep=fake_sleep)
    assert sleeps == []
