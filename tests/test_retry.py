"""
Rate-limit retry context: bounded attempts, fixed delay, stats.
"""
import asyncio

import pytest

from app.connectors.errors import FailureKind, ProviderError, is_rate_limited
from app.utils.retry import RetryContext


def _run(coro):
    """Run an async coroutine in a sync test."""
    return asyncio.run(coro)


class Flaky:
    """Fails with the scripted errors, then returns "ok"."""

    def __init__(self, *errors):
        self.errors = list(errors)
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return "ok"


def _context(sleeps, max_attempts=3):
    async def record_sleep(seconds):
        sleeps.append(seconds)

    return RetryContext(max_attempts=max_attempts, base_delay=5.0, is_retryable=is_rate_limited, sleep=record_sleep)


def _rate_limited():
    return ProviderError(FailureKind.RATE_LIMITED, "429", status_code=429)


def test_recovers_after_rate_limit():
    sleeps = []
    retry = _context(sleeps)
    call = Flaky(_rate_limited())

    assert _run(retry.execute(call)) == "ok"
    assert call.calls == 2
    assert sleeps == [5.0]
    assert retry.stats.to_dict()["success"] is True


def test_gives_up_after_max_attempts_with_stats():
    sleeps = []
    retry = _context(sleeps)
    call = Flaky(_rate_limited(), _rate_limited(), _rate_limited(), _rate_limited())

    with pytest.raises(ProviderError):
        _run(retry.execute(call))

    stats = retry.stats.to_dict()
    assert call.calls == 3
    assert sleeps == [5.0, 5.0]
    assert stats["attempts"] == 3
    assert stats["total_delay_seconds"] == 10.0
    assert stats["success"] is False
    assert len(stats["errors"]) == 3
    assert stats["last_error"].startswith("ProviderError")


def test_other_failures_are_not_retried():
    sleeps = []
    retry = _context(sleeps)
    call = Flaky(ProviderError(FailureKind.AUTH_REJECTED, "401", status_code=401))

    with pytest.raises(ProviderError):
        _run(retry.execute(call))
    assert call.calls == 1
    assert sleeps == []
