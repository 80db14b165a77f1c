"""Tests for the retry policy."""

import httpx
import pytest

from app.services.errors import ErrorType, SyncError
from app.services.retry import RetryPolicy, call_with_retry


class Flaky:
    """Fails with the given errors, then returns 'ok'."""

    def __init__(self, *errors):
        self.errors = list(errors)
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return "ok"


def _error(error_type, retry_after=None):
    return SyncError(error_type, f"{error_type.value} happened", retry_after=retry_after)


class TestRetryPolicy:

    def test_backoff_doubles_and_caps(self):
        policy = RetryPolicy(base_delay=1.0, max_delay=5.0, jitter=0.0)
        assert [policy.backoff_delay(n) for n in (1, 2, 3, 4)] == [1.0, 2.0, 4.0, 5.0]

    def test_jitter_stays_under_cap(self):
        policy = RetryPolicy(base_delay=4.0, max_delay=5.0, jitter=0.5)
        assert policy.backoff_delay(1, rng=lambda: 1.0) == 5.0
        assert policy.backoff_delay(1, rng=lambda: 0.0) == 4.0

    def test_terminal_types_not_retried(self):
        policy = RetryPolicy()
        for error_type in (ErrorType.UNAUTHORIZED, ErrorType.CLIENT_ERROR,
                           ErrorType.CONFIG_ERROR, ErrorType.VALIDATION_ERROR):
            assert not policy.should_retry(_error(error_type), 1)

    def test_rate_limit_wait_uses_hint_or_default(self):
        policy = RetryPolicy(rate_limit_default_wait=60.0)
        assert policy.delay_for(_error(ErrorType.RATE_LIMITED, retry_after=12.0), 1) == 12.0
        assert policy.delay_for(_error(ErrorType.RATE_LIMITED), 1) == 60.0

    def test_rate_limit_beyond_max_wait_gives_up(self):
        policy = RetryPolicy(rate_limit_max_wait=300.0)
        assert not policy.should_retry(_error(ErrorType.RATE_LIMITED, retry_after=3600.0), 1)


@pytest.mark.asyncio
class TestCallWithRetry:

    async def test_recovers_from_server_error(self, fake_sleep, sleeps):
        func = Flaky(_error(ErrorType.SERVER_ERROR), _error(ErrorType.NETWORK_ERROR))
        result = await call_with_retry(func, RetryPolicy(jitter=0.0), sleep=fake_sleep)
        assert result == "ok"
        assert func.calls == 3
        assert sleeps == [1.0, 2.0]

    async def test_gives_up_after_max_attempts(self, fake_sleep, sleeps):
        func = Flaky(*[_error(ErrorType.SERVER_ERROR) for _ in range(5)])
        with pytest.raises(SyncError) as exc_info:
            await call_with_retry(func, RetryPolicy(max_attempts=3, jitter=0.0), sleep=fake_sleep)
        assert exc_info.value.attempts == 3
        assert func.calls == 3
        assert len(sleeps) == 2

    async def test_unauthorized_fails_immediately(self, fake_sleep, sleeps):
        func = Flaky(_error(ErrorType.UNAUTHORIZED))
        with pytest.raises(SyncError) as exc_info:
            await call_with_retry(func, RetryPolicy(), sleep=fake_sleep)
        assert exc_info.value.error_type == ErrorType.UNAUTHORIZED
        assert exc_info.value.attempts == 1
        assert sleeps == []

    async def test_rate_limit_waits_for_hint(self, fake_sleep, sleeps):
        func = Flaky(_error(ErrorType.RATE_LIMITED, retry_after=45.0))
        assert await call_with_retry(func, RetryPolicy(), sleep=fake_sleep) == "ok"
        assert sleeps == [45.0]

    async def test_transport_exception_is_classified(self, fake_sleep):
        func = Flaky(httpx.ReadTimeout("timed out"))
        assert await call_with_retry(func, RetryPolicy(jitter=0.0), sleep=fake_sleep) == "ok"

    async def test_unexpected_exception_becomes_client_error(self, fake_sleep):
        func = Flaky(ValueError("bad payload"))
        with pytest.raises(SyncError) as exc_info:
            await call_with_retry(func, RetryPolicy(), sleep=fake_sleep)
        assert exc_info.value.error_type == ErrorType.CLIENT_ERROR
        assert isinstance(exc_info.value.__cause__, ValueError)
