"""Tests for job retry strategies."""

from datetime import datetime, timedelta

import pytest

from app.config import Settings
from workflow.retry_strategies import RetryPolicy, RetryStrategy


# ─── RetryStrategy creation ───

@pytest.mark.unit
class TestRetryStrategyCreation:
    def test_none_strategy(self):
        s = RetryStrategy.none()
        assert s.policy == RetryPolicy.NONE
        assert s.max_attempts == 1

    def test_fixed_strategy(self):
        s = RetryStrategy.fixed(max_attempts=4, delay=5.0)
        assert s.policy == RetryPolicy.FIXED
        assert s.base_delay == 5.0
        assert s.jitter is False

    def test_exponential_strategy(self):
        s = RetryStrategy.exponential(max_attempts=5, base_delay=1.0, max_delay=60.0)
        assert s.policy == RetryPolicy.EXPONENTIAL
        assert s.max_attempts == 5

    def test_from_settings(self):
        settings = Settings(
            JOB_MAX_ATTEMPTS=4,
            JOB_RETRY_BASE_DELAY_SECONDS=30.0,
            JOB_RETRY_MAX_DELAY_SECONDS=90.0,
        )
        s = RetryStrategy.from_settings(settings)
        assert s.policy == RetryPolicy.EXPONENTIAL
        assert s.max_attempts == 4
        assert s.base_delay == 30.0
        assert s.max_delay == 90.0

    def test_from_settings_policy(self):
        settings = Settings(JOB_RETRY_POLICY="linear", JOB_RETRY_BASE_DELAY_SECONDS=10.0, JOB_RETRY_JITTER=True)
        s = RetryStrategy.from_settings(settings, max_attempts=5)
        assert s.policy == RetryPolicy.LINEAR
        assert s.max_attempts == 5
        assert s.jitter is True

        settings = Settings(JOB_RETRY_POLICY="fixed", JOB_RETRY_BASE_DELAY_SECONDS=15.0)
        assert RetryStrategy.from_settings(settings).compute_delay(3) == 15.0

        settings = Settings(JOB_RETRY_POLICY="none")
        assert RetryStrategy.from_settings(settings, max_attempts=3).should_retry(1) is False

    def test_unknown_policy_rejected(self):
        with pytest.raises(ValueError):
            RetryStrategy.from_settings(Settings(JOB_RETRY_POLICY="sometimes"))


# ─── Delay computation ───

@pytest.mark.unit
class TestDelayComputation:
    def test_none_delay(self):
        assert RetryStrategy.none().compute_delay(1) == 0.0

    def test_fixed_delay(self):
        s = RetryStrategy.fixed(delay=5.0)
        assert s.compute_delay(1) == 5.0
        assert s.compute_delay(3) == 5.0

    def test_exponential_delay(self):
        s = RetryStrategy.exponential(base_delay=60.0, max_delay=10_000.0)
        assert s.compute_delay(1) == 60.0
        assert s.compute_delay(2) == 120.0
        assert s.compute_delay(3) == 240.0

    def test_linear_delay(self):
        s = RetryStrategy.linear(base_delay=2.0, max_delay=100.0)
        assert s.compute_delay(1) == 2.0
        assert s.compute_delay(3) == 6.0

    def test_max_delay_cap(self):
        s = RetryStrategy.exponential(base_delay=60.0, max_delay=100.0)
        assert s.compute_delay(10) == 100.0

    def test_jitter_stays_in_range(self):
        s = RetryStrategy(policy=RetryPolicy.FIXED, base_delay=10.0, jitter=True, jitter_range=0.5)
        for _ in range(50):
            assert 5.0 <= s.compute_delay(1) <= 15.0

    def test_next_run_at(self):
        s = RetryStrategy.exponential(base_delay=60.0)
        now = datetime(2026, 1, 1, 12, 0)
        assert s.next_run_at(now, 2) == now + timedelta(minutes=2)


# ─── Retry decisions ───

@pytest.mark.unit
class TestShouldRetry:
    def test_retries_until_max_attempts(self):
        s = RetryStrategy.exponential(max_attempts=3)
        assert s.should_retry(1) is True
        assert s.should_retry(2) is True
        assert s.should_retry(3) is False

    def test_none_never_retries(self):
        assert RetryStrategy.none().should_retry(0) is False
