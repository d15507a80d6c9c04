"""Unit tests for the store retry policy."""

import pytest

from cardvault.orchestrator.retry_policy import RetryPolicy, RetryStrategy


class TestRetryStrategy:
    """Test retry strategy enum."""

    def test_all_strategies_defined(self):
        assert RetryStrategy.EXPONENTIAL_BACKOFF == "exponential_backoff"
        assert RetryStrategy.LINEAR_BACKOFF == "linear_backoff"
        assert RetryStrategy.FIXED_DELAY == "fixed_delay"
        assert RetryStrategy.IMMEDIATE == "immediate"


class TestRetryPolicyValidation:
    """Test retry policy validation."""

    def test_defaults(self):
        policy = RetryPolicy()
        assert policy.strategy == RetryStrategy.EXPONENTIAL_BACKOFF
        assert policy.max_attempts == 3

    def test_max_attempts_validation(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=11)

    def test_max_delay_must_cover_base_delay(self):
        with pytest.raises(ValueError, match="max_delay_seconds"):
            RetryPolicy(base_delay_seconds=10, max_delay_seconds=5)

    def test_unknown_fields_rejected(self):
        with pytest.raises(ValueError):
            RetryPolicy(retries=5)


class TestDelayCalculation:
    """Test backoff delays without jitter."""

    def test_exponential_backoff(self):
        policy = RetryPolicy(base_delay_seconds=1, max_delay_seconds=100, jitter_factor=0)
        assert [policy.calculate_delay(n) for n in range(4)] == [1.0, 2.0, 4.0, 8.0]

    def test_exponential_backoff_is_capped(self):
        policy = RetryPolicy(base_delay_seconds=1, max_delay_seconds=5, jitter_factor=0)
        assert policy.calculate_delay(10) == 5.0

    def test_linear_backoff(self):
        policy = RetryPolicy(
            strategy=RetryStrategy.LINEAR_BACKOFF,
            base_delay_seconds=2,
            max_delay_seconds=100,
            jitter_factor=0,
        )
        assert [policy.calculate_delay(n) for n in range(3)] == [2.0, 4.0, 6.0]

    def test_fixed_delay(self):
        policy = RetryPolicy(strategy=RetryStrategy.FIXED_DELAY, base_delay_seconds=3, jitter_factor=0)
        assert policy.calculate_delay(0) == policy.calculate_delay(5) == 3.0

    def test_immediate(self):
        policy = RetryPolicy(strategy=RetryStrategy.IMMEDIATE)
        assert policy.calculate_delay(3) == 0.0

    def test_jitter_stays_within_factor(self):
        policy = RetryPolicy(base_delay_seconds=10, max_delay_seconds=10, jitter_factor=0.2)
        for attempt in range(20):
            delay = policy.calculate_delay(attempt)
            assert 8.0 <= delay <= 12.0


class TestShouldRetry:
    def test_attempts_are_bounded(self):
        policy = RetryPolicy(max_attempts=3)
        assert policy.should_retry(1) is True
        assert policy.should_retry(2) is True
        assert policy.should_retry(3) is False
