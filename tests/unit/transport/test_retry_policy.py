"""Unit tests for retry policy and timeout configuration."""

from __future__ import annotations

import math

from castlink.const import CAST_COMMAND_TIMEOUT, CAST_LAUNCH_TIMEOUT, CAST_STATUS_TIMEOUT
from castlink.transport.retry_policy import RetryPolicy, TimeoutConfig

BASE_DELAY = 0.1
MAX_DELAY = 0.2


def assert_close(actual: float, expected: float, rel_tol: float = 1e-6) -> None:
    """Assert that two floats are approximately equal."""
    assert math.isclose(actual, expected, rel_tol=rel_tol)


class TestTimeoutConfig:
    """Tests for TimeoutConfig class."""

    def test_defaults_follow_environment_constants(self) -> None:
        """Test default deadlines come from the CAST_* settings."""
        config = TimeoutConfig()

        assert_close(config.status_timeout, CAST_STATUS_TIMEOUT)
        assert_close(config.command_timeout, CAST_COMMAND_TIMEOUT)
        assert_close(config.launch_timeout, CAST_LAUNCH_TIMEOUT)

    def test_custom_values(self) -> None:
        """Test explicit deadlines are kept."""
        config = TimeoutConfig(status_timeout=1.0, command_timeout=2.0, launch_timeout=3.0, connect_timeout=4.0)

        assert (config.status_timeout, config.command_timeout, config.launch_timeout, config.connect_timeout) == (
            1.0,
            2.0,
            3.0,
            4.0,
        )
        assert "launch=3.0s" in repr(config)


class TestRetryPolicy:
    """Tests for RetryPolicy class."""

    def test_exponential_backoff(self) -> None:
        """Test delays double per attempt without jitter."""
        policy = RetryPolicy(base_delay_seconds=BASE_DELAY, max_delay_seconds=10.0, jitter_factor=0.0)

        assert_close(policy.get_delay(0), BASE_DELAY)
        assert_close(policy.get_delay(1), BASE_DELAY * 2)
        assert_close(policy.get_delay(2), BASE_DELAY * 4)

    def test_max_delay_cap(self) -> None:
        """Test delays never exceed the cap (plus jitter)."""
        policy = RetryPolicy(base_delay_seconds=BASE_DELAY, max_delay_seconds=MAX_DELAY, jitter_factor=0.1)

        for attempt in range(10):
            assert policy.get_delay(attempt) <= MAX_DELAY * 1.1

    def test_jitter_bounds(self) -> None:
        """Test jitter stays within the configured fraction."""
        policy = RetryPolicy(base_delay_seconds=1.0, jitter_factor=0.5)

        for _ in range(50):
            assert 1.0 <= policy.get_delay(0) <= 1.5

    def test_max_attempts_at_least_one(self) -> None:
        """Test a non-positive attempt count still tries once."""
        assert RetryPolicy(max_attempts=0).max_attempts == 1
