"""Retry policy and timeout configuration for the cast transport.

Commands are never retried; RetryPolicy only paces connection attempts.
"""

from __future__ import annotations

import random

from castlink.const import (
    CAST_COMMAND_TIMEOUT,
    CAST_CONNECT_TIMEOUT,
    CAST_LAUNCH_TIMEOUT,
    CAST_STATUS_TIMEOUT,
)


class TimeoutConfig:
    """Per-category request deadlines.

    Status queries are expected to answer fast, commands take longer, and a
    launch has to wait for the application to come up on the device.
    """

    def __init__(
        self,
        status_timeout: float = CAST_STATUS_TIMEOUT,
        command_timeout: float = CAST_COMMAND_TIMEOUT,
        launch_timeout: float = CAST_LAUNCH_TIMEOUT,
        connect_timeout: float = CAST_CONNECT_TIMEOUT,
    ):
        """Initialize timeout configuration.

        Args:
            status_timeout: Deadline for GET_STATUS style queries (seconds)
            command_timeout: Deadline for state-changing commands (seconds)
            launch_timeout: Deadline for LAUNCH until the app reports running (seconds)
            connect_timeout: Deadline for opening the TLS stream (seconds)
        """
        self.status_timeout = status_timeout
        self.command_timeout = command_timeout
        self.launch_timeout = launch_timeout
        self.connect_timeout = connect_timeout

    def __repr__(self) -> str:
        return (
            f"TimeoutConfig(status={self.status_timeout:.1f}s, "
            f"command={self.command_timeout:.1f}s, "
            f"launch={self.launch_timeout:.1f}s, "
            f"connect={self.connect_timeout:.1f}s)"
        )


class RetryPolicy:
    """Backoff between connection attempts: doubling delay, capped, plus up to
    ``jitter_factor`` of random extra.

    Attempt 0 is the delay after the first failure. ``max_attempts`` counts
    connection attempts, the first one included.
    """

    def __init__(
        self,
        base_delay_seconds: float = 0.5,
        max_delay_seconds: float = 10.0,
        jitter_factor: float = 0.1,
        max_attempts: int = 3,
    ):
        self.base_delay_seconds = base_delay_seconds
        self.max_delay_seconds = max_delay_seconds
        self.jitter_factor = jitter_factor
        self.max_attempts = max(1, max_attempts)

    def get_delay(self, attempt: int) -> float:
        backoff = min(self.base_delay_seconds * 2**attempt, self.max_delay_seconds)
        return backoff * (1.0 + random.uniform(0.0, self.jitter_factor))

    def __repr__(self) -> str:
        return (
            f"RetryPolicy(base={self.base_delay_seconds}s, max={self.max_delay_seconds}s, "
            f"jitter={self.jitter_factor}, attempts={self.max_attempts})"
        )
