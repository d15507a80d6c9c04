"""Retry policy for backing-store calls made by job workers.

Store failures are the only job-fatal error class, so every store call a
worker makes is retried with backoff before the job is failed.
"""

from __future__ import annotations

import random
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator


class RetryStrategy(str, Enum):
    """Retry strategy types for different backoff patterns."""

    EXPONENTIAL_BACKOFF = "exponential_backoff"  # 1s, 2s, 4s...
    LINEAR_BACKOFF = "linear_backoff"  # 1s, 2s, 3s...
    FIXED_DELAY = "fixed_delay"  # 1s, 1s, 1s...
    IMMEDIATE = "immediate"  # No delay (testing only)


class RetryPolicy(BaseModel):
    """Bounded retry with backoff and jitter.

    Attributes:
        strategy: Backoff strategy to use
        max_attempts: Total attempts including the first call (1-10)
        base_delay_seconds: Delay before the first retry
        max_delay_seconds: Cap applied before jitter
        jitter_factor: Random jitter factor (0.0-1.0, default 0.2)
        backoff_multiplier: Multiplier for exponential backoff (1.0-10.0)
    """

    model_config = ConfigDict(extra="forbid")

    strategy: RetryStrategy = RetryStrategy.EXPONENTIAL_BACKOFF
    max_attempts: int = Field(default=3, ge=1, le=10)
    base_delay_seconds: float = Field(default=1.0, ge=0.0, le=3600.0)
    max_delay_seconds: float = Field(default=30.0, ge=0.0, le=86400.0)
    jitter_factor: float = Field(default=0.2, ge=0.0, le=1.0)
    backoff_multiplier: float = Field(default=2.0, ge=1.0, le=10.0)

    @model_validator(mode="after")
    def _check_bounds(self) -> "RetryPolicy":
        if self.max_delay_seconds < self.base_delay_seconds:
            raise ValueError("max_delay_seconds must be >= base_delay_seconds")
        return self

    def calculate_delay(self, attempt: int) -> float:
        """Calculate the delay before retry ``attempt`` (0-indexed)."""
        base_delay = self.base_delay_seconds

        if self.strategy == RetryStrategy.EXPONENTIAL_BACKOFF:
            delay = base_delay * (self.backoff_multiplier**attempt)
        elif self.strategy == RetryStrategy.LINEAR_BACKOFF:
            delay = base_delay * (attempt + 1)
        elif self.strategy == RetryStrategy.FIXED_DELAY:
            delay = base_delay
        else:  # IMMEDIATE
            delay = 0.0

        delay = min(delay, self.max_delay_seconds)

        if self.jitter_factor > 0 and delay > 0:
            jitter_amount = delay * self.jitter_factor
            delay = max(0.0, delay + random.uniform(-jitter_amount, jitter_amount))

        return delay

    def should_retry(self, attempts_made: int) -> bool:
        return attempts_made < self.max_attempts
