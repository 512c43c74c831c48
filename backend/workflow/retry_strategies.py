"""Retry policies for queued workflow jobs.

A job that fails is not retried in place: it is rescheduled on the
queue with ``scheduled_at = now + compute_delay(attempt)`` and picked up
by a later poll. The strategy only decides the delay and whether another
delivery is allowed.

Usage:
    strategy = RetryStrategy.from_settings(settings)
    if strategy.should_retry(job.attempts):
        run_at = strategy.next_run_at(now, job.attempts)
"""

import random
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional


class RetryPolicy(str, Enum):
    """Available retry policies."""
    FIXED = "fixed"
    EXPONENTIAL = "exponential"
    LINEAR = "linear"
    NONE = "none"


@dataclass
class RetryStrategy:
    """Backoff policy for rescheduling failed jobs.

    ``max_attempts`` counts deliveries, the first one included, so
    ``max_attempts=3`` means one initial run and two retries.
    """
    policy: RetryPolicy
    max_attempts: int = 3
    base_delay: float = 60.0
    max_delay: float = 3600.0
    jitter: bool = False
    jitter_range: float = 0.2

    @classmethod
    def none(cls) -> 'RetryStrategy':
        """No retries: the first failure is final."""
        return cls(policy=RetryPolicy.NONE, max_attempts=1)

    @classmethod
    def fixed(cls, max_attempts: int = 3, delay: float = 60.0) -> 'RetryStrategy':
        """Fixed delay between deliveries."""
        return cls(
            policy=RetryPolicy.FIXED,
            max_attempts=max_attempts,
            base_delay=delay,
        )

    @classmethod
    def exponential(
        cls,
        max_attempts: int = 3,
        base_delay: float = 60.0,
        max_delay: float = 3600.0,
        jitter: bool = False,
    ) -> 'RetryStrategy':
        """Exponential backoff: 1x, 2x, 4x ... ``base_delay``."""
        return cls(
            policy=RetryPolicy.EXPONENTIAL,
            max_attempts=max_attempts,
            base_delay=base_delay,
            max_delay=max_delay,
            jitter=jitter,
        )

    @classmethod
    def linear(
        cls,
        max_attempts: int = 3,
        base_delay: float = 60.0,
        max_delay: float = 3600.0,
    ) -> 'RetryStrategy':
        """Linear backoff: delay = base_delay * attempt."""
        return cls(
            policy=RetryPolicy.LINEAR,
            max_attempts=max_attempts,
            base_delay=base_delay,
            max_delay=max_delay,
        )

    @classmethod
    def from_settings(cls, settings, max_attempts: Optional[int] = None) -> 'RetryStrategy':
        """Strategy named by ``JOB_RETRY_POLICY``, tuned by the other ``JOB_*`` settings.

        ``max_attempts`` overrides ``JOB_MAX_ATTEMPTS`` (jobs carry their own).
        """
        policy = RetryPolicy(settings.JOB_RETRY_POLICY)
        attempts = max_attempts or settings.JOB_MAX_ATTEMPTS
        if policy == RetryPolicy.NONE:
            return cls.none()
        if policy == RetryPolicy.FIXED:
            strategy = cls.fixed(max_attempts=attempts, delay=settings.JOB_RETRY_BASE_DELAY_SECONDS)
        elif policy == RetryPolicy.LINEAR:
            strategy = cls.linear(
                max_attempts=attempts,
                base_delay=settings.JOB_RETRY_BASE_DELAY_SECONDS,
                max_delay=settings.JOB_RETRY_MAX_DELAY_SECONDS,
            )
        else:
            strategy = cls.exponential(
                max_attempts=attempts,
                base_delay=settings.JOB_RETRY_BASE_DELAY_SECONDS,
                max_delay=settings.JOB_RETRY_MAX_DELAY_SECONDS,
            )
        strategy.jitter = settings.JOB_RETRY_JITTER
        return strategy

    def compute_delay(self, attempt: int) -> float:
        """Compute the delay after a failed delivery (1-based)."""
        if self.policy == RetryPolicy.NONE:
            return 0.0

        if self.policy == RetryPolicy.FIXED:
            delay = self.base_delay
        elif self.policy == RetryPolicy.EXPONENTIAL:
            delay = self.base_delay * (2 ** (max(attempt, 1) - 1))
        else:
            delay = self.base_delay * max(attempt, 1)

        delay = min(delay, self.max_delay)

        if self.jitter and delay > 0:
            jitter_amount = delay * self.jitter_range
            delay = max(0.0, delay + random.uniform(-jitter_amount, jitter_amount))

        return round(delay, 3)

    def should_retry(self, attempt: int) -> bool:
        """Whether another delivery is allowed after ``attempt`` failed."""
        if self.policy == RetryPolicy.NONE:
            return False
        return attempt < self.max_attempts

    def next_run_at(self, now: datetime, attempt: int) -> datetime:
        """When the next delivery after ``attempt`` should happen."""
        return now + timedelta(seconds=self.compute_delay(attempt))
