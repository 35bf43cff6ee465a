"""Retry policy with exponential backoff and a hard cap.

Example:
    >>> policy = RetryPolicy(max_retries=5, retry_delay=5000,
    ...                      backoff_multiplier=2, max_retry_delay=60000)
    >>> [policy.calculate_delay(n) for n in range(5)]
    [5000, 10000, 20000, 40000, 60000]

Delay = min(retry_delay * backoff_multiplier ** consecutive_failures, max_retry_delay)

All delays are in milliseconds. The policy is a value object: validated
on construction, never mutated.
"""

from __future__ import annotations

from dataclasses import dataclass

from agenda.core.errors import InvalidRetryPolicyError


@dataclass(frozen=True)
class RetryPolicy:
    """Immutable retry configuration for a ScheduleTask.

    Attributes:
        enabled: Whether failed executions are retried at all
        max_retries: Consecutive failures tolerated before giving up
        retry_delay: Base delay in ms
        backoff_multiplier: Exponential growth factor (>= 1)
        max_retry_delay: Upper bound for any single delay in ms
    """

    enabled: bool = True
    max_retries: int = 3
    retry_delay: int = 5000
    backoff_multiplier: float = 2.0
    max_retry_delay: int = 60000

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise InvalidRetryPolicyError(
                "max_retries must be >= 0", field="max_retries", value=self.max_retries
            )
        if self.retry_delay < 0:
            raise InvalidRetryPolicyError(
                "retry_delay must be >= 0", field="retry_delay", value=self.retry_delay
            )
        if self.backoff_multiplier < 1:
            raise InvalidRetryPolicyError(
                "backoff_multiplier must be >= 1",
                field="backoff_multiplier",
                value=self.backoff_multiplier,
            )
        if self.max_retry_delay < self.retry_delay:
            raise InvalidRetryPolicyError(
                "max_retry_delay must be >= retry_delay",
                field="max_retry_delay",
                value=self.max_retry_delay,
                constraint="max_retry_delay >= retry_delay",
            )

    @classmethod
    def create_default(cls) -> RetryPolicy:
        """Policy built from ``AgendaSettings`` retry defaults."""
        from agenda.core.settings import get_settings

        settings = get_settings()
        return cls(
            enabled=settings.retry_enabled,
            max_retries=settings.retry_max_retries,
            retry_delay=settings.retry_delay_ms,
            backoff_multiplier=settings.retry_backoff_multiplier,
            max_retry_delay=settings.retry_max_delay_ms,
        )

    @classmethod
    def disabled(cls) -> RetryPolicy:
        return cls(enabled=False, max_retries=0, retry_delay=0, max_retry_delay=0)

    def should_retry(self, consecutive_failures: int) -> bool:
        return self.enabled and consecutive_failures < self.max_retries

    def calculate_delay(self, consecutive_failures: int) -> int:
        """Backoff delay for the given failure count, capped at max_retry_delay."""
        if consecutive_failures < 0:
            consecutive_failures = 0
        # large exponents overflow float; the cap wins long before that
        try:
            raw = self.retry_delay * (self.backoff_multiplier ** consecutive_failures)
        except OverflowError:
            return self.max_retry_delay
        return int(min(raw, self.max_retry_delay))

    def next_delay(self, consecutive_failures: int) -> int:
        """Delay before the next attempt, or 0 when no retry applies."""
        if not self.should_retry(consecutive_failures):
            return 0
        return self.calculate_delay(consecutive_failures)
