"""Tests for RetryPolicy - exponential backoff with a hard cap."""

import pytest

from agenda.core.errors import InvalidRetryPolicyError
from agenda.core.settings import reset_settings_cache
from agenda.scheduling.retry import RetryPolicy


@pytest.fixture
def policy() -> RetryPolicy:
    return RetryPolicy(max_retries=5, retry_delay=5000, backoff_multiplier=2, max_retry_delay=60000)


class TestBackoff:
    def test_delays_are_capped(self, policy):
        """5s base doubling, capped at 60s instead of reaching 80s."""
        assert [policy.calculate_delay(n) for n in range(5)] == [5000, 10000, 20000, 40000, 60000]

    def test_monotonic_and_bounded(self, policy):
        delays = [policy.calculate_delay(n) for n in range(50)]
        assert delays == sorted(delays)
        assert max(delays) <= policy.max_retry_delay

    def test_huge_failure_counts_hit_the_cap(self, policy):
        assert policy.calculate_delay(100_000) == 60000

    def test_negative_count_treated_as_zero(self, policy):
        assert policy.calculate_delay(-3) == 5000

    def test_multiplier_one_is_constant(self):
        flat = RetryPolicy(retry_delay=2000, backoff_multiplier=1, max_retry_delay=2000)
        assert {flat.calculate_delay(n) for n in range(6)} == {2000}


class TestShouldRetry:
    def test_within_budget(self, policy):
        assert policy.should_retry(0)
        assert policy.should_retry(4)
        assert not policy.should_retry(5)

    def test_disabled(self):
        policy = RetryPolicy.disabled()
        assert not policy.should_retry(0)
        assert policy.next_delay(0) == 0

    def test_next_delay_zero_when_exhausted(self, policy):
        assert policy.next_delay(2) == 20000
        assert policy.next_delay(5) == 0


class TestValidation:
    @pytest.mark.parametrize(
        "kwargs",
        [
            {"max_retries": -1},
            {"retry_delay": -5},
            {"backoff_multiplier": 0.5},
            {"retry_delay": 10_000, "max_retry_delay": 1_000},
        ],
    )
    def test_rejects_invalid(self, kwargs):
        with pytest.raises(InvalidRetryPolicyError):
            RetryPolicy(**kwargs)


class TestDefaults:
    def test_create_default_reads_settings(self, monkeypatch):
        monkeypatch.setenv("AGENDA_RETRY_MAX_RETRIES", "7")
        monkeypatch.setenv("AGENDA_RETRY_DELAY_MS", "100")
        reset_settings_cache()
        policy = RetryPolicy.create_default()
        assert policy.max_retries == 7
        assert policy.retry_delay == 100
        assert policy.max_retry_delay == 60000
