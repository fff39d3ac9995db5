"""Backoff schedule and policy validation."""

from types import SimpleNamespace

import pytest

from iot_bridge.core.exceptions import ConfigurationError
from iot_bridge.models.messages import RetryPolicy


class TestBackoffSchedule:

    def test_default_schedule(self):
        assert RetryPolicy().delays() == [1000, 2000, 4000, 8000]

    def test_delays_for_explicit_attempts(self):
        assert RetryPolicy().delays(range(1, 6)) == [1000, 2000, 4000, 8000, 16000]

    def test_delay_is_capped(self):
        policy = RetryPolicy()
        assert policy.delay_for(6) == 30000
        assert policy.delay_for(50) == 30000

    def test_huge_attempt_number_does_not_overflow(self):
        assert RetryPolicy(factor=10.0).delay_for(10_000) == 30000

    def test_delay_never_decreases(self):
        delays = RetryPolicy(base_delay_ms=300, factor=1.7).delays(range(1, 20))
        assert delays == sorted(delays)

    def test_attempt_numbering_starts_at_one(self):
        with pytest.raises(ValueError):
            RetryPolicy().delay_for(0)

    def test_cap_below_base_clamps_every_delay(self):
        policy = RetryPolicy(base_delay_ms=5000, max_delay_ms=1000)
        assert policy.delays(range(1, 4)) == [1000, 1000, 1000]

    def test_factor_one_is_constant_backoff(self):
        assert RetryPolicy(max_retries=4, factor=1.0).delays() == [1000, 1000, 1000]


class TestPolicyValidation:

    @pytest.mark.parametrize("kwargs", [
        {"max_retries": 0},
        {"base_delay_ms": -1},
        {"factor": 0.5},
    ])
    def test_invalid_policy_rejected(self, kwargs):
        with pytest.raises(ConfigurationError):
            RetryPolicy(**kwargs)

    def test_no_terminal_statuses_by_default(self):
        policy = RetryPolicy()
        assert policy.terminal_statuses == ()
        for status in (401, 403, 404, 429, 500):
            assert not policy.is_terminal_status(status)

    def test_opt_in_terminal_statuses(self):
        policy = RetryPolicy(terminal_statuses=(401, 403, 404))
        assert policy.is_terminal_status(401)
        assert policy.is_terminal_status(404)
        assert not policy.is_terminal_status(500)

    def test_empty_terminal_set_retries_everything(self):
        policy = RetryPolicy(terminal_statuses=[])
        assert policy.terminal_statuses == ()
        assert not policy.is_terminal_status(401)

    def test_from_settings(self):
        settings = SimpleNamespace(
            RETRY_MAX_RETRIES=3,
            RETRY_BASE_DELAY=500,
            RETRY_MAX_DELAY=2000,
            RETRY_FACTOR=3.0,
            RETRY_TERMINAL_STATUSES=[400, 401],
        )
        policy = RetryPolicy.from_settings(settings)
        assert policy.max_retries == 3
        assert policy.terminal_statuses == (400, 401)
        assert policy.delays() == [500, 1500]
