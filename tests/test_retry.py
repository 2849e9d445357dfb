"""Tests for retry policies."""

from datetime import timedelta
from unittest.mock import patch

from courier.services.models import ErrorCategory, Failure
from courier.services.retry import (
    CustomRetryPolicy,
    ExponentialBackoffRetryPolicy,
    FixedDelayRetryPolicy,
    NoRetryPolicy,
)


def failure(category=ErrorCategory.NETWORK, status_code=None) -> Failure:
    return Failure(category=category, correlation_id="c", status_code=status_code)


class TestExponentialBackoff:
    """Tests for ExponentialBackoffRetryPolicy."""

    def test_delays_double_without_jitter(self):
        """500ms, 1s, 2s, then no fourth attempt."""
        policy = ExponentialBackoffRetryPolicy(
            max_attempts=3,
            initial_delay=timedelta(milliseconds=500),
            jitter=False,
        )

        assert policy.get_delay(0) == timedelta(milliseconds=500)
        assert policy.get_delay(1) == timedelta(milliseconds=1000)
        assert policy.get_delay(2) == timedelta(milliseconds=2000)
        assert policy.should_retry(failure(), 2)
        assert not policy.should_retry(failure(), 3)

    def test_max_delay_caps_growth(self):
        policy = ExponentialBackoffRetryPolicy(
            max_attempts=10,
            initial_delay=timedelta(seconds=1),
            max_delay=timedelta(seconds=5),
            jitter=False,
        )

        assert policy.get_delay(2) == timedelta(seconds=4)
        assert policy.get_delay(3) == timedelta(seconds=5)
        assert policy.get_delay(8) == timedelta(seconds=5)

    def test_jitter_scales_between_half_and_full_delay(self):
        policy = ExponentialBackoffRetryPolicy(
            max_attempts=3, initial_delay=timedelta(seconds=1)
        )

        with patch("courier.services.retry.random.random", return_value=0.0):
            assert policy.get_delay(1) == timedelta(seconds=1)
        with patch("courier.services.retry.random.random", return_value=0.999):
            assert timedelta(seconds=1.99) < policy.get_delay(1) < timedelta(seconds=2)

    def test_retries_default_status_codes(self):
        policy = ExponentialBackoffRetryPolicy(
            max_attempts=3, initial_delay=timedelta(milliseconds=10)
        )

        assert policy.should_retry(failure(ErrorCategory.BAD_RESPONSE, 503), 0)
        assert policy.should_retry(failure(ErrorCategory.BAD_RESPONSE, 429), 0)
        assert not policy.should_retry(failure(ErrorCategory.BAD_RESPONSE, 404), 0)


class TestFixedDelay:
    """Tests for FixedDelayRetryPolicy."""

    def test_constant_delay(self):
        policy = FixedDelayRetryPolicy(max_attempts=2, delay=timedelta(seconds=1))

        assert policy.get_delay(0) == policy.get_delay(1) == timedelta(seconds=1)

    def test_retries_network_and_timeout_by_default(self):
        policy = FixedDelayRetryPolicy(max_attempts=2, delay=timedelta(0))

        assert policy.should_retry(failure(ErrorCategory.NETWORK), 0)
        assert policy.should_retry(failure(ErrorCategory.TIMEOUT), 1)
        assert not policy.should_retry(failure(ErrorCategory.CANCELLED), 0)
        assert not policy.should_retry(failure(ErrorCategory.UNKNOWN), 0)

    def test_custom_status_codes(self):
        policy = FixedDelayRetryPolicy(
            max_attempts=1,
            delay=timedelta(0),
            retry_status_codes=frozenset({409}),
            retry_categories=frozenset(),
        )

        assert policy.should_retry(failure(ErrorCategory.BAD_RESPONSE, 409), 0)
        assert not policy.should_retry(failure(ErrorCategory.BAD_RESPONSE, 503), 0)
        assert not policy.should_retry(failure(ErrorCategory.NETWORK), 0)


class TestCustomAndNone:
    """Tests for CustomRetryPolicy and NoRetryPolicy."""

    def test_custom_predicate_and_delay(self):
        policy = CustomRetryPolicy(
            max_attempts=4,
            delay_fn=lambda attempt: timedelta(seconds=attempt + 1),
            predicate=lambda f: f.status_code == 418,
        )

        assert policy.should_retry(failure(ErrorCategory.BAD_RESPONSE, 418), 0)
        assert not policy.should_retry(failure(ErrorCategory.NETWORK), 0)
        assert policy.get_delay(2) == timedelta(seconds=3)

    def test_ceiling_overrides_predicate(self):
        """A predicate that always says yes is still bounded by max_attempts."""
        policy = CustomRetryPolicy(
            max_attempts=2,
            delay_fn=lambda attempt: timedelta(0),
            predicate=lambda f: True,
        )

        assert policy.should_retry(failure(), 1)
        assert not policy.should_retry(failure(), 2)
        assert not policy.should_retry(failure(), 50)

    def test_no_retry_never_retries(self):
        policy = NoRetryPolicy()

        assert policy.max_attempts == 0
        assert not policy.should_retry(failure(), 0)
        assert policy.get_delay(0) == timedelta(0)
