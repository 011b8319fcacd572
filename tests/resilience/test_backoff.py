"""Tests for backoff policy and retry classification."""

import pytest
from unittest.mock import Mock, patch

from synclayer.errors import (
    OperationCancelledError,
    OperationTimeoutError,
    RateLimitExceededError,
    TransientError,
)
from synclayer.resilience.backoff import (
    BackoffPolicy,
    calculate_backoff,
    error_code,
    is_retryable_error,
)


class RemoteStoreError(Exception):
    """Error shaped like a remote SDK error, carrying a code attribute."""

    def __init__(self, code, message="remote failure"):
        super().__init__(message)
        self.code = code


class TestCalculateBackoff:
    """Test backoff calculation."""

    def test_exponential_backoff_without_jitter(self):
        """Test exponential increase in delay."""
        policy = BackoffPolicy(base_delay=1.0, max_delay=100.0)

        with patch("synclayer.resilience.backoff.random.uniform", return_value=0.0):
            assert calculate_backoff(0, policy) == 1.0
            assert calculate_backoff(1, policy) == 2.0
            assert calculate_backoff(2, policy) == 4.0
            assert calculate_backoff(3, policy) == 8.0

    def test_delay_within_jitter_bounds(self):
        """Test every delay lies in [base*2^a, base*2^a + base] capped at max."""
        policy = BackoffPolicy(base_delay=0.5, max_delay=10.0)

        for attempt in range(6):
            lower = min(0.5 * 2 ** attempt, 10.0)
            upper = min(0.5 * 2 ** attempt + 0.5, 10.0)
            for _ in range(50):
                delay = calculate_backoff(attempt, policy)
                assert lower <= delay <= upper

    def test_max_delay_cap(self):
        """Test that delay is capped at max_delay."""
        policy = BackoffPolicy(base_delay=1.0, max_delay=5.0)

        assert calculate_backoff(10, policy) == 5.0  # Would be 1024 without cap

    def test_huge_attempt_does_not_overflow(self):
        """Test very large attempt numbers still return the cap."""
        policy = BackoffPolicy(base_delay=1.0, max_delay=10.0)

        assert calculate_backoff(10_000, policy) == 10.0

    def test_jitter_adds_randomness(self):
        """Test that jitter adds randomness."""
        policy = BackoffPolicy(base_delay=1.0, max_delay=100.0)

        delays = [calculate_backoff(2, policy) for _ in range(20)]
        assert not all(d == delays[0] for d in delays)

    def test_linear_backoff(self):
        """Test linear mode grows by base_delay per attempt."""
        policy = BackoffPolicy(base_delay=2.0, max_delay=7.0, exponential=False)

        assert calculate_backoff(0, policy) == 2.0
        assert calculate_backoff(1, policy) == 4.0
        assert calculate_backoff(2, policy) == 6.0
        assert calculate_backoff(3, policy) == 7.0

    def test_policy_delay_delegates(self):
        policy = BackoffPolicy(base_delay=1.0, max_delay=1.0)
        assert policy.delay(4) == 1.0


class TestPolicyConstruction:
    """Test policy presets."""

    def test_defaults(self):
        policy = BackoffPolicy()
        assert policy.max_retries == 3
        assert policy.base_delay == 1.0
        assert policy.max_delay == 10.0

    def test_long_running_cap(self):
        """Test long-running paths allow up to 30s between attempts."""
        assert BackoffPolicy.long_running().max_delay == 30.0
        assert BackoffPolicy.long_running(max_delay=12.0).max_delay == 12.0

    def test_from_settings(self):
        settings = Mock(
            retry_max_retries=5,
            retry_base_delay=0.25,
            retry_max_delay=4.0,
            retry_long_running_max_delay=20.0,
        )

        policy = BackoffPolicy.from_settings(settings)
        assert (policy.max_retries, policy.base_delay, policy.max_delay) == (5, 0.25, 4.0)
        assert BackoffPolicy.from_settings(settings, long_running=True).max_delay == 20.0


class TestClassification:
    """Test retry decision logic."""

    @pytest.mark.parametrize(
        "code",
        ["unavailable", "resource-exhausted", "deadline-exceeded", "internal", "network-request-failed"],
    )
    def test_transient_codes_retryable(self, code):
        assert is_retryable_error(RemoteStoreError(code)) is True

    def test_unknown_code_not_retryable(self):
        assert is_retryable_error(RemoteStoreError("permission-denied")) is False

    def test_plain_error_not_retryable(self):
        """Test that errors without a marker are terminal."""
        assert is_retryable_error(ValueError("invalid document")) is False

    def test_message_markers_retryable(self):
        """Test network/timeout wording marks an error transient."""
        assert is_retryable_error(OSError("Network is unreachable")) is True
        assert is_retryable_error(RuntimeError("request timed out")) is True
        assert is_retryable_error(RuntimeError("Timeout waiting for response")) is True

    def test_network_wording_outside_io_errors_is_terminal(self):
        """Test "network" in a validation message does not make it transient."""
        assert is_retryable_error(ValueError("invalid network id")) is False
        assert is_retryable_error(RuntimeError("Network unreachable")) is False
        assert BackoffPolicy().classify(ValueError("invalid network id")) is False

    def test_builtin_os_errors(self):
        assert error_code(TimeoutError()) == "timeout"
        assert error_code(ConnectionResetError()) == "network-request-failed"
        assert is_retryable_error(ConnectionRefusedError()) is True

    def test_library_errors(self):
        assert is_retryable_error(TransientError("down")) is True
        assert is_retryable_error(OperationTimeoutError("slow", 1.0)) is True

    def test_caller_cancellation_never_retried(self):
        """Test cancellation is terminal even though its message mentions a timeout."""
        assert is_retryable_error(OperationCancelledError("timeout budget spent")) is False

    def test_rate_limit_never_retried(self):
        assert is_retryable_error(RateLimitExceededError("students", "write")) is False

    def test_custom_classifier(self):
        """Test is_retryable overrides the marker table."""
        policy = BackoffPolicy(is_retryable=lambda e: isinstance(e, KeyError))

        assert policy.classify(KeyError("x")) is True
        assert policy.classify(TransientError("down")) is False

    def test_custom_classifier_cannot_retry_cancellation(self):
        policy = BackoffPolicy(is_retryable=lambda e: True)
        assert policy.classify(OperationCancelledError()) is False

    def test_custom_codes(self):
        policy = BackoffPolicy(retryable_codes=frozenset({"aborted"}))

        assert policy.classify(RemoteStoreError("aborted")) is True
        assert policy.classify(RemoteStoreError("unavailable")) is False
