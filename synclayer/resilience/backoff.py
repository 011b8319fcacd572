"""Backoff policy: retry delays and retryability classification.

Provides:
- Exponential backoff with jitter (linear backoff optional)
- Classification of errors by transient-fault marker, not exception type
"""

import random
from dataclasses import dataclass, field
from typing import Callable, Optional

from ..errors import OperationCancelledError, RateLimitExceededError


# Markers of transient faults. An error carrying one of these is retried.
RETRYABLE_ERROR_CODES = frozenset({
    # Remote document store codes
    "unavailable",
    "resource-exhausted",
    "deadline-exceeded",
    "cancelled",
    "internal",
    # Network codes
    "network-request-failed",
    "auth/network-request-failed",
    # Local codes
    "timeout",
    "connection-error",
})

# Terminal regardless of code or message
NON_RETRYABLE_ERRORS = (
    OperationCancelledError,
    RateLimitExceededError,
)

DEFAULT_MAX_DELAY = 10.0  # cache and query paths
LONG_RUNNING_MAX_DELAY = 30.0  # queue replay and other long paths


def error_code(error: BaseException) -> Optional[str]:
    """Derive the fault marker carried by an error.

    Args:
        error: The error to inspect

    Returns:
        The marker string, or None if the error carries none
    """
    code = getattr(error, "code", None)
    if isinstance(code, str) and code:
        return code

    # Builtin OS-level failures carry no code attribute
    if isinstance(error, TimeoutError):
        return "timeout"
    if isinstance(error, ConnectionError):
        return "network-request-failed"
    return None


def is_retryable_error(
    error: BaseException,
    retryable_codes: frozenset = RETRYABLE_ERROR_CODES,
) -> bool:
    """Determine if an error is a transient fault.

    Args:
        error: The error that occurred
        retryable_codes: Markers treated as transient

    Returns:
        True if the operation may succeed on retry
    """
    if isinstance(error, NON_RETRYABLE_ERRORS):
        return False

    code = error_code(error)
    if code is not None and code in retryable_codes:
        return True

    message = str(error).lower()
    # Only I/O failures count as network faults; "invalid network id" is not one
    if isinstance(error, OSError) and "network" in message:
        return True
    return "timeout" in message or "timed out" in message


@dataclass
class BackoffPolicy:
    """Retry budget, delay curve and classification for one call site."""

    max_retries: int = 3
    base_delay: float = 1.0  # seconds
    max_delay: float = DEFAULT_MAX_DELAY  # seconds
    exponential: bool = True
    retryable_codes: frozenset = field(default_factory=lambda: RETRYABLE_ERROR_CODES)
    is_retryable: Optional[Callable[[BaseException], bool]] = None

    @classmethod
    def long_running(cls, **kwargs) -> "BackoffPolicy":
        """Policy for long-running paths (30s delay cap)."""
        kwargs.setdefault("max_delay", LONG_RUNNING_MAX_DELAY)
        return cls(**kwargs)

    @classmethod
    def from_settings(cls, settings, long_running: bool = False) -> "BackoffPolicy":
        return cls(
            max_retries=settings.retry_max_retries,
            base_delay=settings.retry_base_delay,
            max_delay=(
                settings.retry_long_running_max_delay if long_running else settings.retry_max_delay
            ),
        )

    def classify(self, error: BaseException) -> bool:
        """Return True if the error should be retried."""
        if isinstance(error, NON_RETRYABLE_ERRORS):
            return False
        if self.is_retryable is not None:
            return bool(self.is_retryable(error))
        return is_retryable_error(error, self.retryable_codes)

    def delay(self, attempt: int) -> float:
        """Delay in seconds before the retry following `attempt` (0-indexed)."""
        return calculate_backoff(attempt, self)


def calculate_backoff(attempt: int, policy: BackoffPolicy) -> float:
    """Calculate backoff delay for a retry attempt.

    Args:
        attempt: Current attempt number (0-indexed)
        policy: Backoff policy

    Returns:
        Delay in seconds
    """
    if not policy.exponential:
        return min(policy.base_delay * (attempt + 1), policy.max_delay)

    # base_delay * 2^attempt plus up to one base_delay of jitter
    delay = policy.base_delay * (2 ** min(attempt, 62))
    delay += random.uniform(0, policy.base_delay)

    return min(delay, policy.max_delay)
