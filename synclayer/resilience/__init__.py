"""Resilience layer for synclayer.

This module provides:
- Backoff policy and retry classification
- Retry executor with exponential backoff
- Token bucket rate limiting per operation class
- Timeout and cancellation helpers
"""

from .backoff import (
    RETRYABLE_ERROR_CODES,
    BackoffPolicy,
    calculate_backoff,
    error_code,
    is_retryable_error,
)
from .rate_limiter import (
    OperationRateLimiters,
    RateLimitConfig,
    RateLimiter,
    TokenBucket,
    rate_limited,
)
from .retry import (
    RetryContext,
    RetryExecutor,
    execute_with_retry,
    retry_all,
    retry_with_backoff,
)
from .timeout import CancellationScope, run_with_timeout

__all__ = [
    "RETRYABLE_ERROR_CODES",
    "BackoffPolicy",
    "calculate_backoff",
    "error_code",
    "is_retryable_error",
    "RetryContext",
    "RetryExecutor",
    "execute_with_retry",
    "retry_all",
    "retry_with_backoff",
    "RateLimitConfig",
    "RateLimiter",
    "TokenBucket",
    "OperationRateLimiters",
    "rate_limited",
    "CancellationScope",
    "run_with_timeout",
]
