"""Exception taxonomy for synclayer.

Transient errors are retried by the retry executor; everything else is
terminal and surfaces on first occurrence.
"""

from typing import Any, Optional


class SyncLayerError(Exception):
    """Base class for all synclayer errors."""

    code: str = "synclayer-error"


class TransientError(SyncLayerError):
    """Network or service-unavailable failure that may succeed on retry."""

    def __init__(self, message: str = "", code: str = "unavailable"):
        super().__init__(message)
        self.code = code


class OperationTimeoutError(TransientError):
    """A single attempt exceeded its deadline."""

    def __init__(self, message: str = "", timeout: float = 0.0):
        super().__init__(message, code="deadline-exceeded")
        self.timeout = timeout


class OperationCancelledError(SyncLayerError):
    """The caller aborted the operation. Never retried."""

    code = "aborted-by-caller"


class RateLimitExceededError(SyncLayerError):
    """The token bucket for this key is empty."""

    code = "rate-limited"

    def __init__(self, key: str = "default", limiter: str = "default"):
        super().__init__(f"Rate limit exceeded for {limiter}:{key}")
        self.key = key
        self.limiter = limiter


class CacheMissError(SyncLayerError):
    """No strategy path yielded a value and no fallback was supplied."""

    code = "cache-miss"

    def __init__(self, key: str):
        super().__init__(f"Cache miss for key: {key}")
        self.key = key


class QueuePermanentFailure(SyncLayerError):
    """An offline operation exhausted its attempt budget and was dropped."""

    code = "queue-permanent-failure"

    def __init__(self, operation: Any, last_error: Optional[BaseException] = None):
        super().__init__(
            f"Operation {operation.id} ({operation.kind.value} {operation.resource_kind}) "
            f"failed after {operation.attempts} attempts"
        )
        self.operation = operation
        self.operation_id = operation.id
        self.last_error = last_error
