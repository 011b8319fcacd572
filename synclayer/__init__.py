"""synclayer - client-side caching, retry, rate limiting and offline sync.

This package provides:
- Backoff policy and retry executor for transient faults
- Token bucket rate limiters per operation class
- Two-tier cache with five fetch strategies
- Persisted offline write queue drained on reconnect
"""

__version__ = "0.1.0"

from .cache import CacheEntry, CacheOrchestrator, CacheStore, CacheStrategy
from .client import SyncClient, WriteResult, WriteStatus, build_client
from .config import Settings, settings
from .errors import (
    CacheMissError,
    OperationCancelledError,
    OperationTimeoutError,
    QueuePermanentFailure,
    RateLimitExceededError,
    SyncLayerError,
    TransientError,
)
from .offline import (
    DrainResult,
    ManualConnectivity,
    OfflineQueue,
    OperationType,
    PollingConnectivity,
    QueuedOperation,
)
from .resilience import (
    BackoffPolicy,
    OperationRateLimiters,
    RateLimitConfig,
    RateLimiter,
    RetryExecutor,
    calculate_backoff,
    is_retryable_error,
)

__all__ = [
    "__version__",
    "Settings",
    "settings",
    "SyncLayerError",
    "TransientError",
    "OperationTimeoutError",
    "OperationCancelledError",
    "RateLimitExceededError",
    "CacheMissError",
    "QueuePermanentFailure",
    "BackoffPolicy",
    "calculate_backoff",
    "is_retryable_error",
    "RetryExecutor",
    "RateLimitConfig",
    "RateLimiter",
    "OperationRateLimiters",
    "CacheEntry",
    "CacheStore",
    "CacheOrchestrator",
    "CacheStrategy",
    "OperationType",
    "QueuedOperation",
    "DrainResult",
    "OfflineQueue",
    "ManualConnectivity",
    "PollingConnectivity",
    "SyncClient",
    "WriteResult",
    "WriteStatus",
    "build_client",
]
