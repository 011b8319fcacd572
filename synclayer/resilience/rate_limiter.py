"""Rate limiting for remote-store calls.

Provides:
- Token bucket per key, refilled in whole windows
- One limiter per operation class (read, write, auth)
- Decorator for rate-limited coroutine functions
"""

import asyncio
import functools
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from ..errors import RateLimitExceededError
from ..monitoring import telemetry
from ..monitoring.telemetry import TelemetrySink, emit_event

logger = logging.getLogger(__name__)


@dataclass
class RateLimitConfig:
    """Configuration for rate limiter."""

    limit: int = 100  # Tokens per window
    window_seconds: float = 60.0

    def __post_init__(self):
        if self.limit <= 0:
            raise ValueError("limit must be > 0")
        if self.window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")


@dataclass
class TokenBucket:
    """Token balance for one key. Invariant: 0 <= tokens <= limit."""

    key: str
    tokens: int
    last_refill: float


class RateLimiter:
    """Token bucket rate limiter keyed by caller-chosen bucket keys.

    Usage:
        limiter = RateLimiter(RateLimitConfig(limit=100, window_seconds=60), name="write")
        if limiter.is_allowed("students"):
            # Make request
            pass
    """

    def __init__(
        self,
        config: Optional[RateLimitConfig] = None,
        name: str = "default",
        on_limit_exceeded: Optional[Callable[[str], None]] = None,
        telemetry_sink: Optional[TelemetrySink] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize rate limiter.

        Args:
            config: Rate limit configuration
            name: Operation class this limiter guards, used in logs
            on_limit_exceeded: Called with the key on every rejection
            telemetry_sink: Sink receiving rejection events
            clock: Time source in seconds
        """
        self.config = config or RateLimitConfig()
        self.name = name
        self.on_limit_exceeded = on_limit_exceeded
        self.telemetry = telemetry_sink
        self._clock = clock
        self._buckets: dict[str, TokenBucket] = {}
        self._lock = threading.Lock()

    def _refill(self, bucket: TokenBucket, now: float) -> None:
        """Add tokens for each whole window elapsed, keeping the remainder."""
        elapsed = now - bucket.last_refill
        windows = int(elapsed // self.config.window_seconds)
        if windows <= 0:
            return

        bucket.tokens = min(bucket.tokens + windows * self.config.limit, self.config.limit)
        bucket.last_refill += windows * self.config.window_seconds

    def is_allowed(self, key: str = "default") -> bool:
        """Consume a token for `key` if one is available.

        Args:
            key: Bucket key

        Returns:
            True if the request may proceed
        """
        with self._lock:
            now = self._clock()
            bucket = self._buckets.get(key)
            if bucket is None:
                bucket = TokenBucket(key=key, tokens=self.config.limit, last_refill=now)
                self._buckets[key] = bucket
            else:
                self._refill(bucket, now)

            if bucket.tokens > 0:
                bucket.tokens -= 1
                return True

        logger.warning(f"Rate limit exceeded for {self.name}:{key}")
        if self.on_limit_exceeded:
            try:
                self.on_limit_exceeded(key)
            except Exception as e:
                logger.debug(f"on_limit_exceeded callback failed: {e}")
        emit_event(self.telemetry, telemetry.RATE_LIMITED, {"limiter": self.name, "key": key})
        return False

    async def execute(
        self,
        operation: Callable[[], Awaitable[Any]],
        key: str = "default",
    ) -> Any:
        """Run an operation if the bucket for `key` has a token.

        Raises:
            RateLimitExceededError: If the bucket is empty
        """
        if not self.is_allowed(key):
            raise RateLimitExceededError(key, self.name)
        return await operation()

    def remaining_tokens(self, key: str = "default") -> Optional[int]:
        """Tokens left for `key`, or None if the key was never seen."""
        with self._lock:
            bucket = self._buckets.get(key)
            if bucket is None:
                return None
            self._refill(bucket, self._clock())
            return bucket.tokens

    def reset(self) -> None:
        """Drop all buckets."""
        with self._lock:
            self._buckets.clear()

    def get_status(self, key: str = "default") -> dict[str, Any]:
        return {
            "limiter": self.name,
            "key": key,
            "remaining_tokens": self.remaining_tokens(key),
            "limit": self.config.limit,
            "window_seconds": self.config.window_seconds,
        }


@dataclass
class OperationRateLimiters:
    """One limiter per operation class, so exhausting one cannot starve another."""

    read: RateLimiter
    write: RateLimiter
    auth: RateLimiter

    @classmethod
    def from_settings(
        cls,
        settings,
        telemetry_sink: Optional[TelemetrySink] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> "OperationRateLimiters":
        window = settings.rate_limit_window_seconds

        def make(name: str, limit: int) -> RateLimiter:
            limiter = RateLimiter(
                RateLimitConfig(limit=limit, window_seconds=window),
                name=name,
                telemetry_sink=telemetry_sink,
                clock=clock,
            )
            logger.info(f"Configured {name} rate limit: {limit}/{window:g}s")
            return limiter

        return cls(
            read=make("read", settings.rate_limit_read),
            write=make("write", settings.rate_limit_write),
            auth=make("auth", settings.rate_limit_auth),
        )

    def for_class(self, operation_class: str) -> RateLimiter:
        try:
            return {"read": self.read, "write": self.write, "auth": self.auth}[operation_class]
        except KeyError:
            raise ValueError(f"Unknown operation class: {operation_class}") from None

    def reset(self) -> None:
        for limiter in (self.read, self.write, self.auth):
            limiter.reset()


def rate_limited(
    limiter: RateLimiter,
    key_func: Callable[..., str] = lambda *args, **kwargs: "default",
):
    """Decorator gating a coroutine function with a rate limiter.

    Args:
        limiter: Limiter to consult
        key_func: Builds the bucket key from the call arguments

    Usage:
        @rate_limited(limiters.write, key_func=lambda collection, *_: collection)
        async def create_document(collection, data):
            ...
    """

    def decorator(func: Callable[..., Awaitable[Any]]) -> Callable[..., Awaitable[Any]]:
        if not asyncio.iscoroutinefunction(func):
            raise TypeError(f"rate_limited requires a coroutine function, got {func!r}")

        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> Any:
            key = key_func(*args, **kwargs)
            return await limiter.execute(lambda: func(*args, **kwargs), key)

        return wrapper

    return decorator
