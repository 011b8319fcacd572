"""Retry executor with exponential backoff.

Provides automatic retry for transient failures with:
- Bounded attempts (at most max_retries + 1 invocations)
- Exponential backoff with jitter between attempts
- Marker-based retry classification
- Caller abort of the whole retry sequence
"""

import asyncio
import functools
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable, Optional

from ..errors import OperationCancelledError
from ..monitoring import telemetry
from ..monitoring.telemetry import TelemetrySink, emit_error, emit_event
from .backoff import BackoffPolicy, error_code
from .timeout import run_with_timeout, sleep_or_cancel

logger = logging.getLogger(__name__)

Operation = Callable[[], Awaitable[Any]]
OnRetry = Callable[[BaseException, int], None]


@dataclass
class RetryContext:
    """State of one execute() call."""

    attempt: int = 0
    last_error: Optional[BaseException] = None


class RetryExecutor:
    """Runs an operation under a backoff policy.

    Usage:
        executor = RetryExecutor(BackoffPolicy(max_retries=3))
        result = await executor.execute(lambda: client.get_document(doc_id))
    """

    def __init__(
        self,
        policy: Optional[BackoffPolicy] = None,
        on_retry: Optional[OnRetry] = None,
        telemetry_sink: Optional[TelemetrySink] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """Initialize retry executor.

        Args:
            policy: Default backoff policy
            on_retry: Default callback invoked before each backoff sleep
            telemetry_sink: Sink receiving retry events
            sleep: Sleep coroutine used between attempts
        """
        self.policy = policy or BackoffPolicy()
        self.on_retry = on_retry
        self.telemetry = telemetry_sink
        self._sleep = sleep

    async def execute(
        self,
        operation: Operation,
        policy: Optional[BackoffPolicy] = None,
        on_retry: Optional[OnRetry] = None,
        cancel_event: Optional[asyncio.Event] = None,
        attempt_timeout: Optional[float] = None,
        name: Optional[str] = None,
    ) -> Any:
        """Execute an operation, retrying transient failures.

        Args:
            operation: Zero-argument coroutine function
            policy: Overrides the executor's default policy
            on_retry: Overrides the executor's default callback (error, attempt_number)
            cancel_event: When set, aborts the retry sequence
            attempt_timeout: Deadline in seconds for each attempt
            name: Label used in logs

        Returns:
            Operation result

        Raises:
            OperationCancelledError: If cancel_event was set
            Exception: The last error, once retries are exhausted or on a terminal error
        """
        policy = policy or self.policy
        callback = on_retry or self.on_retry
        label = name or getattr(operation, "__name__", "operation")
        ctx = RetryContext()

        while True:
            if cancel_event is not None and cancel_event.is_set():
                raise OperationCancelledError(f"{label} cancelled") from ctx.last_error

            try:
                return await run_with_timeout(operation(), attempt_timeout, f"{label} attempt")
            except Exception as e:
                ctx.last_error = e

                if not policy.classify(e):
                    if isinstance(e, OperationCancelledError):
                        logger.info(f"{label} cancelled: {e}")
                    else:
                        logger.warning(f"Non-retryable error in {label}: {e}")
                    raise

                if ctx.attempt >= policy.max_retries:
                    logger.error(f"All {policy.max_retries + 1} attempts failed for {label}: {e}")
                    emit_error(
                        self.telemetry,
                        telemetry.RETRY_EXHAUSTED,
                        e,
                        {"operation": label, "attempts": ctx.attempt + 1},
                    )
                    raise

                delay = policy.delay(ctx.attempt)
                logger.warning(
                    f"Attempt {ctx.attempt + 1}/{policy.max_retries + 1} failed for "
                    f"{label}: {e}. Retrying in {delay:.2f}s"
                )

                if callback:
                    try:
                        callback(e, ctx.attempt + 1)
                    except Exception as callback_error:
                        logger.debug(f"on_retry callback failed: {callback_error}")

                emit_event(
                    self.telemetry,
                    telemetry.RETRY_SCHEDULED,
                    {
                        "operation": label,
                        "attempt": ctx.attempt + 1,
                        "delay": delay,
                        "code": error_code(e) or "unknown",
                    },
                )

                if cancel_event is not None:
                    if await sleep_or_cancel(delay, cancel_event):
                        raise OperationCancelledError(f"{label} cancelled") from e
                else:
                    await self._sleep(delay)

                ctx.attempt += 1


async def execute_with_retry(
    operation: Operation,
    policy: Optional[BackoffPolicy] = None,
    on_retry: Optional[OnRetry] = None,
    cancel_event: Optional[asyncio.Event] = None,
) -> Any:
    """Run one operation under a fresh RetryExecutor."""
    return await RetryExecutor(policy).execute(
        operation, on_retry=on_retry, cancel_event=cancel_event
    )


async def retry_all(
    operations: Iterable[Operation],
    policy: Optional[BackoffPolicy] = None,
    executor: Optional[RetryExecutor] = None,
) -> list[Any]:
    """Run several operations concurrently, each under its own retry loop.

    Returns:
        Results in the order of `operations`; the first failure propagates
    """
    executor = executor or RetryExecutor(policy)
    return list(
        await asyncio.gather(*(executor.execute(op, policy=policy) for op in operations))
    )


def retry_with_backoff(
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 10.0,
    on_retry: Optional[OnRetry] = None,
    policy: Optional[BackoffPolicy] = None,
):
    """Decorator for retrying a coroutine function with exponential backoff.

    Args:
        max_retries: Retries after the first attempt
        base_delay: Base delay between retries
        max_delay: Maximum delay between retries
        on_retry: Optional callback on retry (error, attempt_number)
        policy: Full policy; overrides the individual arguments

    Usage:
        @retry_with_backoff(max_retries=3)
        async def load_profile(user_id):
            ...
    """
    policy = policy or BackoffPolicy(
        max_retries=max_retries,
        base_delay=base_delay,
        max_delay=max_delay,
    )
    executor = RetryExecutor(policy, on_retry=on_retry)

    def decorator(func: Callable[..., Awaitable[Any]]) -> Callable[..., Awaitable[Any]]:
        if not asyncio.iscoroutinefunction(func):
            raise TypeError(f"retry_with_backoff requires a coroutine function, got {func!r}")

        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> Any:
            return await executor.execute(
                lambda: func(*args, **kwargs),
                name=func.__name__,
            )

        return wrapper

    return decorator
