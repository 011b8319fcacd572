"""Per-attempt timeouts and caller-initiated cancellation.

Provides:
- Timeout wrapper that turns a missed deadline into a retryable error
- Cancellation scope that lets a caller abort a whole retry sequence
"""

import asyncio
import logging
from typing import Any, Awaitable, Optional

from ..errors import OperationCancelledError, OperationTimeoutError

logger = logging.getLogger(__name__)


async def run_with_timeout(
    awaitable: Awaitable[Any],
    timeout_seconds: Optional[float],
    error_message: str = "Operation timed out",
) -> Any:
    """Await with an optional deadline.

    Args:
        awaitable: Coroutine or future to await
        timeout_seconds: Deadline in seconds, or None for no deadline
        error_message: Error message for timeout

    Returns:
        Awaitable result

    Raises:
        OperationTimeoutError: If the deadline is exceeded
    """
    if timeout_seconds is None:
        return await awaitable
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout_seconds)
    except asyncio.TimeoutError:
        logger.warning(f"{error_message} after {timeout_seconds}s")
        raise OperationTimeoutError(
            f"{error_message} after {timeout_seconds}s",
            timeout_seconds,
        ) from None


class CancellationScope:
    """Caller handle for aborting an operation and its retries.

    Usage:
        scope = CancellationScope()
        task = asyncio.create_task(executor.execute(op, cancel_event=scope.event))
        scope.cancel("user navigated away")
    """

    def __init__(self):
        self.event = asyncio.Event()
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self.event.is_set()

    def cancel(self, reason: str = "cancelled by caller") -> None:
        if not self.event.is_set():
            self.reason = reason
            logger.info(f"Operation cancelled: {reason}")
            self.event.set()

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise OperationCancelledError(self.reason or "cancelled by caller")


async def sleep_or_cancel(delay: float, cancel_event: Optional[asyncio.Event]) -> bool:
    """Sleep for `delay` seconds unless `cancel_event` fires first.

    Returns:
        True if the sleep was interrupted by cancellation
    """
    if cancel_event is None:
        await asyncio.sleep(delay)
        return False
    if cancel_event.is_set():
        return True
    try:
        await asyncio.wait_for(cancel_event.wait(), timeout=delay)
    except asyncio.TimeoutError:
        return False
    return True
