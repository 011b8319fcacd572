"""Persisted offline write queue.

Writes attempted without connectivity are queued, persisted, and replayed
oldest first once the connectivity signal reports the device online.

Per-operation lifecycle:
    PENDING -> EXECUTING -> SUCCEEDED (removed)
                         -> FAILED, attempts left (back to PENDING, attempts + 1)
                         -> FAILED, no attempts left (removed, reported)
"""

import asyncio
import functools
import json
import logging
import time
import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable, Optional

from ..errors import QueuePermanentFailure, RateLimitExceededError
from ..monitoring import telemetry
from ..monitoring.telemetry import TelemetrySink, emit_error, emit_event
from ..resilience.backoff import BackoffPolicy
from ..resilience.rate_limiter import RateLimiter
from ..resilience.retry import RetryExecutor
from ..storage.base import PersistedStore
from .connectivity import ConnectivitySignal

logger = logging.getLogger(__name__)


class OperationType(str, Enum):
    """Kinds of queued writes."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


@dataclass
class QueuedOperation:
    """A pending write. Invariant: attempts <= max_attempts."""

    id: str
    kind: OperationType
    resource_kind: str
    resource_id: Optional[str] = None
    payload: Any = None
    enqueued_at: float = 0.0
    attempts: int = 0
    max_attempts: int = 3
    invalidate: list[str] = field(default_factory=list)  # cache keys dropped once replayed

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "resource_kind": self.resource_kind,
            "resource_id": self.resource_id,
            "payload": self.payload,
            "enqueued_at": self.enqueued_at,
            "attempts": self.attempts,
            "max_attempts": self.max_attempts,
            "invalidate": list(self.invalidate),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "QueuedOperation":
        return cls(
            id=data["id"],
            kind=OperationType(data["kind"]),
            resource_kind=data["resource_kind"],
            resource_id=data.get("resource_id"),
            payload=data.get("payload"),
            enqueued_at=float(data.get("enqueued_at", 0.0)),
            attempts=int(data.get("attempts", 0)),
            max_attempts=int(data.get("max_attempts", 3)),
            invalidate=list(data.get("invalidate") or []),
        )


@dataclass
class DrainResult:
    """Outcome of one drain pass."""

    succeeded: list[str] = field(default_factory=list)
    retried: list[str] = field(default_factory=list)
    failed: list[QueuePermanentFailure] = field(default_factory=list)
    aborted: bool = False  # connectivity lost mid-drain
    skipped: bool = False  # another drain was already running
    rate_limited: bool = False  # write limiter rejected a replay, rest left queued


OperationExecutor = Callable[[QueuedOperation], Awaitable[Any]]
ReplayHook = Callable[[QueuedOperation, Any], Awaitable[None]]


class OfflineQueue:
    """Durable FIFO of pending writes, drained when online.

    Usage:
        async def apply(op: QueuedOperation):
            await remote.write(op.kind, op.resource_kind, op.resource_id, op.payload, request_id=op.id)

        queue = OfflineQueue(FileStore("/data/queue"), apply, connectivity)
        await queue.start()
        op_id = await queue.enqueue(OperationType.CREATE, "incidents", payload={...})
    """

    def __init__(
        self,
        store: PersistedStore,
        executor: OperationExecutor,
        connectivity: ConnectivitySignal,
        telemetry_sink: Optional[TelemetrySink] = None,
        retry_executor: Optional[RetryExecutor] = None,
        storage_key: str = "offline_queue",
        default_max_attempts: int = 3,
        on_permanent_failure: Optional[Callable[[QueuePermanentFailure], None]] = None,
        clock: Callable[[], float] = time.time,
        rate_limiter: Optional[RateLimiter] = None,
        on_replayed: Optional[ReplayHook] = None,
    ):
        """Initialize offline queue.

        Args:
            store: Persisted store holding the queue
            executor: Applies one operation remotely; receives the operation so the
                remote side can deduplicate replays by id
            connectivity: Online/offline signal
            telemetry_sink: Sink receiving queue events
            retry_executor: Wraps each replay (long-running backoff by default)
            storage_key: Key of the serialized queue in `store`
            default_max_attempts: Attempts allowed when enqueue() gets none
            on_permanent_failure: Called for every operation dropped after its last attempt
            clock: Timestamp source for enqueued_at
            rate_limiter: Gates each replay attempt, keyed by resource_kind
            on_replayed: Awaited with the operation and executor result after
                each successful replay
        """
        if default_max_attempts < 1:
            raise ValueError("default_max_attempts must be >= 1")
        self.store = store
        self.executor = executor
        self.connectivity = connectivity
        self.telemetry = telemetry_sink
        self.retry = retry_executor or RetryExecutor(BackoffPolicy.long_running())
        self.storage_key = storage_key
        self.default_max_attempts = default_max_attempts
        self.on_permanent_failure = on_permanent_failure
        self.rate_limiter = rate_limiter
        self.on_replayed = on_replayed
        self._clock = clock

        self._queue: list[QueuedOperation] = []
        self._lock = asyncio.Lock()  # guards _queue and its persisted copy
        self._drain_lock = asyncio.Lock()
        self._drain_task: Optional[asyncio.Task] = None
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._listeners: list[Callable[[], None]] = []

    # Lifecycle

    async def start(self) -> None:
        """Reload persisted operations, subscribe to connectivity, drain if online."""
        await self.load()
        if self._unsubscribe is None:
            self._unsubscribe = self.connectivity.subscribe(self._on_connectivity_change)
        logger.info(f"Offline queue started with {len(self._queue)} pending operations")
        if self._queue and await self.connectivity.is_online():
            self._trigger_drain()

    async def stop(self) -> None:
        """Unsubscribe from connectivity and wait for a running drain."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        await self.wait_idle()

    async def load(self) -> None:
        """Replace the in-memory queue with the persisted one."""
        try:
            data = await self.store.get(self.storage_key)
        except Exception as e:
            logger.error(f"Failed to load offline queue from storage: {e}")
            return

        if data is None:
            return
        try:
            operations = [QueuedOperation.from_dict(item) for item in json.loads(data.decode("utf-8"))]
        except (ValueError, KeyError, TypeError) as e:
            logger.error(f"Discarding unreadable offline queue: {e}")
            return

        async with self._lock:
            self._queue = operations

    async def _save(self, raise_errors: bool = False) -> None:
        """Persist the whole queue. Caller holds self._lock."""
        data = json.dumps([op.to_dict() for op in self._queue]).encode("utf-8")
        try:
            await self.store.put(self.storage_key, data)
        except Exception as e:
            logger.error(f"Failed to save offline queue to storage: {e}")
            if raise_errors:
                raise

    # Mutations

    async def enqueue(
        self,
        kind: OperationType,
        resource_kind: str,
        payload: Any = None,
        resource_id: Optional[str] = None,
        max_attempts: Optional[int] = None,
        operation_id: Optional[str] = None,
        invalidate: Iterable[str] = (),
    ) -> str:
        """Append a write and persist the queue.

        Args:
            kind: Create, update or delete
            resource_kind: Collection or resource type the write targets
            payload: JSON-serializable write body
            resource_id: Target resource id (absent for creates)
            max_attempts: Replay attempts before the operation is dropped
            operation_id: Id to reuse, e.g. from an online attempt that failed
            invalidate: Cache keys to drop once the operation is replayed

        Returns:
            Operation id

        Raises:
            TypeError: If the payload is not JSON-serializable
        """
        max_attempts = self.default_max_attempts if max_attempts is None else max_attempts
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

        operation = QueuedOperation(
            id=operation_id or uuid.uuid4().hex,
            kind=OperationType(kind),
            resource_kind=resource_kind,
            resource_id=resource_id,
            payload=payload,
            enqueued_at=self._clock(),
            attempts=0,
            max_attempts=max_attempts,
            invalidate=list(invalidate),
        )
        json.dumps(operation.to_dict())

        async with self._lock:
            self._queue.append(operation)
            try:
                await self._save(raise_errors=True)
            except Exception:
                self._queue.remove(operation)
                raise
            queue_length = len(self._queue)

        logger.info(
            f"Queued {operation.kind.value} on {resource_kind}"
            f"{'/' + resource_id if resource_id else ''} as {operation.id} "
            f"(queue size: {queue_length})"
        )
        emit_event(
            self.telemetry,
            telemetry.QUEUE_ENQUEUED,
            {
                "operation_id": operation.id,
                "kind": operation.kind.value,
                "resource_kind": resource_kind,
                "queue_length": queue_length,
            },
        )
        self._notify_listeners()

        if not self.is_draining and await self.connectivity.is_online():
            self._trigger_drain()
        return operation.id

    async def remove(self, operation_id: str) -> bool:
        """Remove an operation by id.

        Returns:
            True if the operation was queued
        """
        async with self._lock:
            removed = self._remove_locked(operation_id)
            if removed:
                await self._save()
        if removed:
            self._notify_listeners()
        return removed

    def _remove_locked(self, operation_id: str) -> bool:
        before = len(self._queue)
        self._queue = [op for op in self._queue if op.id != operation_id]
        return len(self._queue) != before

    async def dequeue_all(self) -> list[QueuedOperation]:
        """Remove and return every pending operation, oldest first."""
        async with self._lock:
            operations = sorted(self._queue, key=lambda op: op.enqueued_at)
            self._queue = []
            await self._save()
        if operations:
            self._notify_listeners()
        return [replace(op) for op in operations]

    async def clear(self) -> int:
        """Drop every pending operation.

        Returns:
            Number of operations dropped
        """
        return len(await self.dequeue_all())

    # Draining

    @property
    def is_draining(self) -> bool:
        return self._drain_lock.locked() or (
            self._drain_task is not None and not self._drain_task.done()
        )

    def _on_connectivity_change(self, online: bool) -> None:
        self._notify_listeners()
        if online and self._queue:
            logger.info(f"Back online with {len(self._queue)} queued operations")
            self._trigger_drain()

    def _trigger_drain(self) -> None:
        """Start a background drain unless one is running."""
        if self.is_draining:
            return
        try:
            self._drain_task = asyncio.get_running_loop().create_task(self.drain())
        except RuntimeError:
            logger.warning("No running event loop; offline queue drain deferred")

    async def wait_idle(self) -> None:
        """Wait for the background drain, if any, to finish."""
        while self._drain_task is not None and not self._drain_task.done():
            try:
                await asyncio.shield(self._drain_task)
            except Exception as e:
                logger.error(f"Offline queue drain failed: {e}")

    async def drain(self) -> DrainResult:
        """Replay queued operations oldest first.

        Only one drain runs at a time; a concurrent call returns a skipped
        result. Operations enqueued while draining are replayed by the same
        pass. A failed operation is attempted at most once per pass. A replay
        rejected by the rate limiter ends the pass, leaving the rest queued for
        the next drain.
        """
        if self._drain_lock.locked():
            return DrainResult(skipped=True)

        result = DrainResult()
        async with self._drain_lock:
            attempted: set[str] = set()
            while True:
                async with self._lock:
                    candidates = sorted(
                        (op for op in self._queue if op.id not in attempted),
                        key=lambda op: op.enqueued_at,
                    )
                if not candidates:
                    break

                if not await self.connectivity.is_online():
                    logger.info(f"Connectivity lost, {len(candidates)} operations left queued")
                    result.aborted = True
                    break

                operation = candidates[0]
                attempted.add(operation.id)
                if not await self._replay(operation, result):
                    result.rate_limited = True
                    break

        self._notify_listeners()
        emit_event(
            self.telemetry,
            telemetry.QUEUE_DRAINED,
            {
                "succeeded": len(result.succeeded),
                "retried": len(result.retried),
                "failed": len(result.failed),
                "aborted": result.aborted,
                "rate_limited": result.rate_limited,
                "queue_length": len(self._queue),
            },
        )
        return result

    async def _replay(self, operation: QueuedOperation, result: DrainResult) -> bool:
        """Replay one operation.

        Returns:
            False if the rate limiter rejected it; the operation stays queued
            with its attempt count unchanged
        """

        async def attempt() -> Any:
            if self.rate_limiter is None:
                return await self.executor(operation)
            return await self.rate_limiter.execute(
                functools.partial(self.executor, operation),
                operation.resource_kind,
            )

        try:
            value = await self.retry.execute(
                attempt,
                name=f"replay {operation.kind.value} {operation.resource_kind} {operation.id}",
            )
        except RateLimitExceededError as e:
            logger.warning(f"Replay of {operation.id} deferred: {e}")
            return False
        except Exception as e:
            await self._record_failure(operation, e, result)
            return True

        async with self._lock:
            if self._remove_locked(operation.id):
                await self._save()
            queue_length = len(self._queue)
        result.succeeded.append(operation.id)
        logger.info(f"Replayed operation {operation.id}")
        emit_event(
            self.telemetry,
            telemetry.QUEUE_SUCCEEDED,
            {"operation_id": operation.id, "queue_length": queue_length},
        )

        if self.on_replayed:
            try:
                await self.on_replayed(operation, value)
            except Exception as e:
                logger.error(f"on_replayed callback failed for {operation.id}: {e}")
        return True

    async def _record_failure(
        self,
        operation: QueuedOperation,
        error: Exception,
        result: DrainResult,
    ) -> None:
        logger.error(f"Failed to execute operation {operation.id}: {error}")

        async with self._lock:
            if operation not in self._queue:
                # Removed by the caller while executing
                return
            operation.attempts += 1
            exhausted = operation.attempts >= operation.max_attempts
            if exhausted:
                self._remove_locked(operation.id)
            await self._save()
            queue_length = len(self._queue)

        if not exhausted:
            result.retried.append(operation.id)
            emit_event(
                self.telemetry,
                telemetry.QUEUE_RETRY_PENDING,
                {
                    "operation_id": operation.id,
                    "attempts": operation.attempts,
                    "queue_length": queue_length,
                },
            )
            return

        failure = QueuePermanentFailure(replace(operation), error)
        result.failed.append(failure)
        logger.error(f"{failure}; removed from queue")
        emit_error(
            self.telemetry,
            telemetry.QUEUE_PERMANENT_FAILURE,
            failure,
            {
                "operation_id": operation.id,
                "resource_kind": operation.resource_kind,
                "attempts": operation.attempts,
                "queue_length": queue_length,
            },
        )
        if self.on_permanent_failure:
            try:
                self.on_permanent_failure(failure)
            except Exception as e:
                logger.error(f"on_permanent_failure callback failed: {e}")

    # Inspection

    def pending(self) -> list[QueuedOperation]:
        """Copies of the pending operations, oldest first."""
        return [replace(op) for op in sorted(self._queue, key=lambda op: op.enqueued_at)]

    def __len__(self) -> int:
        return len(self._queue)

    def add_listener(self, listener: Callable[[], None]) -> None:
        """Register a callback invoked whenever the queue or connectivity changes."""
        self._listeners.append(listener)

    def remove_listener(self, listener: Callable[[], None]) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify_listeners(self) -> None:
        for listener in list(self._listeners):
            try:
                listener()
            except Exception as e:
                logger.error(f"Offline queue listener failed: {e}")
