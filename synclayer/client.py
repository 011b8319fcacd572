"""Facade wiring the cache, rate limiters, retry and offline queue together."""

import asyncio
import functools
import logging
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Optional, Union

from .cache.orchestrator import CacheOrchestrator, CacheStrategy, NetworkOp
from .cache.store import CacheStore
from .config import Settings
from .config import settings as default_settings
from .monitoring.telemetry import LoggingTelemetry, NullTelemetry, TelemetrySink
from .offline.connectivity import ConnectivitySignal, ManualConnectivity
from .offline.queue import OfflineQueue, OperationExecutor, OperationType, QueuedOperation
from .resilience.backoff import BackoffPolicy
from .resilience.rate_limiter import OperationRateLimiters
from .resilience.retry import RetryExecutor
from .storage.base import PersistedStore
from .storage.file import FileStore
from .storage.memory import MemoryStore

logger = logging.getLogger(__name__)


class WriteStatus(str, Enum):
    CONFIRMED = "confirmed"  # Applied remotely
    PENDING = "pending"  # Queued for replay


@dataclass
class WriteResult:
    """Outcome of SyncClient.write()."""

    status: WriteStatus
    operation_id: str
    value: Any = None  # Executor result, when confirmed


class SyncClient:
    """Reads through the cache and writes through the queue.

    Usage:
        client = build_client(apply_write)
        await client.start()
        doc = await client.read("doc:students/7", lambda: remote.get("students", "7"))
        result = await client.write(OperationType.UPDATE, "students", {"name": "Ada"},
                                    resource_id="7", invalidate=["doc:students/7"])
        await client.close()
    """

    def __init__(
        self,
        cache: CacheStore,
        orchestrator: CacheOrchestrator,
        queue: OfflineQueue,
        limiters: OperationRateLimiters,
        connectivity: ConnectivitySignal,
        retry_executor: RetryExecutor,
        telemetry_sink: Optional[TelemetrySink] = None,
        maintenance_interval: float = 300.0,
    ):
        self.cache = cache
        self.orchestrator = orchestrator
        self.queue = queue
        self.limiters = limiters
        self.connectivity = connectivity
        self.retry = retry_executor
        self.telemetry = telemetry_sink
        self.maintenance_interval = maintenance_interval
        self._maintenance_task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None
        if queue.on_replayed is None:
            queue.on_replayed = self.invalidate_applied

    async def start(self) -> None:
        """Start the offline queue and the cache maintenance loop."""
        await self.queue.start()
        if self._maintenance_task is None or self._maintenance_task.done():
            self._stop_event = asyncio.Event()
            self._maintenance_task = asyncio.create_task(
                self.cache.run_maintenance(self.maintenance_interval, self._stop_event)
            )
        logger.info("Sync client started")

    async def close(self) -> None:
        """Stop background work: maintenance, SWR refreshes, queue drain."""
        if self._stop_event is not None:
            self._stop_event.set()
        if self._maintenance_task is not None:
            await self._maintenance_task
            self._maintenance_task = None

        await self.orchestrator.close()
        await self.queue.stop()

        flush = getattr(self.telemetry, "flush", None)
        if callable(flush):
            flush()
        logger.info("Sync client closed")

    async def read(
        self,
        key: str,
        network_op: NetworkOp,
        strategy: Optional[Union[CacheStrategy, str]] = None,
        fallback_op: Optional[NetworkOp] = None,
        ttl: Optional[float] = None,
        cancel_event: Optional[asyncio.Event] = None,
        attempt_timeout: Optional[float] = None,
    ) -> Any:
        """Fetch `key` under a cache strategy (cache first by default).

        `cancel_event` aborts the network call and its retries; `attempt_timeout`
        bounds each network attempt in seconds.
        """
        return await self.orchestrator.fetch(
            strategy or CacheStrategy.CACHE_FIRST,
            key,
            network_op,
            fallback_op=fallback_op,
            ttl=ttl,
            cancel_event=cancel_event,
            attempt_timeout=attempt_timeout,
        )

    async def write(
        self,
        kind: OperationType,
        resource_kind: str,
        payload: Any = None,
        resource_id: Optional[str] = None,
        invalidate: Iterable[str] = (),
    ) -> WriteResult:
        """Apply a write now, or queue it when that is not possible.

        Args:
            kind: Create, update or delete
            resource_kind: Collection or resource type the write targets
            payload: JSON-serializable write body
            resource_id: Target resource id
            invalidate: Cache keys dropped once the write is applied, now or on replay

        Returns:
            WriteResult, CONFIRMED when applied remotely, PENDING when queued

        Raises:
            RateLimitExceededError: If the write limiter is exhausted
            Exception: Any terminal error raised by the executor
        """
        kind = OperationType(kind)
        invalidate = list(invalidate)
        if not await self.connectivity.is_online():
            operation_id = await self.queue.enqueue(
                kind, resource_kind, payload, resource_id, invalidate=invalidate
            )
            logger.info(f"Offline, queued {kind.value} on {resource_kind} as {operation_id}")
            return WriteResult(WriteStatus.PENDING, operation_id)

        operation = QueuedOperation(
            id=uuid.uuid4().hex,
            kind=kind,
            resource_kind=resource_kind,
            resource_id=resource_id,
            payload=payload,
            enqueued_at=self.cache.now(),
            max_attempts=self.queue.default_max_attempts,
            invalidate=invalidate,
        )

        async def attempt() -> Any:
            return await self.limiters.write.execute(
                functools.partial(self.queue.executor, operation),
                resource_kind,
            )

        try:
            value = await self.retry.execute(
                attempt, name=f"{kind.value} {resource_kind}"
            )
        except Exception as e:
            if not self.retry.policy.classify(e):
                raise
            logger.warning(f"Write {operation.id} failed after retries, queueing: {e}")
            await self.queue.enqueue(
                kind,
                resource_kind,
                payload,
                resource_id,
                operation_id=operation.id,
                invalidate=invalidate,
            )
            return WriteResult(WriteStatus.PENDING, operation.id)

        await self.invalidate_applied(operation)
        return WriteResult(WriteStatus.CONFIRMED, operation.id, value)

    async def invalidate_applied(self, operation: QueuedOperation, value: Any = None) -> None:
        """Drop the cache keys a write named once it has been applied remotely."""
        for key in operation.invalidate:
            await self.cache.delete(key)
        if operation.invalidate:
            logger.debug(f"Invalidated {len(operation.invalidate)} cache keys after {operation.id}")


def build_client(
    executor: OperationExecutor,
    connectivity: Optional[ConnectivitySignal] = None,
    persisted: Optional[PersistedStore] = None,
    telemetry_sink: Optional[TelemetrySink] = None,
    settings: Optional[Settings] = None,
) -> SyncClient:
    """Construct a SyncClient with its own instance of every component.

    Args:
        executor: Applies one write remotely
        connectivity: Online/offline signal (always online when None)
        persisted: Durable store shared by the cache and the queue; a FileStore
            under settings.storage_dir, else in-memory, when None
        telemetry_sink: Sink for all components (logs at debug when None)
        settings: Settings (module defaults when None)
    """
    settings = settings or default_settings
    connectivity = connectivity or ManualConnectivity(online=True)
    if persisted is None:
        persisted = FileStore(settings.storage_dir) if settings.storage_dir else MemoryStore()
    if telemetry_sink is None:
        telemetry_sink = (
            LoggingTelemetry(level=logging.DEBUG) if settings.telemetry_enabled else NullTelemetry()
        )

    retry = RetryExecutor(BackoffPolicy.from_settings(settings), telemetry_sink=telemetry_sink)
    limiters = OperationRateLimiters.from_settings(settings, telemetry_sink=telemetry_sink)
    cache = CacheStore.from_settings(settings, persisted=persisted, telemetry_sink=telemetry_sink)
    orchestrator = CacheOrchestrator(
        cache,
        retry,
        rate_limiter=limiters.read,
        telemetry_sink=telemetry_sink,
    )
    queue = OfflineQueue(
        persisted,
        executor,
        connectivity,
        telemetry_sink=telemetry_sink,
        retry_executor=RetryExecutor(
            BackoffPolicy.from_settings(settings, long_running=True),
            telemetry_sink=telemetry_sink,
        ),
        storage_key=settings.queue_storage_key,
        default_max_attempts=settings.queue_max_attempts,
        rate_limiter=limiters.write,
    )
    return SyncClient(
        cache,
        orchestrator,
        queue,
        limiters,
        connectivity,
        retry,
        telemetry_sink=telemetry_sink,
        maintenance_interval=settings.cache_maintenance_interval,
    )
