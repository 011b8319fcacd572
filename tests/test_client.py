"""Tests for the sync client facade."""

import asyncio
import pytest
from unittest.mock import AsyncMock

from synclayer.cache.orchestrator import CacheStrategy
from synclayer.client import WriteStatus, build_client
from synclayer.config import Settings
from synclayer.errors import (
    OperationCancelledError,
    OperationTimeoutError,
    RateLimitExceededError,
    TransientError,
)
from synclayer.monitoring.telemetry import NullTelemetry
from synclayer.offline.connectivity import ManualConnectivity
from synclayer.offline.queue import OperationType
from synclayer.storage.file import FileStore
from synclayer.storage.memory import MemoryStore


@pytest.fixture
def fast_settings():
    """Settings with near-zero backoff so retries do not slow tests down."""
    return Settings(
        retry_max_retries=2,
        retry_base_delay=0.001,
        retry_max_delay=0.001,
        retry_long_running_max_delay=0.001,
    )


class TestWrite:
    """Test the write path."""

    @pytest.mark.asyncio
    async def test_online_write_confirmed(self, fast_settings, memory_store, sink):
        executor = AsyncMock(return_value="students/7")
        client = build_client(executor, persisted=memory_store, telemetry_sink=sink, settings=fast_settings)
        await client.cache.set("doc:students/7", {"name": "Ada"})

        result = await client.write(
            OperationType.UPDATE,
            "students",
            {"name": "Grace"},
            resource_id="7",
            invalidate=["doc:students/7"],
        )

        assert result.status == WriteStatus.CONFIRMED
        assert result.value == "students/7"
        operation = executor.await_args.args[0]
        assert operation.id == result.operation_id
        assert operation.payload == {"name": "Grace"}
        assert await client.cache.get("doc:students/7", allow_stale=True) is None
        assert len(client.queue) == 0

    @pytest.mark.asyncio
    async def test_offline_write_queued(self, fast_settings, memory_store):
        executor = AsyncMock()
        connectivity = ManualConnectivity(online=False)
        client = build_client(executor, connectivity=connectivity, persisted=memory_store, settings=fast_settings)
        await client.cache.set("doc:students/7", {"name": "Ada"})

        result = await client.write(
            OperationType.UPDATE, "students", {"name": "Grace"}, resource_id="7",
            invalidate=["doc:students/7"],
        )

        assert result.status == WriteStatus.PENDING
        assert [op.id for op in client.queue.pending()] == [result.operation_id]
        executor.assert_not_awaited()
        assert await client.cache.get("doc:students/7") == {"name": "Ada"}

    @pytest.mark.asyncio
    async def test_transient_failure_falls_back_to_queue(self, fast_settings, memory_store):
        """Test a write that exhausts its retries is queued under the same id."""
        executor = AsyncMock(side_effect=TransientError("unavailable"))
        client = build_client(executor, persisted=memory_store, settings=fast_settings)

        result = await client.write(OperationType.CREATE, "students", {"name": "Ada"})

        assert result.status == WriteStatus.PENDING
        assert executor.await_count == 3
        assert [op.id for op in client.queue.pending()] == [result.operation_id]
        await client.close()

    @pytest.mark.asyncio
    async def test_terminal_failure_raises(self, fast_settings, memory_store):
        executor = AsyncMock(side_effect=ValueError("permission denied"))
        client = build_client(executor, persisted=memory_store, settings=fast_settings)

        with pytest.raises(ValueError):
            await client.write(OperationType.DELETE, "students", resource_id="7")

        assert executor.await_count == 1
        assert len(client.queue) == 0

    @pytest.mark.asyncio
    async def test_write_rate_limited(self, memory_store):
        settings = Settings(rate_limit_write=1)
        executor = AsyncMock(return_value=None)
        client = build_client(executor, persisted=memory_store, settings=settings)

        await client.write(OperationType.CREATE, "students")
        with pytest.raises(RateLimitExceededError):
            await client.write(OperationType.CREATE, "students")

        assert executor.await_count == 1
        assert len(client.queue) == 0


class TestRead:
    """Test the read path."""

    @pytest.mark.asyncio
    async def test_cache_first_by_default(self, fast_settings, memory_store):
        client = build_client(AsyncMock(), persisted=memory_store, settings=fast_settings)
        network = AsyncMock(return_value={"name": "Ada"})

        assert await client.read("doc:students/7", network) == {"name": "Ada"}
        assert await client.read("doc:students/7", network) == {"name": "Ada"}
        network.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_explicit_strategy(self, fast_settings, memory_store):
        client = build_client(AsyncMock(), persisted=memory_store, settings=fast_settings)
        network = AsyncMock(side_effect=["v1", "v2"])

        assert await client.read("k", network, strategy=CacheStrategy.NETWORK_ONLY) == "v1"
        assert await client.read("k", network, strategy=CacheStrategy.NETWORK_ONLY) == "v2"

    @pytest.mark.asyncio
    async def test_cancelled_read_raises_without_network(self, fast_settings, memory_store):
        client = build_client(AsyncMock(), persisted=memory_store, settings=fast_settings)
        network = AsyncMock(return_value={"name": "Ada"})
        cancel = asyncio.Event()
        cancel.set()

        with pytest.raises(OperationCancelledError):
            await client.read("doc:students/7", network, cancel_event=cancel)
        network.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_read_attempt_timeout(self, fast_settings, memory_store):
        client = build_client(AsyncMock(), persisted=memory_store, settings=fast_settings)
        calls = []

        async def slow():
            calls.append(1)
            await asyncio.sleep(1.0)

        with pytest.raises(OperationTimeoutError):
            await client.read("k", slow, strategy=CacheStrategy.NETWORK_ONLY, attempt_timeout=0.01)
        assert len(calls) == 3


class TestLifecycle:
    """Test start/close and construction."""

    @pytest.mark.asyncio
    async def test_pending_writes_replayed_on_reconnect(self, fast_settings, memory_store):
        executor = AsyncMock(return_value=None)
        connectivity = ManualConnectivity(online=False)
        client = build_client(executor, connectivity=connectivity, persisted=memory_store, settings=fast_settings)
        await client.start()

        result = await client.write(OperationType.CREATE, "students", {"name": "Ada"})
        connectivity.set_online(True)
        await client.queue.wait_idle()

        assert executor.await_args.args[0].id == result.operation_id
        assert len(client.queue) == 0
        await client.close()

    @pytest.mark.asyncio
    async def test_replays_respect_write_rate_limit(self, memory_store):
        settings = Settings(rate_limit_write=1, retry_max_retries=0)
        executor = AsyncMock(return_value=None)
        connectivity = ManualConnectivity(online=False)
        client = build_client(executor, connectivity=connectivity, persisted=memory_store, settings=settings)
        await client.start()

        for name in ["Ada", "Grace", "Edsger"]:
            await client.write(OperationType.CREATE, "students", {"name": name})
        connectivity.set_online(True)
        await client.queue.wait_idle()

        assert executor.await_count == 1
        assert [op.payload["name"] for op in client.queue.pending()] == ["Grace", "Edsger"]
        assert all(op.attempts == 0 for op in client.queue.pending())
        await client.close()

    @pytest.mark.asyncio
    async def test_replayed_write_invalidates_cache(self, fast_settings, memory_store):
        executor = AsyncMock(return_value=None)
        connectivity = ManualConnectivity(online=False)
        client = build_client(executor, connectivity=connectivity, persisted=memory_store, settings=fast_settings)
        await client.start()
        await client.cache.set("doc:students/7", {"name": "Ada"})

        result = await client.write(
            OperationType.UPDATE, "students", {"name": "Grace"}, resource_id="7",
            invalidate=["doc:students/7"],
        )
        assert result.status == WriteStatus.PENDING
        connectivity.set_online(True)
        await client.queue.wait_idle()

        assert len(client.queue) == 0
        assert await client.cache.get("doc:students/7", allow_stale=True) is None
        await client.close()

    @pytest.mark.asyncio
    async def test_close_without_start(self, fast_settings):
        client = build_client(AsyncMock(), settings=fast_settings)
        await client.close()

    def test_file_store_when_storage_dir_set(self, tmp_path):
        client = build_client(AsyncMock(), settings=Settings(storage_dir=str(tmp_path)))

        assert isinstance(client.queue.store, FileStore)
        assert client.cache.persisted is client.queue.store

    def test_memory_store_by_default(self):
        client = build_client(AsyncMock(), settings=Settings())

        assert isinstance(client.queue.store, MemoryStore)

    def test_telemetry_disabled(self):
        client = build_client(AsyncMock(), settings=Settings(telemetry_enabled=False))

        assert isinstance(client.telemetry, NullTelemetry)

    def test_components_not_shared(self):
        first = build_client(AsyncMock(), settings=Settings())
        second = build_client(AsyncMock(), settings=Settings())

        assert first.cache is not second.cache
        assert first.limiters.write is not second.limiters.write
        assert first.queue is not second.queue
