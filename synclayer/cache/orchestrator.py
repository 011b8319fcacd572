"""Cache fetch strategies.

Combines CacheStore reads and writes with a caller-supplied network
operation. Every network attempt passes the rate limiter first and runs
inside the retry executor.
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Union

from ..errors import CacheMissError, OperationCancelledError
from ..monitoring import telemetry
from ..monitoring.telemetry import TelemetrySink, emit_error, emit_event
from ..resilience.rate_limiter import RateLimiter
from ..resilience.retry import RetryExecutor
from .store import CacheStore

logger = logging.getLogger(__name__)

NetworkOp = Callable[[], Awaitable[Any]]


class CacheStrategy(str, Enum):
    """How a fetch combines the cache and the network."""

    CACHE_ONLY = "CACHE_ONLY"  # Cached value (fresh or stale), else fallback
    NETWORK_ONLY = "NETWORK_ONLY"  # Always the network
    NETWORK_FIRST = "NETWORK_FIRST"  # Network, degrading to any cached value
    CACHE_FIRST = "CACHE_FIRST"  # Fresh cached value, else network
    STALE_WHILE_REVALIDATE = "STALE_WHILE_REVALIDATE"  # Cached value now, refresh in background


class CacheOrchestrator:
    """Runs fetches under a named cache strategy.

    Usage:
        orchestrator = CacheOrchestrator(store, retry_executor, rate_limiter=limiters.read)
        student = await orchestrator.fetch(
            CacheStrategy.NETWORK_FIRST,
            f"doc:students/{student_id}",
            lambda: remote.get("students", student_id),
        )
    """

    def __init__(
        self,
        store: CacheStore,
        retry_executor: Optional[RetryExecutor] = None,
        rate_limiter: Optional[RateLimiter] = None,
        rate_limit_key: str = "read",
        telemetry_sink: Optional[TelemetrySink] = None,
    ):
        """Initialize orchestrator.

        Args:
            store: Cache store
            retry_executor: Wraps every network call
            rate_limiter: Gate consulted before every network attempt
            rate_limit_key: Bucket key used on the rate limiter
            telemetry_sink: Sink receiving strategy outcomes
        """
        self.store = store
        self.retry = retry_executor or RetryExecutor()
        self.rate_limiter = rate_limiter
        self.rate_limit_key = rate_limit_key
        self.telemetry = telemetry_sink
        self._refreshes: dict[str, asyncio.Task] = {}

    async def fetch(
        self,
        strategy: Union[CacheStrategy, str],
        key: str,
        network_op: NetworkOp,
        fallback_op: Optional[NetworkOp] = None,
        ttl: Optional[float] = None,
        cancel_event: Optional[asyncio.Event] = None,
        attempt_timeout: Optional[float] = None,
    ) -> Any:
        """Fetch a value using the given strategy.

        Args:
            strategy: Cache strategy
            key: Cache key
            network_op: Coroutine function fetching the value remotely
            fallback_op: Coroutine function used when no other path yields a value
            ttl: TTL for values stored by this fetch
            cancel_event: Set to abort the network call, including pending retries
            attempt_timeout: Per-attempt deadline for the network call in seconds

        Returns:
            The fetched value

        Raises:
            CacheMissError: CACHE_ONLY found nothing and no fallback was given
            OperationCancelledError: The caller set cancel_event; never answered
                from the cache or the fallback
            Exception: The network error, when no path yields a value
        """
        strategy = CacheStrategy(strategy)
        call = {"cancel_event": cancel_event, "attempt_timeout": attempt_timeout}

        if strategy == CacheStrategy.CACHE_ONLY:
            return await self._cache_only(key, fallback_op)
        if strategy == CacheStrategy.NETWORK_ONLY:
            return await self._network_only(strategy, key, network_op, fallback_op, ttl, **call)
        if strategy == CacheStrategy.NETWORK_FIRST:
            return await self._network_first(key, network_op, fallback_op, ttl, **call)
        if strategy == CacheStrategy.STALE_WHILE_REVALIDATE:
            return await self._stale_while_revalidate(key, network_op, fallback_op, ttl, **call)
        return await self._cache_first(key, network_op, fallback_op, ttl, **call)

    def _record(self, strategy: CacheStrategy, key: str, outcome: str) -> None:
        emit_event(
            self.telemetry,
            telemetry.CACHE_FETCH,
            {"strategy": strategy.value, "key": key, "outcome": outcome},
        )

    async def _from_network(
        self,
        key: str,
        network_op: NetworkOp,
        ttl: Optional[float],
        cancel_event: Optional[asyncio.Event] = None,
        attempt_timeout: Optional[float] = None,
    ) -> Any:
        """Rate limit, retry, and store a network result."""

        async def attempt() -> Any:
            if self.rate_limiter is not None:
                return await self.rate_limiter.execute(network_op, self.rate_limit_key)
            return await network_op()

        value = await self.retry.execute(
            attempt,
            cancel_event=cancel_event,
            attempt_timeout=attempt_timeout,
            name=f"fetch {key}",
        )
        await self.store.set(key, value, ttl)
        return value

    async def _run_fallback(
        self,
        strategy: CacheStrategy,
        key: str,
        fallback_op: NetworkOp,
    ) -> Any:
        value = await fallback_op()
        self._record(strategy, key, "fallback")
        return value

    async def _cache_only(self, key: str, fallback_op: Optional[NetworkOp]) -> Any:
        strategy = CacheStrategy.CACHE_ONLY
        entry = await self.store.get_entry(key, allow_stale=True)
        if entry is not None:
            self._record(strategy, key, "hit")
            return entry.value
        if fallback_op is not None:
            return await self._run_fallback(strategy, key, fallback_op)
        self._record(strategy, key, "miss")
        raise CacheMissError(key)

    async def _network_only(
        self,
        strategy: CacheStrategy,
        key: str,
        network_op: NetworkOp,
        fallback_op: Optional[NetworkOp],
        ttl: Optional[float],
        cancel_event: Optional[asyncio.Event] = None,
        attempt_timeout: Optional[float] = None,
    ) -> Any:
        try:
            value = await self._from_network(key, network_op, ttl, cancel_event, attempt_timeout)
        except OperationCancelledError:
            self._record(strategy, key, "cancelled")
            raise
        except Exception as e:
            if fallback_op is not None:
                logger.warning(f"Network failed for key {key}, using fallback: {e}")
                return await self._run_fallback(strategy, key, fallback_op)
            self._record(strategy, key, "error")
            raise
        self._record(strategy, key, "network")
        return value

    async def _network_first(
        self,
        key: str,
        network_op: NetworkOp,
        fallback_op: Optional[NetworkOp],
        ttl: Optional[float],
        cancel_event: Optional[asyncio.Event] = None,
        attempt_timeout: Optional[float] = None,
    ) -> Any:
        strategy = CacheStrategy.NETWORK_FIRST
        try:
            value = await self._from_network(key, network_op, ttl, cancel_event, attempt_timeout)
        except OperationCancelledError:
            self._record(strategy, key, "cancelled")
            raise
        except Exception as e:
            logger.warning(f"Network failed for key {key}, trying cache: {e}")
            entry = await self.store.get_entry(key, allow_stale=True)
            if entry is not None:
                self._record(strategy, key, "stale_hit")
                return entry.value
            if fallback_op is not None:
                return await self._run_fallback(strategy, key, fallback_op)
            self._record(strategy, key, "error")
            raise
        self._record(strategy, key, "network")
        return value

    async def _cache_first(
        self,
        key: str,
        network_op: NetworkOp,
        fallback_op: Optional[NetworkOp],
        ttl: Optional[float],
        cancel_event: Optional[asyncio.Event] = None,
        attempt_timeout: Optional[float] = None,
    ) -> Any:
        strategy = CacheStrategy.CACHE_FIRST
        entry = await self.store.get_entry(key)
        if entry is not None:
            self._record(strategy, key, "hit")
            return entry.value
        return await self._network_only(
            strategy, key, network_op, fallback_op, ttl, cancel_event, attempt_timeout
        )

    async def _stale_while_revalidate(
        self,
        key: str,
        network_op: NetworkOp,
        fallback_op: Optional[NetworkOp],
        ttl: Optional[float],
        cancel_event: Optional[asyncio.Event] = None,
        attempt_timeout: Optional[float] = None,
    ) -> Any:
        strategy = CacheStrategy.STALE_WHILE_REVALIDATE
        entry = await self.store.get_entry(key, allow_stale=True)
        if entry is None:
            return await self._network_only(
                strategy, key, network_op, fallback_op, ttl, cancel_event, attempt_timeout
            )

        # The refresh outlives this call, so only the per-attempt deadline applies to it
        self._schedule_refresh(key, network_op, ttl, attempt_timeout)
        fresh = entry.is_fresh(self.store.now())
        self._record(strategy, key, "hit" if fresh else "stale_hit")
        return entry.value

    def _schedule_refresh(
        self,
        key: str,
        network_op: NetworkOp,
        ttl: Optional[float],
        attempt_timeout: Optional[float] = None,
    ) -> None:
        """Start a background refresh for `key` unless one is already in flight."""
        running = self._refreshes.get(key)
        if running is not None and not running.done():
            logger.debug(f"Joining in-flight refresh for key: {key}")
            return

        task = asyncio.create_task(self._refresh(key, network_op, ttl, attempt_timeout))
        self._refreshes[key] = task
        task.add_done_callback(lambda t, k=key: self._forget_refresh(k, t))

    def _forget_refresh(self, key: str, task: asyncio.Task) -> None:
        if self._refreshes.get(key) is task:
            del self._refreshes[key]

    async def _refresh(
        self,
        key: str,
        network_op: NetworkOp,
        ttl: Optional[float],
        attempt_timeout: Optional[float] = None,
    ) -> None:
        try:
            await self._from_network(key, network_op, ttl, attempt_timeout=attempt_timeout)
            logger.debug(f"Background refresh completed for key: {key}")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Background refresh failed for key {key}: {e}")
            emit_error(self.telemetry, telemetry.CACHE_REFRESH_FAILED, e, {"key": key})

    def refresh_in_flight(self, key: str) -> bool:
        task = self._refreshes.get(key)
        return task is not None and not task.done()

    async def wait_for_refreshes(self) -> None:
        """Wait until every background refresh started so far has finished."""
        tasks = list(self._refreshes.values())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def close(self) -> None:
        """Cancel background refreshes."""
        tasks = list(self._refreshes.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._refreshes.clear()
