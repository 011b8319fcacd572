"""Two-tier cache store.

An in-process LRU map fronts a persisted key/value store. The memory tier is
a cache of the persisted tier, never the reverse: every write goes to both,
and a persisted hit repopulates memory.

Operations on the same key are serialized by a per-key asyncio lock, so a
reader sees either the whole prior entry or nothing. Different keys never
wait on each other.
"""

import asyncio
import json
import logging
import time
from collections import OrderedDict
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Optional

from ..monitoring import telemetry
from ..monitoring.telemetry import TelemetrySink, emit_error
from ..storage.base import PersistedStore

logger = logging.getLogger(__name__)

DEFAULT_TTL = 5 * 60.0  # seconds


@dataclass(frozen=True)
class CacheEntry:
    """A cached value. Writes replace the whole entry."""

    key: str
    value: Any
    stored_at: float  # epoch seconds
    ttl: float  # seconds

    def age(self, now: float) -> float:
        return now - self.stored_at

    def is_fresh(self, now: float) -> bool:
        return now - self.stored_at <= self.ttl

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "value": self.value,
            "stored_at": self.stored_at,
            "ttl": self.ttl,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CacheEntry":
        return cls(
            key=data["key"],
            value=data["value"],
            stored_at=float(data["stored_at"]),
            ttl=float(data["ttl"]),
        )


def encode_entry(entry: CacheEntry) -> bytes:
    """Default persisted encoding: JSON. Values must be JSON-serializable."""
    return json.dumps(entry.to_dict()).encode("utf-8")


def decode_entry(data: bytes) -> CacheEntry:
    return CacheEntry.from_dict(json.loads(data.decode("utf-8")))


@dataclass
class _Gate:
    lock: asyncio.Lock
    refcount: int


class KeyedLock:
    """One asyncio lock per key, dropped once nobody holds or waits on it."""

    def __init__(self):
        self._gates: dict[str, _Gate] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        gate = self._gates.get(key)
        if gate is None:
            gate = _Gate(lock=asyncio.Lock(), refcount=0)
            self._gates[key] = gate
        gate.refcount += 1
        try:
            async with gate.lock:
                yield
        finally:
            gate.refcount -= 1
            if gate.refcount <= 0 and self._gates.get(key) is gate:
                del self._gates[key]

    def __len__(self) -> int:
        return len(self._gates)


class CacheStore:
    """Memory + persisted cache with TTL freshness.

    Usage:
        cache = CacheStore(persisted=FileStore("/data/cache"))
        await cache.set("doc:42", {"name": "Ada"}, ttl=60)
        value = await cache.get("doc:42")
    """

    def __init__(
        self,
        persisted: Optional[PersistedStore] = None,
        default_ttl: float = DEFAULT_TTL,
        max_memory_entries: int = 1000,
        namespace: str = "cache",
        serializer: Callable[[CacheEntry], bytes] = encode_entry,
        deserializer: Callable[[bytes], CacheEntry] = decode_entry,
        clock: Callable[[], float] = time.time,
        telemetry_sink: Optional[TelemetrySink] = None,
    ):
        """Initialize cache store.

        Args:
            persisted: Durable tier; memory only when None
            default_ttl: TTL in seconds used when set() gets none
            max_memory_entries: LRU bound of the memory tier
            namespace: Prefix for persisted keys
            serializer: Encodes an entry for the persisted tier
            deserializer: Decodes a persisted entry
            clock: Wall-clock time source in epoch seconds
            telemetry_sink: Sink receiving persistence failures
        """
        if max_memory_entries <= 0:
            raise ValueError("max_memory_entries must be > 0")
        self.persisted = persisted
        self.default_ttl = default_ttl
        self.max_memory_entries = max_memory_entries
        self.namespace = namespace
        self._serialize = serializer
        self._deserialize = deserializer
        self._clock = clock
        self.telemetry = telemetry_sink
        self._memory: OrderedDict[str, CacheEntry] = OrderedDict()
        self._locks = KeyedLock()

    @classmethod
    def from_settings(cls, settings, persisted=None, **kwargs) -> "CacheStore":
        return cls(
            persisted=persisted,
            default_ttl=settings.cache_default_ttl,
            max_memory_entries=settings.cache_max_memory_entries,
            **kwargs,
        )

    def now(self) -> float:
        return self._clock()

    def _persisted_key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    # Memory tier

    def _remember(self, entry: CacheEntry) -> None:
        self._memory[entry.key] = entry
        self._memory.move_to_end(entry.key, last=True)
        while len(self._memory) > self.max_memory_entries:
            evicted, _ = self._memory.popitem(last=False)
            logger.debug(f"Evicted {evicted} from memory cache (persisted copy kept)")

    # Persisted tier. Failures are logged and never raised.

    async def _load(self, key: str) -> Optional[CacheEntry]:
        if self.persisted is None:
            return None
        try:
            data = await self.persisted.get(self._persisted_key(key))
        except Exception as e:
            logger.error(f"Failed to read cache entry {key} from persisted store: {e}")
            emit_error(self.telemetry, telemetry.CACHE_PERSIST_FAILED, e, {"key": key, "op": "get"})
            return None
        if data is None:
            return None
        try:
            return self._deserialize(data)
        except Exception as e:
            logger.warning(f"Discarding unreadable cache entry {key}: {e}")
            return None

    async def _store(self, entry: CacheEntry) -> None:
        if self.persisted is None:
            return
        try:
            await self.persisted.put(self._persisted_key(entry.key), self._serialize(entry))
        except Exception as e:
            logger.error(f"Failed to persist cache entry {entry.key}: {e}")
            emit_error(self.telemetry, telemetry.CACHE_PERSIST_FAILED, e, {"key": entry.key, "op": "put"})

    async def _unstore(self, key: str) -> None:
        if self.persisted is None:
            return
        try:
            await self.persisted.delete(self._persisted_key(key))
        except Exception as e:
            logger.error(f"Failed to delete cache entry {key} from persisted store: {e}")
            emit_error(self.telemetry, telemetry.CACHE_PERSIST_FAILED, e, {"key": key, "op": "delete"})

    # Public API

    async def get_entry(self, key: str, allow_stale: bool = False) -> Optional[CacheEntry]:
        """Look up an entry, memory first, then the persisted tier.

        Args:
            key: Cache key
            allow_stale: Return an expired entry rather than nothing

        Returns:
            The freshest entry available, or None
        """
        async with self._locks.hold(key):
            now = self._clock()
            memory_entry = self._memory.get(key)
            if memory_entry is not None and memory_entry.is_fresh(now):
                self._memory.move_to_end(key, last=True)
                logger.debug(f"Cache hit (memory) for key: {key}")
                return memory_entry

            best = memory_entry
            persisted_entry = await self._load(key)
            if persisted_entry is not None and (
                memory_entry is None or persisted_entry.stored_at >= memory_entry.stored_at
            ):
                self._remember(persisted_entry)
                best = persisted_entry

            if best is None:
                logger.debug(f"Cache miss for key: {key}")
                return None
            if best.is_fresh(now):
                logger.debug(f"Cache hit (persisted) for key: {key}")
                return best
            if allow_stale:
                logger.debug(f"Stale cache hit for key: {key} (age {best.age(now):.1f}s)")
                return best
            logger.debug(f"Cache entry expired for key: {key}")
            return None

    async def get(self, key: str, default: Any = None, allow_stale: bool = False) -> Any:
        entry = await self.get_entry(key, allow_stale=allow_stale)
        return default if entry is None else entry.value

    async def has(self, key: str) -> bool:
        """True if a fresh entry exists in either tier."""
        return await self.get_entry(key) is not None

    async def set(self, key: str, value: Any, ttl: Optional[float] = None) -> CacheEntry:
        """Store a value in both tiers, replacing any previous entry."""
        ttl = self.default_ttl if ttl is None else ttl
        if ttl <= 0:
            raise ValueError("ttl must be > 0")
        async with self._locks.hold(key):
            entry = CacheEntry(key=key, value=value, stored_at=self._clock(), ttl=ttl)
            self._remember(entry)
            await self._store(entry)
            return entry

    async def delete(self, key: str) -> None:
        async with self._locks.hold(key):
            self._memory.pop(key, None)
            await self._unstore(key)

    async def _all_keys(self) -> list[str]:
        keys = set(self._memory)
        if self.persisted is not None:
            prefix = self._persisted_key("")
            try:
                keys.update(k[len(prefix):] for k in await self.persisted.keys(prefix))
            except Exception as e:
                logger.error(f"Failed to list persisted cache keys: {e}")
                emit_error(self.telemetry, telemetry.CACHE_PERSIST_FAILED, e, {"op": "keys"})
        return sorted(keys)

    async def clear(self) -> None:
        """Remove every entry from both tiers."""
        for key in await self._all_keys():
            await self.delete(key)
        logger.info(f"Cleared cache namespace {self.namespace}")

    async def clear_expired(self) -> int:
        """Sweep expired entries out of both tiers.

        Returns:
            Number of keys removed
        """
        removed = 0
        for key in await self._all_keys():
            async with self._locks.hold(key):
                now = self._clock()
                dropped = False

                memory_entry = self._memory.get(key)
                if memory_entry is not None and not memory_entry.is_fresh(now):
                    del self._memory[key]
                    dropped = True

                persisted_entry = await self._load(key)
                if persisted_entry is not None and not persisted_entry.is_fresh(now):
                    await self._unstore(key)
                    dropped = True

                if dropped:
                    removed += 1

        if removed:
            logger.info(f"Removed {removed} expired cache entries")
        return removed

    async def run_maintenance(
        self,
        interval_seconds: float = 300.0,
        stop_event: Optional[asyncio.Event] = None,
    ) -> None:
        """Run clear_expired every `interval_seconds` until `stop_event` is set."""
        stop_event = stop_event or asyncio.Event()
        logger.info(f"Starting cache maintenance every {interval_seconds}s")

        while not stop_event.is_set():
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval_seconds)
            except asyncio.TimeoutError:
                pass
            if stop_event.is_set():
                break
            try:
                await self.clear_expired()
            except Exception as e:
                logger.error(f"Cache maintenance error: {e}")

        logger.info("Cache maintenance stopped")

    def size(self) -> int:
        """Entries in the memory tier (persisted-only entries not counted)."""
        return len(self._memory)

    def keys(self) -> list[str]:
        """Keys in the memory tier."""
        return list(self._memory.keys())
