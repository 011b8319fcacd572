"""Two-tier cache and fetch strategies."""

from .orchestrator import CacheOrchestrator, CacheStrategy
from .store import CacheEntry, CacheStore, KeyedLock, decode_entry, encode_entry

__all__ = [
    "CacheEntry",
    "CacheStore",
    "KeyedLock",
    "encode_entry",
    "decode_entry",
    "CacheOrchestrator",
    "CacheStrategy",
]
