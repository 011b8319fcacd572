"""Persisted key/value stores used by the cache and the offline queue."""

from .base import PersistedStore, StorageError
from .file import FileStore
from .memory import MemoryStore
from .redis import RedisStore

__all__ = ["PersistedStore", "StorageError", "MemoryStore", "FileStore", "RedisStore"]
