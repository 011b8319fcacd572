"""Persisted key/value store interface."""

from typing import Optional, Protocol

from ..errors import SyncLayerError


class PersistedStore(Protocol):
    """Durable local key/value storage.

    Values are raw bytes; callers own serialization.
    """

    async def get(self, key: str) -> Optional[bytes]: ...

    async def put(self, key: str, value: bytes) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def keys(self, prefix: str = "") -> list[str]: ...


class StorageError(SyncLayerError):
    """Raised by stores when the backing medium fails."""

    code = "storage-error"
