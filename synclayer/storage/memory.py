"""In-memory persisted store, for tests and ephemeral sessions."""

from typing import Optional


class MemoryStore:
    """Dict-backed PersistedStore. Survives nothing, but honours the interface."""

    def __init__(self):
        self._data: dict[str, bytes] = {}

    async def get(self, key: str) -> Optional[bytes]:
        return self._data.get(key)

    async def put(self, key: str, value: bytes) -> None:
        if not isinstance(value, (bytes, bytearray)):
            raise TypeError(f"MemoryStore values must be bytes, got {type(value).__name__}")
        self._data[key] = bytes(value)

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def keys(self, prefix: str = "") -> list[str]:
        return [k for k in self._data if k.startswith(prefix)]

    def __len__(self) -> int:
        return len(self._data)
