"""Directory-backed persisted store.

Each key is one file named by the SHA-256 of the key, so filenames stay
within filesystem limits whatever the key length. The file starts with the
key itself (big-endian length, then UTF-8 bytes) followed by the value, which
lets keys() recover the original keys. Writes go to a temporary file first
and are moved into place with os.replace, so a crash never leaves a
half-written value.
"""

import asyncio
import hashlib
import os
import struct
import tempfile
from pathlib import Path
from typing import BinaryIO, Optional, Union

from .base import StorageError

_SUFFIX = ".bin"
_KEY_LENGTH = struct.Struct(">I")


def _filename(key: str) -> str:
    return hashlib.sha256(key.encode("utf-8")).hexdigest() + _SUFFIX


def _read_key(f: BinaryIO) -> Optional[str]:
    """Read the key header; None if the file is truncated or not ours."""
    header = f.read(_KEY_LENGTH.size)
    if len(header) != _KEY_LENGTH.size:
        return None
    (length,) = _KEY_LENGTH.unpack(header)
    raw = f.read(length)
    if len(raw) != length:
        return None
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError:
        return None


class FileStore:
    """PersistedStore writing one file per key under `directory`."""

    def __init__(self, directory: Union[str, Path]):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        return self.directory / _filename(key)

    def _read(self, key: str) -> Optional[bytes]:
        try:
            with open(self._path(key), "rb") as f:
                stored_key = _read_key(f)
                if stored_key != key:
                    raise StorageError(f"Corrupt entry file for {key}")
                return f.read()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageError(f"Failed to read {key}: {e}") from e

    def _write(self, key: str, value: bytes) -> None:
        encoded_key = key.encode("utf-8")
        try:
            fd, tmp_path = tempfile.mkstemp(dir=self.directory, prefix=".tmp-")
        except OSError as e:
            raise StorageError(f"Failed to write {key}: {e}") from e
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(_KEY_LENGTH.pack(len(encoded_key)))
                f.write(encoded_key)
                f.write(value)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self._path(key))
        except OSError as e:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise StorageError(f"Failed to write {key}: {e}") from e

    def _remove(self, key: str) -> None:
        try:
            self._path(key).unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            raise StorageError(f"Failed to delete {key}: {e}") from e

    def _list(self, prefix: str) -> list[str]:
        keys = []
        for entry in os.listdir(self.directory):
            if not entry.endswith(_SUFFIX):
                continue
            try:
                with open(self.directory / entry, "rb") as f:
                    key = _read_key(f)
            except FileNotFoundError:
                # Deleted since listdir
                continue
            except OSError as e:
                raise StorageError(f"Failed to list keys: {e}") from e
            if key is not None and key.startswith(prefix):
                keys.append(key)
        return sorted(keys)

    async def get(self, key: str) -> Optional[bytes]:
        return await asyncio.to_thread(self._read, key)

    async def put(self, key: str, value: bytes) -> None:
        await asyncio.to_thread(self._write, key, bytes(value))

    async def delete(self, key: str) -> None:
        await asyncio.to_thread(self._remove, key)

    async def keys(self, prefix: str = "") -> list[str]:
        return await asyncio.to_thread(self._list, prefix)
