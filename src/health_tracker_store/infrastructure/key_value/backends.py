"""
Key-value persistence backends.

The local store only needs string get/set/remove; these backends provide that
contract in memory (tests, ephemeral sessions) and on disk (one file per key).
"""

import logging
import os
from pathlib import Path
from tempfile import NamedTemporaryFile
from typing import Protocol
from urllib.parse import quote

from health_tracker_store.utils.exceptions import StorageWriteError

logger = logging.getLogger(__name__)


class KeyValueBackend(Protocol):
    """Minimal string key-value storage."""

    def get(self, key: str) -> str | None:
        """Return the stored text, or None if the key is absent."""
        ...

    def set(self, key: str, value: str) -> None:
        """Store text under a key; raises StorageWriteError on failure."""
        ...

    def remove(self, key: str) -> None:
        """Delete a key if present."""
        ...


class MemoryBackend:
    """
    Dictionary-backed storage.

    An optional quota (total bytes of keys and values) mimics a browser
    storage limit: writes that would exceed it are rejected.
    """

    def __init__(self, seed: dict[str, str] | None = None, quota_bytes: int | None = None) -> None:
        self.data: dict[str, str] = dict(seed or {})
        self.quota_bytes = quota_bytes

    def _size_with(self, key: str, value: str) -> int:
        total = len(key.encode("utf-8")) + len(value.encode("utf-8"))
        for existing_key, existing_value in self.data.items():
            if existing_key != key:
                total += len(existing_key.encode("utf-8")) + len(existing_value.encode("utf-8"))
        return total

    def get(self, key: str) -> str | None:
        return self.data.get(key)

    def set(self, key: str, value: str) -> None:
        if self.quota_bytes is not None and self._size_with(key, value) > self.quota_bytes:
            raise StorageWriteError(f"Storage quota of {self.quota_bytes} bytes exceeded")
        self.data[key] = str(value)

    def remove(self, key: str) -> None:
        self.data.pop(key, None)


class FileBackend:
    """
    Directory-backed storage with one file per key.

    Writes go to a temporary file that replaces the target, so readers in
    other processes never observe a half-written value.
    """

    def __init__(self, data_dir: str | Path) -> None:
        """
        Initialize file backend.

        Args:
            data_dir: Directory holding one ``<key>.json`` file per key.
        """
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        return self.data_dir / f"{quote(key, safe='')}.json"

    def get(self, key: str) -> str | None:
        path = self._path(key)
        if not path.exists():
            return None
        try:
            return path.read_text(encoding="utf-8")
        except OSError as e:
            logger.error(f"Failed to read {path}: {e}")
            return None

    def set(self, key: str, value: str) -> None:
        path = self._path(key)
        temp_path: Path | None = None
        try:
            with NamedTemporaryFile(
                "w", dir=self.data_dir, delete=False, encoding="utf-8", suffix=".tmp"
            ) as tmp:
                temp_path = Path(tmp.name)
                tmp.write(value)
            os.replace(temp_path, path)
        except OSError as e:
            if temp_path is not None:
                temp_path.unlink(missing_ok=True)
            raise StorageWriteError(f"Failed to write {path}: {e}") from e

    def remove(self, key: str) -> None:
        try:
            self._path(key).unlink(missing_ok=True)
        except OSError as e:
            logger.error(f"Failed to remove key {key}: {e}")
