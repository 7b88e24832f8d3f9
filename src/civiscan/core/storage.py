"""
Local Key-Value Storage

The persisted settings and credential material live in a flat key-value
namespace, the way a browser's local storage would hold them.

Backends:
- MemoryStorage: process-local dict (tests, ephemeral sessions)
- FileStorage: one JSON document on disk, owner read/write only
"""

import json
import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Union

logger = logging.getLogger(__name__)


class KeyValueStorage(ABC):
    """Abstract key-value store. Reads and writes are atomic per key."""

    @abstractmethod
    def get(self, key: str) -> Optional[Any]:
        """Return the stored value or None"""

    @abstractmethod
    def set(self, key: str, value: Any) -> None:
        """Store a JSON-serializable value"""

    @abstractmethod
    def remove(self, key: str) -> None:
        """Remove a key; missing keys are ignored"""

    @abstractmethod
    def keys(self) -> Iterable[str]:
        """All stored keys"""

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None


class MemoryStorage(KeyValueStorage):
    """In-memory storage"""

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._data: Dict[str, Any] = dict(initial or {})

    def get(self, key: str) -> Optional[Any]:
        return self._data.get(key)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> Iterable[str]:
        return list(self._data.keys())


class FileStorage(KeyValueStorage):
    """
    JSON-file backed storage.

    The whole document is rewritten on every mutation. The file holds
    credential material, so it is created with 0600 permissions.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path).expanduser()
        self._data: Dict[str, Any] = self._load()

    def _load(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}

        try:
            data = json.loads(self.path.read_text())
        except json.JSONDecodeError as e:
            logger.error(f"Corrupt storage file {self.path}: {e}")
            return {}

        if not isinstance(data, dict):
            logger.error(f"Storage file {self.path} is not a JSON object, ignoring")
            return {}
        return data

    def _flush(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(self._data, indent=2))
        os.chmod(self.path, 0o600)  # Only owner can read

    def get(self, key: str) -> Optional[Any]:
        return self._data.get(key)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value
        self._flush()

    def remove(self, key: str) -> None:
        if key in self._data:
            del self._data[key]
            self._flush()

    def keys(self) -> Iterable[str]:
        return list(self._data.keys())

    def __str__(self):
        return f"FileStorage @ {self.path}"


def create_storage(storage_type: str = "memory", path: Optional[str] = None) -> KeyValueStorage:
    """Build a storage backend from configuration values"""
    if storage_type == "file":
        if not path:
            raise ValueError("File storage requires a path")
        return FileStorage(path)
    if storage_type == "memory":
        return MemoryStorage()
    raise ValueError(f"Unknown storage type: {storage_type}")
