"""
Key-value backing stores for the fundamentals cache.

The cache only needs get/set/delete/keys, so the same cache logic runs over
a process-local dict or a JSON document on disk.
"""

import json
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

import structlog

from folio_lens.data.exceptions import CacheError

logger = structlog.get_logger(__name__)


class KeyValueStore(ABC):
    """Minimal string-keyed store of JSON-compatible values."""

    @abstractmethod
    def get(self, key: str) -> Any | None:
        """Value stored under key, or None if absent."""
        pass

    @abstractmethod
    def set(self, key: str, value: Any) -> None:
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove key. Deleting a missing key is a no-op."""
        pass

    @abstractmethod
    def keys(self) -> list[str]:
        pass

    def clear(self) -> None:
        for key in self.keys():
            self.delete(key)


class InMemoryStore(KeyValueStore):
    """Dict-backed store. Lives as long as the process."""

    def __init__(self):
        self._data: dict[str, Any] = {}

    def get(self, key: str) -> Any | None:
        return self._data.get(key)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._data)

    def clear(self) -> None:
        self._data.clear()


class JsonFileStore(KeyValueStore):
    """
    One JSON object on disk, loaded once and rewritten on every mutation.

    Writes go to a temp file in the same directory followed by os.replace,
    so a crash mid-write leaves the previous document intact. A missing or
    corrupt file loads as an empty store.
    """

    def __init__(self, path: Path | str):
        self.path = Path(path)
        self._data: dict[str, Any] = self._load()

    def _load(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("cache_store_unreadable", path=str(self.path), error=str(e))
            return {}
        if not isinstance(data, dict):
            logger.warning("cache_store_not_an_object", path=str(self.path))
            return {}
        return data

    def _flush(self) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(self._data, f, indent=2, default=str)
                os.replace(tmp_path, self.path)
            except BaseException:
                Path(tmp_path).unlink(missing_ok=True)
                raise
        except (OSError, TypeError, ValueError) as e:
            raise CacheError(f"Failed to write cache store {self.path}: {e}") from e

    def get(self, key: str) -> Any | None:
        return self._data.get(key)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value
        self._flush()

    def delete(self, key: str) -> None:
        if key in self._data:
            del self._data[key]
            self._flush()

    def keys(self) -> list[str]:
        return list(self._data)

    def clear(self) -> None:
        self._data = {}
        self._flush()
