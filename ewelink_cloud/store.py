"""Key-value stores used to persist session and device snapshots."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Protocol

_LOGGER = logging.getLogger(__name__)


class SnapshotStore(Protocol):
    """Storage for serialized snapshots, keyed by name."""

    def load(self, key: str) -> str | None: ...

    def save(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


class MemoryStore:
    """Store that keeps snapshots in process memory."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}
        self.writes = 0

    def load(self, key: str) -> str | None:
        return self._data.get(key)

    def save(self, key: str, value: str) -> None:
        self._data[key] = value
        self.writes += 1

    def delete(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileStore:
    """Store that writes one ``<key>.json`` file per snapshot in a directory."""

    def __init__(self, directory: str | Path) -> None:
        self._directory = Path(directory)

    def _path(self, key: str) -> Path:
        return self._directory / f"{key}.json"

    def load(self, key: str) -> str | None:
        path = self._path(key)
        if not path.exists():
            return None
        content = path.read_text(encoding="utf-8")
        return content or None

    def save(self, key: str, value: str) -> None:
        self._directory.mkdir(parents=True, exist_ok=True)
        self._path(key).write_text(value, encoding="utf-8")
        _LOGGER.debug("Wrote snapshot %s", key)

    def delete(self, key: str) -> None:
        path = self._path(key)
        if path.exists():
            path.unlink()
            _LOGGER.debug("Removed snapshot %s", key)
