"""
memory/storage.py — Durable key/value slots

The session collection lives in one string blob under one well-known key,
the way a browser client keeps it in local storage. Backends:

    JsonFileStorage   one JSON object file {key: blob}, replaced atomically
    MemoryStorage     dict-backed, for tests and --ephemeral runs

Reads never raise: a missing, unreadable or corrupt file reads as empty.
Writes raise StorageError; callers decide whether that is fatal.
"""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Optional, Protocol

from recochat.exceptions import StorageError
from recochat.observability.logger import get_logger

log = get_logger(__name__)


class KeyValueStorage(Protocol):
    def get_item(self, key: str) -> Optional[str]: ...

    def set_item(self, key: str, value: str) -> None: ...

    def remove_item(self, key: str) -> None: ...


class MemoryStorage:
    def __init__(self, initial: Optional[dict[str, str]] = None):
        self._data: dict[str, str] = dict(initial or {})

    def get_item(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove_item(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileStorage:
    """Key/value blobs in a single JSON file."""

    def __init__(self, path: str | Path):
        self.path = Path(path).expanduser()

    def get_item(self, key: str) -> Optional[str]:
        value = self._read().get(key)
        return value if isinstance(value, str) else None

    def set_item(self, key: str, value: str) -> None:
        data = self._read()
        data[key] = value
        self._write(data)

    def remove_item(self, key: str) -> None:
        data = self._read()
        if data.pop(key, None) is not None:
            self._write(data)

    # ── Internals ─────────────────────────────────────────────────────────────

    def _read(self) -> dict:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except (OSError, UnicodeDecodeError) as e:
            log.warning("storage.read_failed", path=str(self.path), error=str(e))
            return {}
        try:
            data = json.loads(raw)
        except (json.JSONDecodeError, ValueError) as e:
            log.warning("storage.corrupt_file", path=str(self.path), error=str(e))
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: dict) -> None:
        tmp_name = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent
            )
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, ensure_ascii=False)
            os.replace(tmp_name, self.path)
        except (OSError, TypeError, ValueError) as e:
            if tmp_name and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise StorageError(f"Failed to write {self.path}: {e}") from e
