"""Persistence for the saved-palette history.

The history lives under a single key of a key-value store, serialized as a
JSON list of palette records. The store is passed in, so the app can use a
file on disk while tests use memory.
"""
from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Iterable, Protocol

from palette import PaletteRecord, history_from_json, history_to_json

logger = logging.getLogger(__name__)

HISTORY_KEY = "worshipServiceStylesHistory"


class KeyValueStore(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...


class MemoryStore:
    def __init__(self, initial: dict[str, str] | None = None):
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value


class JsonFileStore:
    """Key-value store kept as one JSON object in a file.

    Writes go to a temporary file in the same directory which then replaces
    the target, so a crash mid-write leaves the previous contents intact.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def _read_all(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        with open(self.path, encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"{self.path} does not hold a JSON object")
        return data

    def get(self, key: str) -> str | None:
        value = self._read_all().get(key)
        return None if value is None else str(value)

    def set(self, key: str, value: str) -> None:
        try:
            data = self._read_all()
        except (OSError, ValueError) as e:
            logger.warning("Overwriting unreadable store %s: %s", self.path, e)
            data = {}
        data[key] = value

        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(prefix=f".{self.path.name}.", dir=self.path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, ensure_ascii=False)
            os.replace(tmp, self.path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise


class HistoryStore:
    """Loads the history on startup and saves it after every mutation.

    Failures on either side are logged and absorbed: a broken store must not
    take the editor down with it.
    """

    def __init__(self, store: KeyValueStore, key: str = HISTORY_KEY):
        self.store = store
        self.key = key

    def load(self) -> tuple[PaletteRecord, ...]:
        try:
            raw = self.store.get(self.key)
            if not raw:
                return ()
            history = history_from_json(raw)
        except (OSError, ValueError) as e:
            logger.error("Failed to load palette history: %s", e)
            return ()
        logger.info("Loaded %d saved palettes", len(history))
        return history

    def save(self, history: Iterable[PaletteRecord]) -> bool:
        try:
            self.store.set(self.key, history_to_json(history))
        except (OSError, TypeError, ValueError) as e:
            logger.error("Failed to save palette history: %s", e)
            return False
        return True
