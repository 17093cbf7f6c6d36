"""
Key/value persistence for user settings such as the price category filters.

The market board service only needs ``get``/``set``/``delete`` on
JSON-serialisable values; the embedding application decides where they
live.  :class:`InMemorySettingsStore` keeps them for the lifetime of the
process and :class:`JsonFileSettingsStore` writes them to a small JSON
file so they survive restarts.  Both are synchronous because settings
are read once at start-up and written on explicit user action.
"""

from __future__ import annotations

import json
import logging
import os
from typing import Any, Dict, Optional, Protocol

logger = logging.getLogger(__name__)


class SettingsStore(Protocol):
    def get(self, key: str, default: Optional[Any] = None) -> Any: ...

    def set(self, key: str, value: Any) -> None: ...

    def delete(self, key: str) -> None: ...


class InMemorySettingsStore:
    def __init__(self, initial: Optional[Dict[str, Any]] = None) -> None:
        self._values: Dict[str, Any] = dict(initial or {})

    def get(self, key: str, default: Optional[Any] = None) -> Any:
        return self._values.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._values[key] = value

    def delete(self, key: str) -> None:
        self._values.pop(key, None)


class JsonFileSettingsStore:
    """Settings persisted to a JSON file.

    Every write rewrites the whole file.  A missing or corrupt file reads
    as empty; write failures are logged and the value stays in memory.
    """

    def __init__(self, path: str = "market_board_settings.json") -> None:
        self.path = os.path.abspath(path)
        self._values: Dict[str, Any] = self._read_file()

    def _read_file(self) -> Dict[str, Any]:
        if not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as exc:
            logger.warning("Failed to read settings file %s: %s", self.path, exc)
            return {}
        return data if isinstance(data, dict) else {}

    def _write_file(self) -> None:
        try:
            with open(self.path, "w", encoding="utf-8") as f:
                json.dump(self._values, f, indent=2)
        except OSError as exc:
            logger.warning("Failed to persist settings to %s: %s", self.path, exc)

    def get(self, key: str, default: Optional[Any] = None) -> Any:
        return self._values.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._values[key] = value
        self._write_file()

    def delete(self, key: str) -> None:
        if self._values.pop(key, None) is not None:
            self._write_file()
