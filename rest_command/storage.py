"""Durable key-value stores for persisted traffic totals.

TrafficStats only needs integer get/put under a fixed namespace. Two stores
are provided: InMemoryStore (tests, ephemeral processes) and JsonFileStore,
which keeps every namespace in one JSON file and rewrites it atomically.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from pathlib import Path
from typing import Mapping, Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class KeyValueStore(Protocol):
    """Integer-valued settings store."""

    def get(self, key: str) -> int | None:
        """Stored value for key, or None if the key was never written."""
        ...

    def put(self, values: Mapping[str, int]) -> None:
        """Write all values in one commit."""
        ...


class InMemoryStore:
    """KeyValueStore kept in a dict. Counts commits for inspection."""

    def __init__(self, initial: Mapping[str, int] | None = None) -> None:
        self._values: dict[str, int] = dict(initial or {})
        self._lock = threading.Lock()
        self.commits = 0

    def get(self, key: str) -> int | None:
        with self._lock:
            return self._values.get(key)

    def put(self, values: Mapping[str, int]) -> None:
        with self._lock:
            self._values.update(values)
            self.commits += 1


class JsonFileStore:
    """KeyValueStore backed by a JSON file shared between namespaces.

    File layout::

        {"stats.TrafficStats": {"wifi_total_traffic": 1024, ...}}
    """

    def __init__(self, path: str | os.PathLike, namespace: str) -> None:
        self._path = Path(path)
        self._namespace = namespace
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def _read_all(self) -> dict[str, dict[str, int]]:
        if not self._path.exists():
            return {}
        try:
            with open(self._path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            logger.warning("Ignoring unreadable store %s: %s", self._path, e)
            return {}
        if not isinstance(data, dict):
            logger.warning("Ignoring store %s: top level is not an object", self._path)
            return {}
        return data

    def get(self, key: str) -> int | None:
        with self._lock:
            section = self._read_all().get(self._namespace, {})
        value = section.get(key) if isinstance(section, dict) else None
        return int(value) if value is not None else None

    def put(self, values: Mapping[str, int]) -> None:
        with self._lock:
            data = self._read_all()
            section = data.get(self._namespace)
            if not isinstance(section, dict):
                section = {}
            section.update({k: int(v) for k, v in values.items()})
            data[self._namespace] = section

            self._path.parent.mkdir(parents=True, exist_ok=True)
            temp_path = self._path.with_name(self._path.name + ".tmp")
            with open(temp_path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, sort_keys=True)
            os.replace(temp_path, self._path)
