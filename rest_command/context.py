"""RestContext - the explicitly owned state of a rest-command process.

Create one RestContext at process start and pass it to the code that executes
commands. It owns the TrafficStats accumulator and the RestExecutor
dispatcher, each created at most once, on first use, under one lock.

Usage:
    context = RestContext.from_config_file(Path("rest.yaml"))
    try:
        command = RestCommandBuilder.get("https://example.com/items").build()
        result = context.execute(command, JsonArrayDeserializer())
        print(context.traffic_stats.total_traffic)
    finally:
        context.close()
"""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Any, TypeVar

from rest_command.config_loader import load_runtime_config
from rest_command.deserializers import Deserializer
from rest_command.dispatcher import RestExecutor
from rest_command.models import RestCommand, RestCommandResult, RuntimeConfig
from rest_command.storage import InMemoryStore, JsonFileStore, KeyValueStore
from rest_command.traffic_stats import ConnectivityClassifier, StaticConnectivity, TrafficStats

T = TypeVar("T")


class RestContext:
    """Owns the process-wide TrafficStats and RestExecutor."""

    def __init__(
        self,
        config: RuntimeConfig | None = None,
        store: KeyValueStore | None = None,
        connectivity: ConnectivityClassifier | None = None,
    ) -> None:
        """Initialize the context.

        Args:
            config: Runtime configuration; defaults apply when None.
            store: Store for traffic totals. Defaults to a JsonFileStore at
                   config.traffic.store_path, or an InMemoryStore if unset.
            connectivity: Connection classifier. Defaults to a StaticConnectivity
                          reporting config.traffic.connection_class.
        """
        self._config = config or RuntimeConfig()
        self._store = store
        self._connectivity = connectivity
        self._traffic_stats: TrafficStats | None = None
        self._rest_executor: RestExecutor | None = None
        self._lock = threading.RLock()

    @classmethod
    def from_config_file(cls, config_path: Path, **kwargs: Any) -> RestContext:
        return cls(load_runtime_config(config_path), **kwargs)

    @property
    def config(self) -> RuntimeConfig:
        return self._config

    def _build_store(self) -> KeyValueStore:
        traffic_config = self._config.traffic
        if traffic_config.store_path:
            return JsonFileStore(traffic_config.store_path, traffic_config.namespace)
        return InMemoryStore()

    @property
    def traffic_stats(self) -> TrafficStats:
        """The TrafficStats accumulator, restored from the store on first access."""
        with self._lock:
            if self._traffic_stats is None:
                traffic_config = self._config.traffic
                store = self._store if self._store is not None else self._build_store()
                connectivity = self._connectivity
                if connectivity is None:
                    connectivity = StaticConnectivity(traffic_config.connection_class)
                stats = TrafficStats(store, connectivity, traffic_config.skip_interval)
                stats.restore_stats()
                self._traffic_stats = stats
            return self._traffic_stats

    @property
    def rest_executor(self) -> RestExecutor:
        """The dispatcher, created on first access."""
        with self._lock:
            if self._rest_executor is None:
                self._rest_executor = RestExecutor(self._config.client, self.traffic_stats)
            return self._rest_executor

    def execute(
        self,
        command: RestCommand,
        deserializer: Deserializer[T],
    ) -> RestCommandResult[T]:
        return self.rest_executor.execute(command, deserializer)

    def close(self) -> None:
        """Close the transport and persist the traffic totals."""
        with self._lock:
            if self._rest_executor is not None:
                self._rest_executor.close()
                self._rest_executor = None
            if self._traffic_stats is not None:
                self._traffic_stats.save_stats(True)

    def __enter__(self) -> RestContext:
        return self

    def __exit__(self, exc_type: type[BaseException] | None, exc_val: BaseException | None, exc_tb: Any) -> None:
        self.close()
