"""RestExecutor - picks one executor implementation and delegates to it.

The choice is made once, on first use, and never changes for the lifetime of
the dispatcher. ClientConfig.transport can force "httpx" or "requests";
"auto" chooses by interpreter capability: httpx where its minimum Python is
met, requests on older interpreters. Every interpreter this package installs
on meets that minimum, so "auto" resolves to httpx unless a caller passes an
explicit version_info; forcing "requests" is the way to use the other
transport.
"""

from __future__ import annotations

import logging
import sys
import threading
from typing import Any, Sequence, TypeVar

from rest_command.deserializers import Deserializer
from rest_command.executor import RestCommandExecutor
from rest_command.httpx_executor import HttpxCommandExecutor
from rest_command.models import ClientConfig, RestCommand, RestCommandResult
from rest_command.requests_executor import RequestsCommandExecutor
from rest_command.traffic_stats import TrafficStats

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Oldest interpreter supported by current httpx releases
HTTPX_MIN_PYTHON = (3, 8)

EXECUTOR_CLASSES: dict[str, type[RestCommandExecutor]] = {
    HttpxCommandExecutor.name: HttpxCommandExecutor,
    RequestsCommandExecutor.name: RequestsCommandExecutor,
}


def select_executor_class(
    transport: str = "auto",
    version_info: Sequence[int] | None = None,
) -> type[RestCommandExecutor]:
    """Return the executor class for a transport name.

    Args:
        transport: "httpx", "requests" or "auto".
        version_info: Interpreter version used by "auto". Defaults to
            sys.version_info, which always selects httpx on supported
            interpreters; pass an older version to select requests.

    Raises:
        ValueError: If transport is not a known name.
    """
    if transport != "auto":
        try:
            return EXECUTOR_CLASSES[transport]
        except KeyError:
            available = ", ".join(["auto", *EXECUTOR_CLASSES])
            raise ValueError(f"Unknown transport '{transport}'. Available: {available}") from None

    version = tuple(version_info if version_info is not None else sys.version_info)[:2]
    if version >= HTTPX_MIN_PYTHON:
        return HttpxCommandExecutor
    return RequestsCommandExecutor


class RestExecutor:
    """Single entry point for executing RestCommands.

    Usage:
        with RestExecutor(ClientConfig(), traffic_stats) as rest:
            result = rest.execute(command, JsonDeserializer())
    """

    def __init__(
        self,
        config: ClientConfig | None = None,
        traffic_stats: TrafficStats | None = None,
        version_info: Sequence[int] | None = None,
    ) -> None:
        self._config = config or ClientConfig()
        self._traffic_stats = traffic_stats
        self._version_info = version_info
        self._executor: RestCommandExecutor | None = None
        self._lock = threading.Lock()

    @property
    def executor(self) -> RestCommandExecutor:
        """The chosen executor, created on first access."""
        if self._executor is None:
            with self._lock:
                if self._executor is None:
                    executor_class = select_executor_class(
                        self._config.transport, self._version_info
                    )
                    self._executor = executor_class(self._config, self._traffic_stats)
                    logger.info("%s implementation created", executor_class.name)
        return self._executor

    def execute(
        self,
        command: RestCommand,
        deserializer: Deserializer[T],
    ) -> RestCommandResult[T]:
        return self.executor.execute(command, deserializer)

    def close(self) -> None:
        with self._lock:
            if self._executor is not None:
                self._executor.close()
                self._executor = None

    def __enter__(self) -> RestExecutor:
        return self

    def __exit__(self, exc_type: type[BaseException] | None, exc_val: BaseException | None, exc_tb: Any) -> None:
        self.close()
