"""Byte counting for response bodies.

TrafficCounterDecorator wraps any Deserializer and hands it a CountingStream
instead of the transport's body stream. The decoded payload is exactly what
the wrapped deserializer produces; the decorator only observes how many bytes
were actually consumed.
"""

from __future__ import annotations

import io
from typing import BinaryIO, Callable, TypeVar

from rest_command.deserializers import Deserializer
from rest_command.models import ExecutionContext

T = TypeVar("T")


class CountingStream(io.RawIOBase):
    """Read-only stream that reports every byte it returns to on_read.

    All reads (read, read1, readall, readline, iteration) funnel through
    readinto, so each byte is counted exactly once.
    """

    def __init__(self, raw: BinaryIO, on_read: Callable[[int], None]) -> None:
        super().__init__()
        self._raw = raw
        self._on_read = on_read

    def readable(self) -> bool:
        return True

    def readinto(self, buffer: bytearray | memoryview) -> int | None:  # type: ignore[override]
        data = self._raw.read(len(buffer))
        if data is None:
            return None
        size = len(data)
        buffer[:size] = data
        if size:
            self._on_read(size)
        return size

    def close(self) -> None:
        if not self.closed:
            try:
                self._raw.close()
            finally:
                super().close()


class TrafficCounterDecorator(Deserializer[T]):
    """Deserializer that counts the bytes its decoratee reads."""

    def __init__(self, decoratee: Deserializer[T]) -> None:
        self._decoratee = decoratee
        self._data_count = 0

    @property
    def decoratee(self) -> Deserializer[T]:
        return self._decoratee

    @property
    def data_count(self) -> int:
        """Bytes read since creation or the last reset()."""
        return self._data_count

    def reset(self) -> None:
        self._data_count = 0

    def _add(self, size: int) -> None:
        self._data_count += size

    def realise(self, stream: BinaryIO, context: ExecutionContext | None = None) -> T:
        return self._decoratee.realise(CountingStream(stream, self._add), context)
