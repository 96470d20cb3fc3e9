"""Executor - runs a RestCommand over HTTP and deserializes the response.

RestCommandExecutor implements the transport-independent algorithm once:

1. Wrap the deserializer in a TrafficCounterDecorator if the command has
   traffic stats enabled.
2. Translate the command into a TransportRequest (prepare_request).
3. Build an SSL context from the command's trust store for https targets.
4. Open the call through the transport hook (_open) and classify the status.
5. Deserialize the body stream.
6. Build the RestCommandResult and report counted bytes to TrafficStats.
7. Release the transport resources whatever happens (_open is a context
   manager).

Subclasses (httpx_executor, requests_executor) only provide _open.
"""

from __future__ import annotations

import io
import logging
import ssl
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, BinaryIO, ContextManager, Iterable, TypeVar
from urllib.parse import quote_plus

from rest_command.deserializers import DeserializationError, Deserializer
from rest_command.models import (
    TRAFFIC_NOT_MEASURED,
    UNKNOWN_STATUS,
    ClientConfig,
    ExecutionContext,
    RestCommand,
    RestCommandResult,
)
from rest_command.security import build_ssl_context
from rest_command.traffic import TrafficCounterDecorator
from rest_command.traffic_stats import TrafficStats

logger = logging.getLogger(__name__)

T = TypeVar("T")

FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"

# Errors raised while preparing, sending or reading that every executor wraps
_WRAPPED_ERRORS: tuple[type[BaseException], ...] = (
    OSError,
    DeserializationError,
    LookupError,
    UnicodeError,
)


class ExecutorError(Exception):
    """Base class for executor errors."""


class ExecutionError(ExecutorError):
    """Raised when a command cannot be executed (connection, I/O, decoding).

    status_code is the HTTP status if the response had already arrived,
    UNKNOWN_STATUS otherwise. The original exception is the __cause__.
    """

    def __init__(self, message: str, status_code: int = UNKNOWN_STATUS) -> None:
        super().__init__(message)
        self.status_code = status_code


# =============================================================================
# Request translation
# =============================================================================


def _sanitize_header_value(value: str) -> str:
    """Replace non-ASCII characters with '?' (header values must be ASCII)."""
    return value.encode("ascii", errors="replace").decode("ascii")


def encode_params(params: dict[str, str], charset: str) -> str:
    """Form-encode params as ``key=value`` pairs joined by ``&``.

    A param that cannot be encoded with charset is logged and skipped; the
    rest of the request goes ahead.
    """
    pairs: list[str] = []
    for name, value in params.items():
        try:
            pair = f"{quote_plus(name, encoding=charset)}={quote_plus(value, encoding=charset)}"
        except (LookupError, UnicodeEncodeError) as e:
            logger.warning("Param %r skipped, cannot encode with %s: %s", name, charset, e)
            continue
        pairs.append(pair)
        logger.debug("HTTP param %s added with value %s", name, value)
    return "&".join(pairs)


def build_query_string(command: RestCommand) -> str:
    """URL of the command, with params appended when the method uses a query string."""
    if not (command.method.supports_query_string and command.has_params):
        return command.url
    query = encode_params(command.params, command.charset)
    if not query:
        return command.url
    if command.url.endswith(("?", "&")):
        separator = ""
    elif "?" in command.url:
        separator = "&"
    else:
        separator = "?"
    return f"{command.url}{separator}{query}"


@dataclass(frozen=True)
class TransportRequest:
    """A RestCommand flattened into what an HTTP client sends."""

    method: str
    url: str
    headers: dict[str, str] = field(default_factory=dict)
    content: bytes | None = None


def _has_header(headers: dict[str, str], name: str) -> bool:
    lower = name.lower()
    return any(key.lower() == lower for key in headers)


def prepare_request(command: RestCommand) -> TransportRequest:
    """Translate a RestCommand into a TransportRequest.

    Body precedence for PUT/POST: form-encoded params, then the string body,
    then the binary body.

    Raises:
        LookupError: If the string body charset is unknown.
        UnicodeEncodeError: If the string body cannot be encoded in charset.
    """
    headers: dict[str, str] = {}
    for name, value in command.headers.items():
        headers[name] = _sanitize_header_value(value)
        logger.debug("HTTP header %s added with value %s", name, value)

    content: bytes | None = None
    if command.method.allows_body:
        if command.has_params:
            if command.has_string_body or command.has_binary_body:
                logger.warning(
                    "%s %s has both params and a body; only the params are sent",
                    command.method.value,
                    command.url,
                )
            content = encode_params(command.params, command.charset).encode("ascii")
            if not _has_header(headers, "Content-Type"):
                headers["Content-Type"] = f"{FORM_CONTENT_TYPE}; charset={command.charset}"
            logger.debug("Form entity added to the request")
        elif command.has_string_body:
            content = command.string_body.encode(command.charset)
            logger.debug("String entity added to the request")
        elif command.has_binary_body:
            content = command.binary_body
            logger.debug("Binary entity added to the request")

    return TransportRequest(
        method=command.method.value,
        url=build_query_string(command),
        headers=headers,
        content=content,
    )


# =============================================================================
# Response plumbing
# =============================================================================


class ChunkStream(io.RawIOBase):
    """Read-only file-like view over an iterator of byte chunks."""

    def __init__(self, chunks: Iterable[bytes]) -> None:
        super().__init__()
        self._chunks = iter(chunks)
        self._pending = b""

    def readable(self) -> bool:
        return True

    def readinto(self, buffer: bytearray | memoryview) -> int:  # type: ignore[override]
        while not self._pending:
            chunk = next(self._chunks, None)
            if chunk is None:
                return 0
            self._pending = chunk
        size = min(len(buffer), len(self._pending))
        buffer[:size] = self._pending[:size]
        self._pending = self._pending[size:]
        return size


@dataclass
class TransportResponse:
    """What a transport hands back once the status line and headers arrived."""

    status_code: int
    reason_phrase: str
    headers: dict[str, str]
    stream: BinaryIO


# =============================================================================
# Executor base
# =============================================================================


class RestCommandExecutor(ABC):
    """Executes RestCommands through one HTTP transport.

    Usage:
        with HttpxCommandExecutor(ClientConfig()) as executor:
            result = executor.execute(command, StringDeserializer.default())
    """

    # Short transport name used in logs and by the dispatcher
    name = "abstract"

    # Transport-specific exception types wrapped into ExecutionError
    transport_errors: tuple[type[BaseException], ...] = ()

    def __init__(
        self,
        config: ClientConfig | None = None,
        traffic_stats: TrafficStats | None = None,
    ) -> None:
        self._config = config or ClientConfig()
        self._traffic_stats = traffic_stats

    @property
    def config(self) -> ClientConfig:
        return self._config

    @property
    def traffic_stats(self) -> TrafficStats | None:
        return self._traffic_stats

    def __enter__(self) -> RestCommandExecutor:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        self.close()

    def close(self) -> None:
        """Release long-lived transport resources."""

    @abstractmethod
    def _open(
        self,
        request: TransportRequest,
        ssl_context: ssl.SSLContext | None,
    ) -> ContextManager[TransportResponse]:
        """Send request and yield the response; close everything on exit.

        ssl_context, when given, replaces the default server verification.
        """

    def _ssl_context_for(self, command: RestCommand) -> ssl.SSLContext | None:
        if command.is_secure and command.trust_store_provider is not None:
            return build_ssl_context(command.trust_store_provider)
        return None

    def execute(
        self,
        command: RestCommand,
        deserializer: Deserializer[T],
    ) -> RestCommandResult[T]:
        """Execute command and deserialize the response body.

        Non-2xx responses are not errors: the error body is deserialized and
        the status is reported in the result.

        Raises:
            ExecutionError: On any transport, I/O, encoding or decoding failure.
        """
        counter: TrafficCounterDecorator[T] | None = None
        if command.traffic_stats_enabled:
            counter = TrafficCounterDecorator(deserializer)
            deserializer = counter

        wrapped_errors = _WRAPPED_ERRORS + self.transport_errors
        status_code = UNKNOWN_STATUS
        try:
            request = prepare_request(command)
            ssl_context = self._ssl_context_for(command)
            with self._open(request, ssl_context) as response:
                status_code = response.status_code
                context = ExecutionContext(
                    command=command,
                    status_code=response.status_code,
                    reason_phrase=response.reason_phrase,
                    headers=response.headers,
                )
                if not context.is_success:
                    logger.debug(
                        "%s %s returned %d, reading error body",
                        request.method,
                        request.url,
                        status_code,
                    )
                payload = deserializer.realise(response.stream, context)
                status_message = response.reason_phrase

            traffic_bytes = TRAFFIC_NOT_MEASURED
            if counter is not None:
                traffic_bytes = counter.data_count
                logger.debug("Traffic stats enabled and data read: %d", traffic_bytes)
        except wrapped_errors as e:
            logger.error(
                "Error executing %s %s with %s: %s",
                command.method.value,
                command.url,
                self.name,
                e,
            )
            raise ExecutionError(
                f"Error executing {command.method.value} {command.url}: {e}",
                status_code,
            ) from e

        result = RestCommandResult(
            payload=payload,
            status_code=status_code,
            status_message=status_message,
            traffic_bytes=traffic_bytes,
        )
        if counter is not None and self._traffic_stats is not None:
            self._report_traffic(traffic_bytes)
        return result

    def _report_traffic(self, traffic_bytes: int) -> None:
        """Hand counted bytes to TrafficStats. A failing store never fails the call."""
        try:
            self._traffic_stats.add_traffic(traffic_bytes)
        except Exception:
            logger.exception("Error recording %d bytes of traffic", traffic_bytes)
