"""Tests for the transport-independent execution algorithm.

A FakeExecutor stands in for the HTTP transport so the algorithm can be
checked in isolation; the httpx executor is exercised through
httpx.MockTransport. Real network round trips live in
tests/integration/test_executors.py.
"""

import io
import logging
import ssl
from contextlib import contextmanager
from pathlib import Path
from unittest.mock import MagicMock

import httpx
import pytest
from PIL import Image

from rest_command.builder import RestCommandBuilder
from rest_command.deserializers import (
    BytesDeserializer,
    Deserializer,
    ImageDeserializer,
    JsonArrayDeserializer,
    JsonDeserializer,
    StringDeserializer,
)
from rest_command.executor import (
    ChunkStream,
    ExecutionError,
    RestCommandExecutor,
    TransportRequest,
    TransportResponse,
)
from rest_command.httpx_executor import HttpxCommandExecutor
from rest_command.models import TRAFFIC_NOT_MEASURED, UNKNOWN_STATUS, ClientConfig, ExecutionContext
from rest_command.requests_executor import RequestsCommandExecutor
from rest_command.security import PemTrustStore
from rest_command.storage import JsonFileStore
from rest_command.traffic_stats import StaticConnectivity, TrafficStats
from tests.command_fixtures import TrackingStream, make_command, make_stats


class FakeExecutor(RestCommandExecutor):
    """Serves a canned response and records what it was asked to send."""

    name = "fake"

    def __init__(self, status_code=200, reason="OK", body=b"", headers=None, error=None, **kwargs):
        super().__init__(**kwargs)
        self.status_code = status_code
        self.reason = reason
        self.body = body
        self.headers = headers or {}
        self.error = error
        self.requests: list[TransportRequest] = []
        self.ssl_contexts: list[ssl.SSLContext | None] = []
        self.streams: list[TrackingStream] = []
        self.released = 0

    @contextmanager
    def _open(self, request, ssl_context):
        self.requests.append(request)
        self.ssl_contexts.append(ssl_context)
        if self.error is not None:
            raise self.error
        stream = TrackingStream(self.body)
        self.streams.append(stream)
        try:
            yield TransportResponse(self.status_code, self.reason, self.headers, stream)
        finally:
            self.released += 1


class ContextRecorder(Deserializer[ExecutionContext]):
    def realise(self, stream, context=None):
        stream.read()
        return context


class ExplodingDeserializer(Deserializer[None]):
    def __init__(self, error: BaseException) -> None:
        self.error = error

    def realise(self, stream, context=None):
        stream.read(1)
        raise self.error


class TestExecute:
    def test_success_result(self) -> None:
        executor = FakeExecutor(body=b"OK")
        result = executor.execute(make_command(), StringDeserializer.default())
        assert result.payload == "OK"
        assert result.status_code == 200
        assert result.status_message == "OK"
        assert result.is_success
        assert executor.released == 1

    def test_error_status_body_is_deserialized(self) -> None:
        executor = FakeExecutor(status_code=404, reason="Not Found", body=b"missing")
        result = executor.execute(make_command(), StringDeserializer.default())
        assert result.payload == "missing"
        assert result.status_code == 404
        assert not result.is_success
        assert str(result) == "404 : Not Found -> missing"

    def test_context_passed_to_deserializer(self) -> None:
        command = make_command()
        executor = FakeExecutor(status_code=503, reason="Unavailable", headers={"Retry-After": "5"})
        context = executor.execute(command, ContextRecorder()).payload
        assert context.command is command
        assert context.status_code == 503
        assert not context.is_success
        assert context.header("retry-after") == "5"

    def test_request_translated(self) -> None:
        executor = FakeExecutor()
        command = RestCommandBuilder.post("http://x/items").string_body("doc").build()
        executor.execute(command, BytesDeserializer())
        request = executor.requests[0]
        assert request.method == "POST"
        assert request.url == "http://x/items"
        assert request.content == b"doc"

    def test_stream_closed(self) -> None:
        executor = FakeExecutor(body=b"abc")
        executor.execute(make_command(), StringDeserializer.default())
        assert executor.streams[0].was_closed


class TestTrafficAccounting:
    def test_bytes_reported_to_stats(self) -> None:
        stats, _, _ = make_stats()
        executor = FakeExecutor(body=b"x" * 1000, traffic_stats=stats)
        result = executor.execute(make_command(), BytesDeserializer())
        assert result.traffic_bytes == 1000
        assert stats.wifi_total_traffic == 1000

    def test_error_bodies_counted(self) -> None:
        stats, _, _ = make_stats()
        executor = FakeExecutor(status_code=500, body=b"boom", traffic_stats=stats)
        executor.execute(make_command(), StringDeserializer.default())
        assert stats.total_traffic == 4

    def test_disabled_traffic_not_measured(self) -> None:
        stats, _, _ = make_stats()
        executor = FakeExecutor(body=b"abc", traffic_stats=stats)
        command = RestCommandBuilder.get("http://x/").traffic_stats(False).build()
        result = executor.execute(command, BytesDeserializer())
        assert result.traffic_bytes == TRAFFIC_NOT_MEASURED
        assert stats.total_traffic == 0

    def test_without_stats_bytes_still_measured(self) -> None:
        result = FakeExecutor(body=b"abc").execute(make_command(), BytesDeserializer())
        assert result.traffic_bytes == 3

    def test_counters_are_per_execution(self) -> None:
        stats, _, _ = make_stats()
        executor = FakeExecutor(body=b"abcd", traffic_stats=stats)
        deserializer = BytesDeserializer()
        first = executor.execute(make_command(), deserializer)
        second = executor.execute(make_command(), deserializer)
        assert first.traffic_bytes == second.traffic_bytes == 4
        assert stats.total_traffic == 8

    def test_failed_read_not_reported(self) -> None:
        stats, _, _ = make_stats()
        executor = FakeExecutor(body=b"abcd", traffic_stats=stats)
        with pytest.raises(ExecutionError):
            executor.execute(make_command(), ExplodingDeserializer(ConnectionResetError("reset")))
        assert stats.total_traffic == 0

    def test_store_failure_keeps_result(self, caplog: pytest.LogCaptureFixture) -> None:
        store = MagicMock()
        store.put.side_effect = OSError("Not a directory")
        stats = TrafficStats(store, StaticConnectivity(), skip_interval=1)
        executor = FakeExecutor(body=b"abcd", traffic_stats=stats)
        with caplog.at_level(logging.ERROR, logger="rest_command.executor"):
            result = executor.execute(make_command(), BytesDeserializer())
        assert result.payload == b"abcd"
        assert result.status_code == 200
        assert result.traffic_bytes == 4
        assert stats.wifi_total_traffic == 4
        assert "Error recording 4 bytes" in caplog.text

    def test_unwritable_store_path_keeps_result(self, tmp_path: Path) -> None:
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        store = JsonFileStore(blocker / "traffic.json", "stats.TrafficStats")
        stats = TrafficStats(store, StaticConnectivity(), skip_interval=1)
        result = FakeExecutor(body=b"abc", traffic_stats=stats).execute(
            make_command(), StringDeserializer.default()
        )
        assert result.payload == "abc"
        assert result.traffic_bytes == 3


class TestErrors:
    def test_connection_error_wrapped(self) -> None:
        cause = ConnectionRefusedError("refused")
        executor = FakeExecutor(error=cause)
        with pytest.raises(ExecutionError) as exc_info:
            executor.execute(make_command(), StringDeserializer.default())
        assert exc_info.value.status_code == UNKNOWN_STATUS
        assert exc_info.value.__cause__ is cause

    def test_read_error_carries_status(self) -> None:
        executor = FakeExecutor(status_code=200, body=b"abc")
        with pytest.raises(ExecutionError) as exc_info:
            executor.execute(make_command(), ExplodingDeserializer(OSError("broken pipe")))
        assert exc_info.value.status_code == 200
        assert executor.released == 1

    def test_decoding_error_wrapped(self) -> None:
        executor = FakeExecutor(status_code=200, body=b"\xff\xfe")
        with pytest.raises(ExecutionError) as exc_info:
            executor.execute(make_command(), StringDeserializer.default())
        assert exc_info.value.status_code == 200

    def test_body_encoding_error_wrapped(self) -> None:
        command = RestCommandBuilder.post("http://x/").with_charset("ascii").string_body("é").build()
        executor = FakeExecutor()
        with pytest.raises(ExecutionError):
            executor.execute(command, StringDeserializer.default())
        assert executor.requests == []

    def test_programming_errors_propagate(self) -> None:
        executor = FakeExecutor(body=b"abc")
        with pytest.raises(ZeroDivisionError):
            executor.execute(make_command(), ExplodingDeserializer(ZeroDivisionError()))
        assert executor.released == 1

    def test_image_bomb_wrapped(self, monkeypatch: pytest.MonkeyPatch) -> None:
        buffer = io.BytesIO()
        Image.new("RGB", (8, 8)).save(buffer, format="PNG")
        monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 10)
        executor = FakeExecutor(body=buffer.getvalue(), headers={"Content-Type": "image/png"})
        with pytest.raises(ExecutionError) as exc_info:
            executor.execute(make_command(), ImageDeserializer())
        assert exc_info.value.status_code == 200
        assert executor.released == 1

    def test_deeply_nested_json_is_none(self) -> None:
        executor = FakeExecutor(body=b"[" * 200000)
        result = executor.execute(make_command(), JsonArrayDeserializer())
        assert result.payload is None
        assert result.status_code == 200


class TestSslContextSelection:
    PEM = "-----BEGIN CERTIFICATE-----\nnot really\n-----END CERTIFICATE-----\n"

    def test_http_target_ignores_trust_store(self) -> None:
        executor = FakeExecutor()
        command = RestCommandBuilder.get("http://x/").secure(PemTrustStore(self.PEM)).build()
        executor.execute(command, BytesDeserializer())
        assert executor.ssl_contexts == [None]

    def test_https_without_provider(self) -> None:
        executor = FakeExecutor()
        executor.execute(make_command("https://x/"), BytesDeserializer())
        assert executor.ssl_contexts == [None]

    def test_unloadable_trust_store_falls_back(self) -> None:
        executor = FakeExecutor()
        command = RestCommandBuilder.get("https://x/").secure(PemTrustStore(self.PEM)).build()
        executor.execute(command, BytesDeserializer())
        assert executor.ssl_contexts == [None]

    def test_valid_trust_store_builds_context(self) -> None:
        import certifi

        from rest_command.security import CaBundleTrustStore

        executor = FakeExecutor()
        command = RestCommandBuilder.get("https://x/").secure(CaBundleTrustStore(certifi.where())).build()
        executor.execute(command, BytesDeserializer())
        assert isinstance(executor.ssl_contexts[0], ssl.SSLContext)


class TestChunkStream:
    def test_reassembles_chunks(self) -> None:
        stream = ChunkStream(iter([b"ab", b"", b"cde", b"f"]))
        assert stream.read() == b"abcdef"
        assert stream.read() == b""

    def test_short_read_stops_at_chunk_boundary(self) -> None:
        stream = ChunkStream([b"ab", b"cd"])
        assert stream.read(4) == b"ab"
        assert stream.read(1) == b"c"
        assert stream.read(4) == b"d"

    def test_buffered_reader(self) -> None:
        stream = io.BufferedReader(ChunkStream([b"line1\nli", b"ne2\n"]))
        assert stream.readlines() == [b"line1\n", b"line2\n"]


class TestHttpxWithMockTransport:
    def _executor(self, handler, **kwargs) -> HttpxCommandExecutor:
        executor = HttpxCommandExecutor(ClientConfig(), **kwargs)
        executor._client.close()
        executor._client = httpx.Client(transport=httpx.MockTransport(handler))
        return executor

    def test_get_with_query(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"ok": True})

        with self._executor(handler) as executor:
            result = executor.execute(make_command("http://api/items", q="a b"), JsonDeserializer())
        assert result.payload == {"ok": True}
        assert result.status_message == "OK"
        assert str(seen[0].url) == "http://api/items?q=a+b"

    def test_post_body_and_headers(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(201, text="created")

        command = RestCommandBuilder.post("http://api/items").json_body({"a": 1}).build()
        with self._executor(handler) as executor:
            result = executor.execute(command, StringDeserializer.default())
        assert result.status_code == 201
        assert seen[0].content == b'{"a": 1}'
        assert seen[0].headers["content-type"] == "application/json"

    def test_transport_error_wrapped(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with self._executor(handler) as executor:
            with pytest.raises(ExecutionError) as exc_info:
                executor.execute(make_command("http://api/items"), StringDeserializer.default())
        assert exc_info.value.status_code == UNKNOWN_STATUS
        assert isinstance(exc_info.value.__cause__, httpx.ConnectError)

    def test_traffic_counted(self) -> None:
        stats, _, _ = make_stats()

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=b"z" * 20000)

        with self._executor(handler, traffic_stats=stats) as executor:
            result = executor.execute(make_command("http://api/blob"), BytesDeserializer())
        assert result.traffic_bytes == 20000
        assert stats.wifi_total_traffic == 20000

    def test_client_kwargs_from_config(self) -> None:
        executor = HttpxCommandExecutor(ClientConfig(connect_timeout=3, read_timeout=7))
        try:
            kwargs = executor._build_client_kwargs()
            assert kwargs["timeout"].connect == 3
            assert kwargs["timeout"].read == 7
            assert kwargs["follow_redirects"] is True
            assert "verify" not in kwargs
            context = ssl.create_default_context()
            assert executor._build_client_kwargs(context)["verify"] is context
        finally:
            executor.close()


class TestRequestsExecutor:
    def test_timeout_tuple(self) -> None:
        with RequestsCommandExecutor(ClientConfig(connect_timeout=2, read_timeout=9)) as executor:
            assert executor.timeout == (2, 9)
            assert executor.name == "requests"
