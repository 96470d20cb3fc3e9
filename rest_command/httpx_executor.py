"""RestCommandExecutor backed by httpx."""

from __future__ import annotations

import ssl
from contextlib import contextmanager
from typing import Any, Iterator

import httpx

from rest_command.executor import ChunkStream, RestCommandExecutor, TransportRequest, TransportResponse
from rest_command.models import ClientConfig
from rest_command.traffic_stats import TrafficStats


class HttpxCommandExecutor(RestCommandExecutor):
    """Executes commands with a shared httpx.Client.

    A command carrying its own trust store gets a short-lived client built
    with that SSL context, closed as soon as the call completes.
    """

    name = "httpx"
    transport_errors = (httpx.HTTPError, httpx.InvalidURL, httpx.StreamError)

    def __init__(
        self,
        config: ClientConfig | None = None,
        traffic_stats: TrafficStats | None = None,
    ) -> None:
        super().__init__(config, traffic_stats)
        self._client = httpx.Client(**self._build_client_kwargs())

    def _build_client_kwargs(self, ssl_context: ssl.SSLContext | None = None) -> dict[str, Any]:
        """Build kwargs for httpx.Client from the ClientConfig."""
        kwargs: dict[str, Any] = {
            "timeout": httpx.Timeout(
                self.config.read_timeout,
                connect=self.config.connect_timeout,
            ),
            "follow_redirects": True,
        }
        if ssl_context is not None:
            kwargs["verify"] = ssl_context
        return kwargs

    def close(self) -> None:
        self._client.close()

    @contextmanager
    def _open(
        self,
        request: TransportRequest,
        ssl_context: ssl.SSLContext | None,
    ) -> Iterator[TransportResponse]:
        client = self._client
        temporary: httpx.Client | None = None
        if ssl_context is not None:
            temporary = client = httpx.Client(**self._build_client_kwargs(ssl_context))
        try:
            with client.stream(
                request.method,
                request.url,
                headers=request.headers or None,
                content=request.content,
            ) as response:
                yield TransportResponse(
                    status_code=response.status_code,
                    reason_phrase=response.reason_phrase,
                    headers=dict(response.headers),
                    stream=ChunkStream(response.iter_bytes()),
                )
        finally:
            if temporary is not None:
                temporary.close()
