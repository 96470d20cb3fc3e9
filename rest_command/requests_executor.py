"""RestCommandExecutor backed by requests."""

from __future__ import annotations

import ssl
from contextlib import contextmanager
from typing import Any, Iterator

import requests
from requests.adapters import HTTPAdapter

from rest_command.executor import ChunkStream, RestCommandExecutor, TransportRequest, TransportResponse
from rest_command.models import ClientConfig
from rest_command.traffic_stats import TrafficStats

# Size of the chunks pulled from the response body
CHUNK_SIZE = 8 * 1024


class SSLContextAdapter(HTTPAdapter):
    """HTTPAdapter whose connection pools use a caller-supplied SSL context."""

    def __init__(self, ssl_context: ssl.SSLContext, **kwargs: Any) -> None:
        self._ssl_context = ssl_context
        super().__init__(**kwargs)

    def init_poolmanager(self, *args: Any, **kwargs: Any) -> None:
        kwargs["ssl_context"] = self._ssl_context
        super().init_poolmanager(*args, **kwargs)


class RequestsCommandExecutor(RestCommandExecutor):
    """Executes commands with a shared requests.Session.

    A command carrying its own trust store runs on a short-lived session with
    an SSLContextAdapter mounted for https.
    """

    name = "requests"
    transport_errors = (requests.RequestException,)

    def __init__(
        self,
        config: ClientConfig | None = None,
        traffic_stats: TrafficStats | None = None,
    ) -> None:
        super().__init__(config, traffic_stats)
        self._session = requests.Session()

    @property
    def timeout(self) -> tuple[float, float]:
        """(connect, read) timeout tuple in requests' format."""
        return (self.config.connect_timeout, self.config.read_timeout)

    def close(self) -> None:
        self._session.close()

    @contextmanager
    def _open(
        self,
        request: TransportRequest,
        ssl_context: ssl.SSLContext | None,
    ) -> Iterator[TransportResponse]:
        session = self._session
        temporary: requests.Session | None = None
        if ssl_context is not None:
            temporary = session = requests.Session()
            session.mount("https://", SSLContextAdapter(ssl_context))
        try:
            response = session.request(
                request.method,
                request.url,
                headers=request.headers or None,
                data=request.content,
                timeout=self.timeout,
                allow_redirects=True,
                stream=True,
            )
            try:
                yield TransportResponse(
                    status_code=response.status_code,
                    reason_phrase=response.reason or "",
                    headers=dict(response.headers),
                    stream=ChunkStream(response.iter_content(CHUNK_SIZE)),
                )
            finally:
                response.close()
        finally:
            if temporary is not None:
                temporary.close()
