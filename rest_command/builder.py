"""Fluent construction of RestCommand objects.

Usage:
    command = (
        RestCommandBuilder.post("https://api.example.com/items")
        .json_body({"name": "widget"})
        .add_header("Authorization", "Bearer abc")
        .build()
    )

Body invariants are checked when the body is set, not at build() time: a body
on GET/DELETE, or a second body of the other kind, raises CommandStateError
immediately.
"""

from __future__ import annotations

import json
from typing import Any, Mapping

from rest_command.models import DEFAULT_CHARSET, HttpMethod, RestCommand
from rest_command.security import TrustStoreProvider
from rest_command.xml_body import dict_to_xml

JSON_MEDIA_TYPE = "application/json"
XML_MEDIA_TYPE = "application/xml"


class CommandStateError(RuntimeError):
    """Raised when a builder operation violates a RestCommand invariant."""


class RestCommandBuilder:
    """Builds one RestCommand. Every mutator returns the builder for chaining."""

    def __init__(self, method: HttpMethod, url: str) -> None:
        if not url:
            raise ValueError("url is required")
        self._method = method
        self._url = url
        self._params: dict[str, str] = {}
        self._headers: dict[str, str] = {}
        self._string_body: str | None = None
        self._binary_body: bytes | None = None
        self._charset = DEFAULT_CHARSET
        self._traffic_stats_enabled = True
        self._trust_store_provider: TrustStoreProvider | None = None

    # -- factories -----------------------------------------------------------

    @classmethod
    def for_method(cls, method: HttpMethod | str, url: str) -> RestCommandBuilder:
        return cls(HttpMethod(method), url)

    @classmethod
    def get(cls, url: str) -> RestCommandBuilder:
        return cls(HttpMethod.GET, url)

    @classmethod
    def post(cls, url: str) -> RestCommandBuilder:
        return cls(HttpMethod.POST, url)

    @classmethod
    def put(cls, url: str) -> RestCommandBuilder:
        return cls(HttpMethod.PUT, url)

    @classmethod
    def delete(cls, url: str) -> RestCommandBuilder:
        return cls(HttpMethod.DELETE, url)

    # -- params and headers --------------------------------------------------

    def add_param(self, name: str, value: str) -> RestCommandBuilder:
        """Add a param. Sent in the query string for GET/DELETE, form-encoded otherwise."""
        self._params[name] = value
        return self

    def add_params(self, params: Mapping[str, str]) -> RestCommandBuilder:
        self._params.update(params)
        return self

    def add_header(self, name: str, value: str) -> RestCommandBuilder:
        self._headers[name] = value
        return self

    def add_headers(self, headers: Mapping[str, str]) -> RestCommandBuilder:
        self._headers.update(headers)
        return self

    def with_charset(self, charset: str) -> RestCommandBuilder:
        """Charset used to encode params and the string body."""
        self._charset = charset
        return self

    # -- body ----------------------------------------------------------------

    def _check_body_allowed(self) -> None:
        if not self._method.allows_body:
            raise CommandStateError(
                f"HTTP method {self._method.value} doesn't support a document in the request"
            )

    def string_body(self, document: str) -> RestCommandBuilder:
        self._check_body_allowed()
        if self._binary_body is not None:
            raise CommandStateError(
                "Cannot set a string body when a binary body is already present"
            )
        self._string_body = document
        return self

    def binary_body(self, document: bytes) -> RestCommandBuilder:
        self._check_body_allowed()
        if self._string_body is not None:
            raise CommandStateError(
                "Cannot set a binary body when a string body is already present"
            )
        self._binary_body = bytes(document)
        return self

    def json(self) -> RestCommandBuilder:
        """Mark the exchange as JSON (Content-Type and Accept headers)."""
        self._headers["Content-Type"] = JSON_MEDIA_TYPE
        self._headers["Accept"] = JSON_MEDIA_TYPE
        return self

    def json_body(self, document: Any) -> RestCommandBuilder:
        """Serialize document as JSON into the string body and mark the exchange as JSON."""
        self.string_body(json.dumps(document))
        return self.json()

    def xml_body(self, document: Mapping[str, Any]) -> RestCommandBuilder:
        """Serialize a single-root mapping as XML into the string body."""
        xml_bytes = dict_to_xml(dict(document))
        self.string_body(xml_bytes.decode("utf-8"))
        self._headers["Content-Type"] = XML_MEDIA_TYPE
        return self

    # -- options -------------------------------------------------------------

    def secure(self, trust_store_provider: TrustStoreProvider) -> RestCommandBuilder:
        """Attach trust material used when the endpoint is https."""
        self._trust_store_provider = trust_store_provider
        return self

    def traffic_stats(self, enabled: bool) -> RestCommandBuilder:
        self._traffic_stats_enabled = enabled
        return self

    def build(self) -> RestCommand:
        return RestCommand(
            method=self._method,
            url=self._url,
            params=dict(self._params),
            headers=dict(self._headers),
            string_body=self._string_body,
            binary_body=self._binary_body,
            charset=self._charset,
            traffic_stats_enabled=self._traffic_stats_enabled,
            trust_store_provider=self._trust_store_provider,
        )
