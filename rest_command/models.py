"""Internal data models for rest-command.

All models use Pydantic v2. RestCommand is the immutable description of one
HTTP call; RestCommandResult is what an executor hands back.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Generic, Literal, Self, TypeVar
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, Field, model_validator

from rest_command.security import TrustStoreProvider

T = TypeVar("T")

DEFAULT_CHARSET = "UTF-8"

# Sentinel for "status code not yet known" (failure before the response arrived)
UNKNOWN_STATUS = -1

# Sentinel for "traffic not measured"
TRAFFIC_NOT_MEASURED = -1


# =============================================================================
# Core HTTP Models
# =============================================================================


class HttpMethod(str, Enum):
    """Supported HTTP methods and what each one allows in the request."""

    GET = "GET"
    PUT = "PUT"
    POST = "POST"
    DELETE = "DELETE"

    @property
    def allows_body(self) -> bool:
        """True if the method carries a document in the request body."""
        return self in (HttpMethod.PUT, HttpMethod.POST)

    @property
    def supports_query_string(self) -> bool:
        """True if params travel in the URL query string."""
        return self in (HttpMethod.GET, HttpMethod.DELETE)


class RestCommand(BaseModel):
    """One HTTP call, described before execution.

    Built through RestCommandBuilder, which enforces the body invariants at
    the moment of mutation. The validator below repeats the checks so a
    RestCommand constructed directly cannot bypass them.
    """

    model_config = ConfigDict(extra="forbid", frozen=True, arbitrary_types_allowed=True)

    method: HttpMethod = Field(description="HTTP method")
    url: str = Field(min_length=1, description="Endpoint URL without the query string for params")
    params: dict[str, str] = Field(default_factory=dict, description="Request parameters")
    headers: dict[str, str] = Field(default_factory=dict, description="Request headers")
    string_body: str | None = Field(default=None, description="Text document for PUT/POST")
    binary_body: bytes | None = Field(
        default=None, description="Binary document for PUT/POST (mutually exclusive with string_body)"
    )
    charset: str = Field(default=DEFAULT_CHARSET, description="Encoding for params and string body")
    traffic_stats_enabled: bool = Field(default=True, description="Count bytes read from the response")
    trust_store_provider: TrustStoreProvider | None = Field(
        default=None, exclude=True, description="Trust material for https endpoints"
    )

    @model_validator(mode="after")
    def check_body(self) -> Self:
        if self.string_body is not None and self.binary_body is not None:
            raise ValueError("string_body and binary_body are mutually exclusive")
        if not self.method.allows_body and (
            self.string_body is not None or self.binary_body is not None
        ):
            raise ValueError(f"HTTP method {self.method.value} doesn't support a request body")
        return self

    @property
    def has_params(self) -> bool:
        return bool(self.params)

    @property
    def params_count(self) -> int:
        return len(self.params)

    @property
    def has_headers(self) -> bool:
        return bool(self.headers)

    @property
    def headers_count(self) -> int:
        return len(self.headers)

    @property
    def has_string_body(self) -> bool:
        return self.string_body is not None

    @property
    def has_binary_body(self) -> bool:
        return self.binary_body is not None

    @property
    def is_secure(self) -> bool:
        """True when the endpoint uses TLS."""
        return urlsplit(self.url).scheme.lower() == "https"


def is_success_status(status_code: int) -> bool:
    """Success range is [200, 300)."""
    return 200 <= status_code < 300


class RestCommandResult(BaseModel, Generic[T]):
    """Outcome of one executed RestCommand.

    traffic_bytes is TRAFFIC_NOT_MEASURED (-1) when the command had traffic
    stats disabled.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    payload: T | None = Field(default=None, description="Deserialized response body")
    status_code: int = Field(description="HTTP status code")
    status_message: str = Field(default="", description="HTTP reason phrase")
    traffic_bytes: int = Field(
        default=TRAFFIC_NOT_MEASURED, description="Bytes read from the response body, -1 if not measured"
    )

    @property
    def is_success(self) -> bool:
        return is_success_status(self.status_code)

    @property
    def traffic_measured(self) -> bool:
        return self.traffic_bytes != TRAFFIC_NOT_MEASURED

    def __str__(self) -> str:
        return f"{self.status_code} : {self.status_message} -> {self.payload}"


@dataclass(frozen=True)
class ExecutionContext:
    """What a Deserializer knows about the call whose body it is reading."""

    command: RestCommand
    status_code: int
    reason_phrase: str = ""
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def is_success(self) -> bool:
        return is_success_status(self.status_code)

    def header(self, name: str, default: str | None = None) -> str | None:
        """Case-insensitive response header lookup."""
        lower = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lower:
                return value
        return default


# =============================================================================
# Traffic Models
# =============================================================================


class ConnectionClass(str, Enum):
    """Network the process is currently using, as seen by a connectivity classifier."""

    WIFI = "wifi"
    MOBILE = "mobile"
    NONE = "none"


class TrafficSnapshot(BaseModel):
    """Point-in-time copy of the TrafficStats counters."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    wifi_total: int = Field(description="Bytes on Wi-Fi since last reset")
    wifi_session: int = Field(description="Bytes on Wi-Fi in the current session")
    mobile_total: int = Field(description="Bytes on mobile data since last reset")
    mobile_session: int = Field(description="Bytes on mobile data in the current session")
    last_reset_time: float = Field(description="Epoch seconds of the last reset")
    last_session_time: float = Field(description="Epoch seconds of the current session start")

    @property
    def total(self) -> int:
        return self.wifi_total + self.mobile_total


# =============================================================================
# Runtime Configuration Models
# =============================================================================


class ClientConfig(BaseModel):
    """Transport configuration shared by every executor."""

    model_config = ConfigDict(extra="forbid")

    connect_timeout: float = Field(default=30.0, gt=0, description="Connect timeout in seconds")
    read_timeout: float = Field(default=40.0, gt=0, description="Read timeout in seconds")
    transport: Literal["auto", "httpx", "requests"] = Field(
        default="auto", description="Executor implementation; auto picks by platform capability"
    )


class TrafficConfig(BaseModel):
    """Traffic accounting configuration."""

    model_config = ConfigDict(extra="forbid")

    store_path: str | None = Field(
        default=None, description="JSON file holding persisted totals (in-memory if unset)"
    )
    namespace: str = Field(default="stats.TrafficStats", description="Key namespace in the store")
    skip_interval: int = Field(default=50, ge=1, description="Persist every N non-forced saves")
    connection_class: ConnectionClass = Field(
        default=ConnectionClass.WIFI,
        description="Connection class reported by the default static classifier",
    )


class RuntimeConfig(BaseModel):
    """Top-level runtime configuration file structure."""

    model_config = ConfigDict(extra="forbid")

    client: ClientConfig = Field(default_factory=ClientConfig, description="Transport settings")
    traffic: TrafficConfig = Field(default_factory=TrafficConfig, description="Traffic accounting settings")
