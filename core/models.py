"""
core/models.py -- Framework-neutral request/response shapes and studio config.

Pattern: Data class. UniversalRequest / UniversalResponse are the boundary
contract with framework bindings (web/routes.py is the FastAPI one). Any
framework that can build a UniversalRequest and send back a UniversalResponse
can host the studio.

The *Config dataclasses are the programmatic configuration surface. They are
validated in __post_init__ so a bad value fails when the config is built,
not on the first request or the first emitted event.

Layer rule: core/ is the kernel. No imports from api/, web/, auth/, or events/.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Mapping, Optional, Protocol, Union, runtime_checkable
from urllib.parse import parse_qs, urlsplit

from core.errors import ConfigurationError

if TYPE_CHECKING:
    from events.models import EventIngestionProvider

# ---------------------------------------------------------------------------
# Universal request / response
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class UniversalRequest:
    """Inbound request as produced by a framework binding.

    url is the path plus query string, exactly as the client sent it.
    headers keep their original casing; use header() for lookups.
    body is None, a parsed JSON value, or raw text/bytes.
    """

    url: str
    method: str = "GET"
    headers: Mapping[str, str] = field(default_factory=dict)
    body: Any = None

    @property
    def path(self) -> str:
        return urlsplit(self.url).path or "/"

    @property
    def query(self) -> dict[str, str]:
        """First value of each query parameter."""
        parsed = parse_qs(urlsplit(self.url).query, keep_blank_values=True)
        return {key: values[0] for key, values in parsed.items()}

    def header(self, name: str, default: str = "") -> str:
        """Case-insensitive header lookup."""
        wanted = name.lower()
        for key, value in self.headers.items():
            if key.lower() == wanted:
                return value
        return default


@dataclass
class UniversalResponse:
    status: int
    headers: dict[str, str] = field(default_factory=dict)
    body: Union[str, bytes] = ""


def json_response(status: int, data: Any, headers: Optional[dict[str, str]] = None) -> UniversalResponse:
    """Serialize data as a JSON UniversalResponse."""
    merged = {"Content-Type": "application/json"}
    if headers:
        merged.update(headers)
    return UniversalResponse(status=status, headers=merged, body=json.dumps(data, default=str))


# ---------------------------------------------------------------------------
# API layer contract
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ApiRequest:
    """A request routed to the data API.

    path is the API path ("/api/..."), already stripped of any base path and
    possibly rewritten from a bare self-hosted path ("/users" -> "/api/users").
    """

    path: str
    request: UniversalRequest

    @property
    def method(self) -> str:
        return self.request.method.upper()


@dataclass
class ApiCookie:
    name: str
    value: str
    options: CookieOptions


@dataclass
class ApiResult:
    status: int
    data: Any = None
    cookies: list[ApiCookie] = field(default_factory=list)


@runtime_checkable
class ApiRouter(Protocol):
    async def route(self, request: ApiRequest) -> ApiResult: ...


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class ClientType(str, Enum):
    """Closed set of storage backends an events client can be bound to."""

    sqlalchemy = "sqlalchemy"
    postgres = "postgres"  # SQLAlchemy Engine on a PostgreSQL URL
    sqlite = "sqlite"
    clickhouse = "clickhouse"
    https = "https"


@dataclass
class CookieOptions:
    """Attributes for the studio session cookie. max_age is in seconds."""

    http_only: bool = True
    secure: bool = False
    same_site: Optional[str] = "Lax"
    max_age: Optional[int] = None
    path: Optional[str] = "/"


@dataclass
class AccessConfig:
    """Who may sign in to the studio, and how long a studio session lasts.

    roles / allow_emails: either one admitting the user is enough. With both
    unset, only users whose role is "admin" get in (auth/access.py).
    secret: session encryption key. Falls back to the auth backend secret,
    then to a hardcoded default (see auth/session.py resolve_session_secret).
    """

    roles: Optional[list[str]] = None
    allow_emails: Optional[list[str]] = None
    session_duration_ms: int = 7 * 24 * 60 * 60 * 1000
    secret: Optional[str] = None

    def __post_init__(self) -> None:
        if self.session_duration_ms <= 0:
            raise ConfigurationError("access.session_duration_ms must be positive.")


@dataclass
class CompanyInfo:
    name: str = ""
    website: str = ""
    support_email: str = ""


@dataclass
class StudioMetadata:
    """Branding shown by the dashboard. Injected into index.html, never trusted as HTML."""

    title: str = "Auth Studio"
    logo: str = ""
    favicon: str = ""
    company: CompanyInfo = field(default_factory=CompanyInfo)
    theme: str = "dark"
    colors: dict[str, str] = field(default_factory=dict)
    custom_styles: str = ""

    def __post_init__(self) -> None:
        if self.theme not in ("dark", "light", "auto"):
            raise ConfigurationError(f"metadata.theme must be dark, light or auto, got {self.theme!r}.")


@dataclass
class LiveMarqueeConfig:
    """Dashboard live event ticker. Purely a frontend setting, passed through as-is."""

    enabled: bool = True
    poll_interval_ms: int = 2000
    speed: float = 0.5
    pause_on_hover: bool = True
    limit: int = 50
    sort: str = "desc"
    colors: Optional[dict[str, str]] = None
    time_window: Optional[dict[str, Any]] = None


def _kind_value(kind: Any) -> str:
    return kind.value if isinstance(kind, Enum) else str(kind)


@dataclass
class EventsConfig:
    """Event ingestion settings for one EventPipeline.

    A provider is resolved from either `provider` (an object implementing the
    ingestion protocol) or the pair (`client`, `client_type`). provider_options
    are handed to the provider factory untouched (e.g. headers / transform /
    timeout for https, database for clickhouse).
    """

    enabled: bool = False
    provider: Optional[EventIngestionProvider] = None
    client: Any = None
    client_type: Optional[ClientType] = None
    table_name: str = "auth_events"
    include: Optional[frozenset[str]] = None
    exclude: Optional[frozenset[str]] = None
    batch_size: int = 1
    flush_interval_ms: int = 5000
    retry_on_error: bool = False
    max_queue_size: Optional[int] = 10_000
    on_event_ingest: Optional[Callable[..., Any]] = None
    provider_options: dict[str, Any] = field(default_factory=dict)
    live_marquee: Optional[LiveMarqueeConfig] = None

    def __post_init__(self) -> None:
        if self.client_type is not None and not isinstance(self.client_type, ClientType):
            try:
                self.client_type = ClientType(self.client_type)
            except ValueError:
                allowed = ", ".join(c.value for c in ClientType)
                raise ConfigurationError(
                    f"Unknown events.client_type {self.client_type!r}. Expected one of: {allowed}."
                ) from None
        if self.client is not None and self.client_type is None and self.provider is None:
            raise ConfigurationError("events.client requires events.client_type.")
        if self.include is not None:
            self.include = frozenset(_kind_value(k) for k in self.include)
        if self.exclude is not None:
            self.exclude = frozenset(_kind_value(k) for k in self.exclude)
        if self.batch_size < 1:
            raise ConfigurationError("events.batch_size must be at least 1.")
        if self.flush_interval_ms <= 0:
            raise ConfigurationError("events.flush_interval_ms must be positive.")
        if self.max_queue_size is not None and self.max_queue_size < 1:
            raise ConfigurationError("events.max_queue_size must be at least 1 (or None for unbounded).")


@dataclass
class StudioConfig:
    """Top-level studio configuration.

    base_path set => self-hosted mode (the studio lives under a prefix inside a
    host application). Empty => standalone mode.
    public_dir is the built dashboard bundle; it is resolved once, here.
    """

    base_path: str = ""
    public_dir: Optional[Path] = None
    access: AccessConfig = field(default_factory=AccessConfig)
    metadata: StudioMetadata = field(default_factory=StudioMetadata)
    events: EventsConfig = field(default_factory=EventsConfig)
    cookie: CookieOptions = field(default_factory=CookieOptions)
    version: str = "0.1.0"

    def __post_init__(self) -> None:
        base_path = (self.base_path or "").rstrip("/")
        if base_path and not base_path.startswith("/"):
            raise ConfigurationError(f"base_path must start with '/', got {self.base_path!r}.")
        self.base_path = base_path
        if self.public_dir is not None:
            self.public_dir = Path(self.public_dir).resolve()

    @property
    def is_self_hosted(self) -> bool:
        return bool(self.base_path)
