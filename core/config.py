"""
core/config.py -- Operator settings for the standalone studio server.

Settings reads STUDIO_*, EVENTS_*, BASE_PATH and friends from the
environment or .env. get_settings() caches one instance per process.
build_studio_config() maps Settings onto the StudioConfig dataclass
(core/models.py), the form a host application would build in code with its
own provider objects, callbacks and clients.

Security notes:
  A studio_secret shorter than 32 characters is rejected outright: the session
  cookie key is derived from it, and a short secret weakens AES-GCM to the
  strength of the secret.

Layer rule: core/ is the kernel. This module may not import from api/, web/,
auth/, or events/.
"""

import logging
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from core.models import (
    AccessConfig,
    ClientType,
    CookieOptions,
    EventsConfig,
    StudioConfig,
    StudioMetadata,
)

logger = logging.getLogger("studio.config")

_DEFAULT_PUBLIC_DIR = Path(__file__).resolve().parent.parent / "public"


class Settings(BaseSettings):
    """Environment-level studio settings. Every field has a working default."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    log_level: str = "INFO"
    version: str = "0.1.0"
    # Empty string means standalone mode.
    base_path: str = ""
    public_dir: Path = _DEFAULT_PUBLIC_DIR

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    # Studio-specific session key. Empty falls back to auth_secret, then to
    # the built-in default (refused outside DEBUG by api/main.py).
    studio_secret: str = ""
    # Secret of the authentication backend the studio fronts.
    auth_secret: str = ""
    secure_cookies: bool = False
    session_duration_seconds: int = 7 * 24 * 60 * 60
    # "package.module:attribute" of an AuthBackend instance, or of a
    # zero-argument factory returning one. Empty disables sign-in.
    auth_backend: str = ""

    # ------------------------------------------------------------------
    # Access
    # ------------------------------------------------------------------

    # Comma-separated lists, e.g. STUDIO_ROLES=admin,owner
    studio_roles: str = ""
    studio_allow_emails: str = ""

    # ------------------------------------------------------------------
    # Branding
    # ------------------------------------------------------------------

    studio_title: str = "Auth Studio"
    studio_theme: str = "dark"

    # ------------------------------------------------------------------
    # Event ingestion
    # ------------------------------------------------------------------

    events_enabled: bool = False
    events_client_type: Optional[ClientType] = None
    # Database URL for sqlalchemy/postgres/sqlite, target URL for https.
    events_url: str = ""
    events_table_name: str = "auth_events"
    events_batch_size: int = 1
    events_flush_interval_ms: int = 5000
    events_retry_on_error: bool = False
    events_max_queue_size: Optional[int] = 10_000

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_paths_and_secret(self) -> "Settings":
        """Normalize BASE_PATH and reject weak STUDIO_SECRET values.

        BASE_PATH must be absolute ("/api/studio"); a trailing slash is
        stripped so prefix matching in core/handler.py stays exact.
        """
        if self.base_path:
            if not self.base_path.startswith("/"):
                raise ValueError("BASE_PATH must start with '/'.")
            self.base_path = self.base_path.rstrip("/")
        if self.studio_secret and len(self.studio_secret) < 32:
            raise ValueError("STUDIO_SECRET must be at least 32 characters.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Settings for this process. asgi.py and main.py read the same instance."""
    return Settings()


def _split_csv(value: str) -> Optional[list[str]]:
    items = [part.strip() for part in value.split(",") if part.strip()]
    return items or None


def build_studio_config(settings: Settings, events_client=None) -> StudioConfig:
    """Translate environment settings into a StudioConfig.

    events_client is the already-connected client for the configured
    events_client_type. It is built by the caller (asgi.py) because opening
    database connections is not a configuration concern.
    """
    events = EventsConfig(
        enabled=settings.events_enabled and events_client is not None,
        client=events_client,
        client_type=settings.events_client_type if events_client is not None else None,
        table_name=settings.events_table_name,
        batch_size=settings.events_batch_size,
        flush_interval_ms=settings.events_flush_interval_ms,
        retry_on_error=settings.events_retry_on_error,
        max_queue_size=settings.events_max_queue_size,
    )
    if settings.events_enabled and events_client is None:
        logger.warning("EVENTS_ENABLED is set but no events client could be built -- ingestion disabled")

    return StudioConfig(
        base_path=settings.base_path,
        public_dir=settings.public_dir,
        access=AccessConfig(
            roles=_split_csv(settings.studio_roles),
            allow_emails=_split_csv(settings.studio_allow_emails),
            session_duration_ms=settings.session_duration_seconds * 1000,
            secret=settings.studio_secret or None,
        ),
        metadata=StudioMetadata(title=settings.studio_title, theme=settings.studio_theme),
        events=events,
        cookie=CookieOptions(
            secure=settings.secure_cookies,
            max_age=settings.session_duration_seconds,
            path=settings.base_path or "/",
        ),
        version=settings.version,
    )
