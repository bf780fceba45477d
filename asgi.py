"""
asgi.py -- Application assembly for the Auth Studio server.

This is the ONLY file that imports from both api/ and web/. It joins the two
independent layers into a single ASGI app without coupling them to each other.
api/main.py knows nothing about web/; web/routes.py knows nothing about api/.

It is also where connections are opened: the events client for
EVENTS_CLIENT_TYPE and the auth backend named by AUTH_BACKEND. Configuration
(core/config.py) only describes them.

Run with:  uvicorn asgi:app --reload
"""

import importlib
import logging
import sqlite3
from typing import Any, Optional

from sqlalchemy import create_engine

from api.main import create_app
from api.router import AuthBackend
from core.config import Settings, get_settings
from core.errors import ConfigurationError
from core.models import ClientType
from web.routes import router as web_router

logger = logging.getLogger("studio.asgi")


def build_events_client(settings: Settings) -> Optional[Any]:
    """Open the client EVENTS_CLIENT_TYPE needs, from EVENTS_URL.

    clickhouse is not buildable from the environment (the driver is the host
    application's choice); pass a client to create_app() instead.
    """
    if not settings.events_enabled or settings.events_client_type is None:
        return None
    kind = settings.events_client_type
    url = settings.events_url
    if kind is ClientType.clickhouse:
        logger.error("EVENTS_CLIENT_TYPE=clickhouse needs a client passed to create_app(events_client=...)")
        return None
    if not url:
        logger.error("EVENTS_CLIENT_TYPE=%s requires EVENTS_URL", kind.value)
        return None

    if kind in (ClientType.sqlalchemy, ClientType.postgres):
        connect_args: dict = {}
        if url.startswith("sqlite"):
            # Provider calls run in worker threads.
            connect_args["check_same_thread"] = False
        return create_engine(url, connect_args=connect_args)
    if kind is ClientType.sqlite:
        path = url.removeprefix("sqlite:///")
        return sqlite3.connect(path, check_same_thread=False)
    return url


def load_auth_backend(target: str) -> Optional[AuthBackend]:
    """Import "package.module:attribute". A class or function is called with no arguments."""
    if not target:
        return None
    module_name, sep, attr = target.partition(":")
    if not sep or not module_name or not attr:
        raise ConfigurationError(f"AUTH_BACKEND must look like 'package.module:attribute', got {target!r}.")
    obj = getattr(importlib.import_module(module_name), attr)
    if isinstance(obj, type) or (callable(obj) and not hasattr(obj, "sign_in_email")):
        return obj()
    return obj


settings = get_settings()
app = create_app(
    settings,
    backend=load_auth_backend(settings.auth_backend),
    events_client=build_events_client(settings),
)

# Mount the catch-all studio binding here, not in api/main.py.
# This keeps api/ and web/ independent -- neither imports from the other.
app.include_router(web_router, tags=["Studio"])
