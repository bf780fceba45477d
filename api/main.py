"""
api/main.py -- FastAPI application factory for the Auth Studio server.

create_app() assembles the framework-neutral pieces (StudioHandler,
StudioApi, StaticSite, EventPipeline) and stores them on app.state. It
registers no studio routes itself: the catch-all binding lives in
web/routes.py and is mounted by asgi.py, so api/ and web/ stay independent.

Run with:  uvicorn asgi:app --reload

Middleware stack:
  1. log_requests -- one access log line per request with latency

Lifespan handles startup (event pipeline initialize) and shutdown (drain
queued events, release the provider) symmetrically.

Security:
  Refuses to build an app that would sign sessions with the built-in default
  secret unless DEBUG=true. Anyone who knows the default could mint a studio
  session otherwise.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from api.models import ErrorDetail, ErrorResponse
from api.router import AuthBackend, StudioApi
from auth.session import DEFAULT_SESSION_SECRET, resolve_session_secret
from core.config import Settings, build_studio_config, get_settings
from core.errors import ConfigurationError
from core.handler import StudioHandler
from core.models import StudioConfig
from core.static import StaticSite
from events.pipeline import EventPipeline

logger = logging.getLogger("studio.api")

# ---------------------------------------------------------------------------
# Lifespan -- modern startup / shutdown pattern (replaces @app.on_event)
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Start event ingestion with the server and drain it on the way out.

    initialize() never raises for a missing or broken provider; the studio
    starts either way and /api/health reports events as "degraded".
    """
    pipeline: EventPipeline = app.state.pipeline
    config: StudioConfig = app.state.studio_config
    logger.info(
        "Auth Studio starting (mode=%s, public_dir=%s)",
        "self-hosted" if config.is_self_hosted else "standalone",
        config.public_dir,
    )
    await pipeline.initialize()
    if config.events.enabled and not pipeline.initialized:
        logger.warning("Event ingestion enabled but not running -- check the events client configuration")

    yield

    await pipeline.shutdown()
    logger.info("Auth Studio shutdown complete")


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------


def create_app(
    settings: Optional[Settings] = None,
    studio_config: Optional[StudioConfig] = None,
    backend: Optional[AuthBackend] = None,
    events_client: Any = None,
) -> FastAPI:
    """Build the studio FastAPI app.

    studio_config wins over settings when both are given; settings then only
    supply logging, DEBUG and the backend auth secret. events_client is the
    connected client for EVENTS_CLIENT_TYPE when the config is built from
    settings.
    """
    settings = settings or get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    config = studio_config or build_studio_config(settings, events_client)
    secret = resolve_session_secret(config.access, settings.auth_secret)
    if secret == DEFAULT_SESSION_SECRET and not settings.debug:
        raise ConfigurationError(
            "No session secret configured. Set STUDIO_SECRET (32+ characters) or AUTH_SECRET, "
            "or run with DEBUG=true for local development."
        )

    pipeline = EventPipeline(config.events)
    api = StudioApi(config, backend, pipeline, secret)
    handler = StudioHandler(config, api, StaticSite(config), secret)

    app = FastAPI(
        title="Auth Studio",
        description="Admin dashboard server for an authentication backend.",
        version=config.version,
        lifespan=lifespan,
        # The studio serves its own SPA; no generated docs on the same origin.
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.settings = settings
    app.state.studio_config = config
    app.state.pipeline = pipeline
    app.state.handler = handler

    # -----------------------------------------------------------------------
    # Request logging middleware
    #
    # Every request passes through this coroutine before reaching the
    # catch-all route. Wall-clock time around call_next gives the latency.
    # -----------------------------------------------------------------------

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        ms = (time.perf_counter() - start) * 1000
        logger.info(
            "%s %s %d %.1fms %s",
            request.method,
            request.url.path,
            response.status_code,
            ms,
            request.client.host if request.client else "unknown",
        )
        return response

    # -----------------------------------------------------------------------
    # Exception handlers
    #
    # StudioHandler.handle() already turns its own failures into 500 JSON.
    # This catches anything raised in the binding itself (e.g. reading the
    # request body) with the same envelope.
    # -----------------------------------------------------------------------

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content=ErrorResponse(
                error=ErrorDetail(
                    code="internal_error",
                    message="An unexpected error occurred.",
                )
            ).model_dump(exclude_none=True),
        )

    return app
