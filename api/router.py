"""
api/router.py -- Studio data API: sign-in, session, health, events, config.

Framework-neutral: StudioApi.route() takes an ApiRequest (built by
core/handler.py from a UniversalRequest) and returns an ApiResult. The
dispatcher turns the result into a JSON UniversalResponse and serializes any
cookies into Set-Cookie.

Routes:
  GET  /api/health          -- liveness + events component status (public)
  POST /api/auth/sign-in    -- email/password via the auth backend; sets the studio cookie
  GET  /api/auth/session    -- the current studio session, or 401
  POST /api/auth/logout     -- clears the studio cookie
  GET  /api/events          -- paginated auth events from the provider
  GET  /api/config          -- the frontend config object

Auth policy: which paths need a session is decided by the dispatcher, before
route() is called. The auth routes here are on its public allow-list and do
their own checks.

Lifecycle events: sign-in and logout emit user.logged_in / login.failed /
user.logged_out through the pipeline. Emitting never fails a request; the
pipeline logs and swallows provider errors.

Security:
  - Bad credentials and a user outside the access policy get different
    status codes (401 / 403) but neither reveals whether the email exists.
  - Cache-Control: no-store is set by the dispatcher on every API response.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any, Awaitable, Callable, Mapping, Optional, Protocol

from pydantic import ValidationError

from api.models import (
    EventsQuery,
    HealthComponents,
    HealthResponse,
    SignInRequest,
    SignInResponse,
    StudioUser,
    error_body,
)
from auth.access import is_access_allowed
from auth.session import (
    STUDIO_COOKIE_NAME,
    create_studio_session,
    decrypt_session,
    encrypt_session,
    is_session_valid,
    parse_cookie_header,
    verify_request_session,
)
from core.errors import ProviderError
from core.html import prepare_frontend_config
from core.models import ApiCookie, ApiRequest, ApiResult, CookieOptions, StudioConfig, UniversalRequest
from events.models import AuthEventType, EventQueryOptions
from events.pipeline import EventPipeline
from events.providers.rows import decode_cursor

logger = logging.getLogger("studio.api")


class AuthBackend(Protocol):
    """The one capability the studio needs from the authentication backend.

    sign_in_email returns the user record (a mapping with at least "id" and
    "email"; "name", "role" and "image" are used when present) or None when
    the credentials are wrong.
    """

    async def sign_in_email(self, email: str, password: str) -> Optional[Mapping[str, Any]]: ...


Handler = Callable[[ApiRequest], Awaitable[ApiResult]]


def _error(status: int, code: str, message: str, detail: Optional[str] = None) -> ApiResult:
    return ApiResult(status=status, data=error_body(code, message, detail))


def _client_ip(request: UniversalRequest) -> Optional[str]:
    forwarded = request.header("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip() or None
    return request.header("x-real-ip") or None


class StudioApi:
    def __init__(
        self,
        config: StudioConfig,
        backend: Optional[AuthBackend],
        pipeline: EventPipeline,
        secret: str,
    ) -> None:
        self.config = config
        self.backend = backend
        self.pipeline = pipeline
        self._secret = secret
        self._routes: dict[tuple[str, str], Handler] = {
            ("GET", "/api/health"): self._health,
            ("POST", "/api/auth/sign-in"): self._sign_in,
            ("GET", "/api/auth/session"): self._session,
            ("POST", "/api/auth/logout"): self._logout,
            ("GET", "/api/events"): self._events,
            ("GET", "/api/config"): self._frontend_config,
        }
        self._paths = {path for _, path in self._routes}

    async def route(self, request: ApiRequest) -> ApiResult:
        path = request.path.rstrip("/") or "/"
        handler = self._routes.get((request.method, path))
        if handler is not None:
            return await handler(request)
        if path in self._paths:
            return _error(405, "method_not_allowed", f"{request.method} is not allowed on {path}.")
        return _error(404, "not_found", f"No API route for {path}.")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _session_cookie_options(self, max_age: Optional[int] = None) -> CookieOptions:
        if max_age is None:
            max_age = self.config.cookie.max_age or self.config.access.session_duration_ms // 1000
        return replace(self.config.cookie, max_age=max_age)

    async def _emit(self, event_type: AuthEventType, request: UniversalRequest, **fields: Any) -> None:
        await self.pipeline.emit(
            event_type,
            ip_address=_client_ip(request),
            user_agent=request.header("user-agent") or None,
            source="api",
            **fields,
        )

    # ------------------------------------------------------------------
    # Routes
    # ------------------------------------------------------------------

    async def _health(self, request: ApiRequest) -> ApiResult:
        if not self.config.events.enabled:
            events = "disabled"
        elif self.pipeline.initialized and await self.pipeline.health_check():
            events = "ok"
        else:
            events = "degraded"
        body = HealthResponse(version=self.config.version, components=HealthComponents(events=events))
        return ApiResult(status=200, data=body.model_dump())

    async def _sign_in(self, request: ApiRequest) -> ApiResult:
        if self.backend is None:
            return _error(503, "auth_unavailable", "No authentication backend is configured.")
        try:
            body = SignInRequest.model_validate(request.request.body or {})
        except ValidationError as e:
            return _error(422, "validation_error", "Request validation failed.", str(e.errors()))

        user = await self.backend.sign_in_email(body.email, body.password)
        if not user:
            logger.info("Studio sign-in rejected: bad credentials")
            await self._emit(
                AuthEventType.login_failed, request.request, status="failed", metadata={"email": body.email}
            )
            return _error(401, "invalid_credentials", "Invalid email or password.")

        if not is_access_allowed(user, self.config.access):
            logger.info("Studio sign-in rejected: user %s not allowed by access policy", user.get("id"))
            await self._emit(
                AuthEventType.login_failed,
                request.request,
                status="failed",
                user_id=str(user.get("id")),
                metadata={"email": body.email, "reason": "access_denied"},
            )
            return _error(403, "forbidden", "You do not have access to the studio.")

        session = create_studio_session(user, self.config.access.session_duration_ms)
        token = encrypt_session(session, self._secret)
        await self._emit(
            AuthEventType.user_logged_in,
            request.request,
            user_id=session.user_id,
            metadata={"name": session.name, "email": session.email},
        )
        body_out = SignInResponse(
            user=StudioUser(
                id=session.user_id,
                email=session.email,
                name=session.name,
                role=session.role,
                image=session.image,
            )
        )
        return ApiResult(
            status=200,
            data=body_out.model_dump(),
            cookies=[ApiCookie(STUDIO_COOKIE_NAME, token, self._session_cookie_options())],
        )

    async def _session(self, request: ApiRequest) -> ApiResult:
        check = verify_request_session(request.request, self._secret)
        if not check.valid or check.session is None:
            return _error(401, "unauthorized", check.error or "Authentication required.")
        return ApiResult(status=200, data={"session": check.session.to_dict()})

    async def _logout(self, request: ApiRequest) -> ApiResult:
        token = parse_cookie_header(request.request.header("cookie")).get(STUDIO_COOKIE_NAME)
        session = decrypt_session(token, self._secret) if token else None
        if is_session_valid(session):
            await self._emit(
                AuthEventType.user_logged_out,
                request.request,
                user_id=session.user_id,
                metadata={"name": session.name, "email": session.email},
            )
        return ApiResult(
            status=200,
            data={"success": True},
            cookies=[ApiCookie(STUDIO_COOKIE_NAME, "", self._session_cookie_options(max_age=0))],
        )

    async def _events(self, request: ApiRequest) -> ApiResult:
        if not self.pipeline.initialized:
            return _error(503, "events_disabled", "Event ingestion is not enabled.")
        if not self.pipeline.supports_query:
            return _error(501, "not_implemented", "The configured events provider does not support queries.")
        try:
            params = EventsQuery.model_validate(request.request.query)
        except ValidationError as e:
            return _error(422, "validation_error", "Request validation failed.", str(e.errors()))
        if params.after:
            try:
                decode_cursor(params.after)
            except ProviderError as e:
                return _error(400, "invalid_cursor", "Invalid pagination cursor.", str(e))

        options = EventQueryOptions(
            limit=params.limit,
            after=params.after,
            sort=params.sort,
            type=params.type,
            user_id=params.user_id,
            since=params.since,
        )
        try:
            result = await self.pipeline.query(options)
        except ProviderError as e:
            logger.error("Events query failed: %s", e)
            return _error(502, "provider_error", "The events provider could not be queried.")
        return ApiResult(status=200, data=result.to_dict())

    async def _frontend_config(self, request: ApiRequest) -> ApiResult:
        return ApiResult(status=200, data=prepare_frontend_config(self.config))
