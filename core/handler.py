"""
core/handler.py -- Route dispatcher for every studio request.

StudioHandler.handle() is the single entry point a framework binding calls.
It decides, per request, between the SPA shell and static assets, the data
API, and a 401.

Two deployment modes:
  Standalone  (base_path == "")            the studio owns the whole origin.
      /api/users   -> API /api/users
      /users       -> SPA shell
  Self-hosted (base_path == "/api/studio")  mounted inside a host app.
      /api/studio/users  Accept: application/json -> API /api/users
      /api/studio/users  Accept: text/html        -> SPA shell

Order of checks (first match wins):
  1. static files (/assets/*, /vite.svg, /favicon.svg, /logo.png) and /
  2. SPA routes that must always render (/login, /access-denied)
  3. /api/*  -> API; self-hosted protected paths need a studio session
  4. self-hosted + wants JSON -> API at "/api" + path, same protection
  5. everything else -> SPA shell

"Wants JSON" is true when Accept mentions application/json, is exactly */*,
or does not mention text/html. A plain fetch() sends */*, a browser
navigation sends text/html, so */* routes to the API.

handle() never raises. Any exception becomes a 500 JSON body carrying the
exception message, logged with its traceback.

Layer rule: core/ is the kernel. handler.py is the one core module allowed to
import auth/ (session checks). No imports from api/, web/, or events/; the API
router arrives through the ApiRouter protocol.
"""

from __future__ import annotations

import logging

from auth.session import serialize_cookie, verify_request_session
from core.models import (
    ApiRequest,
    ApiResult,
    ApiRouter,
    StudioConfig,
    UniversalRequest,
    UniversalResponse,
    json_response,
)
from core.static import StaticSite

logger = logging.getLogger("studio.handler")

STATIC_PATHS = frozenset({"/vite.svg", "/favicon.svg", "/logo.png"})
SPA_ROUTES = frozenset({"/login", "/access-denied"})
PUBLIC_API_PREFIXES = (
    "/api/auth/sign-in",
    "/api/auth/session",
    "/api/auth/logout",
    "/api/auth/verify",
    "/api/auth/oauth",
    "/api/health",
)


def is_protected_api_path(path: str) -> bool:
    return not path.startswith(PUBLIC_API_PREFIXES)


def wants_json(accept: str) -> bool:
    return "application/json" in accept or accept == "*/*" or "text/html" not in accept


def strip_base_path(path: str, base_path: str) -> str:
    """Remove base_path when it is a leading prefix on a segment boundary."""
    if base_path and (path == base_path or path.startswith(base_path + "/")):
        path = path[len(base_path) :]
    return path or "/"


class StudioHandler:
    def __init__(self, config: StudioConfig, api: ApiRouter, static: StaticSite, secret: str) -> None:
        self.config = config
        self.api = api
        self.static = static
        self._secret = secret

    async def handle(self, request: UniversalRequest) -> UniversalResponse:
        try:
            return await self._dispatch(request)
        except Exception as e:
            logger.exception("Studio handler error on %s %s", request.method, request.url)
            return json_response(500, {"error": {"code": "internal_error", "message": str(e) or type(e).__name__}})

    async def _dispatch(self, request: UniversalRequest) -> UniversalResponse:
        self_hosted = self.config.is_self_hosted
        path = strip_base_path(request.path, self.config.base_path)

        if path == "/" or path.startswith("/assets/") or path in STATIC_PATHS:
            return await self.static.serve(path)
        if path in SPA_ROUTES:
            return await self.static.index()

        if path.startswith("/api/"):
            return await self._api(request, path, protect=self_hosted)

        if self_hosted:
            if wants_json(request.header("accept")):
                return await self._api(request, "/api" + path, protect=True)
            return await self.static.index()

        return await self.static.index()

    async def _api(self, request: UniversalRequest, api_path: str, protect: bool) -> UniversalResponse:
        if protect and is_protected_api_path(api_path):
            check = verify_request_session(request, self._secret)
            if not check.valid:
                return json_response(401, {"error": {"code": "unauthorized", "message": check.error}})
        result = await self.api.route(ApiRequest(path=api_path, request=request))
        return self._to_response(result)

    @staticmethod
    def _to_response(result: ApiResult) -> UniversalResponse:
        headers = {"Cache-Control": "no-store"}
        if result.cookies:
            headers["Set-Cookie"] = ", ".join(
                serialize_cookie(cookie.name, cookie.value, cookie.options) for cookie in result.cookies
            )
        return json_response(result.status, result.data, headers)
