"""
web/routes.py -- FastAPI binding for the studio handler.

One catch-all route converts the Starlette Request into a UniversalRequest,
hands it to app.state.handler, and converts the UniversalResponse back. All
routing decisions (static vs SPA vs API vs 401) are made by
core/handler.py; nothing here looks at the path.

Body handling: a JSON content type is parsed into Python values (invalid
JSON becomes None, and the API answers 422). Any other body is passed as text.

Set-Cookie: the handler joins cookies into one header value. Each one is
re-emitted as its own Set-Cookie header here, since a comma can legally
appear inside an Expires attribute but browsers do not split on it.
"""

import json
import logging

from fastapi import APIRouter, Request
from fastapi.responses import Response

from core.models import UniversalRequest, UniversalResponse

logger = logging.getLogger("studio.web")

router = APIRouter()

_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]


async def to_universal_request(request: Request) -> UniversalRequest:
    url = request.url.path
    if request.url.query:
        url += "?" + request.url.query

    body = None
    raw = await request.body()
    if raw:
        if "application/json" in request.headers.get("content-type", ""):
            try:
                body = json.loads(raw)
            except ValueError:
                logger.debug("Malformed JSON body on %s %s", request.method, request.url.path)
                body = None
        else:
            body = raw.decode("utf-8", errors="replace")

    return UniversalRequest(url=url, method=request.method, headers=dict(request.headers), body=body)


def to_fastapi_response(result: UniversalResponse) -> Response:
    headers = dict(result.headers)
    cookies = headers.pop("Set-Cookie", "")
    media_type = headers.pop("Content-Type", None)
    response = Response(content=result.body, status_code=result.status, headers=headers, media_type=media_type)
    if cookies:
        for cookie in _split_set_cookie(cookies):
            response.headers.append("set-cookie", cookie)
    return response


def _split_set_cookie(value: str) -> list[str]:
    """Split a joined Set-Cookie value on the ", " separators between cookies.

    A new cookie starts where ", " is followed by name=...; an Expires date
    ("Wed, 21 Oct ...") is followed by a day, not by a name and "=".
    """
    parts: list[str] = []
    for chunk in value.split(", "):
        head = chunk.split(";", 1)[0]
        if parts and ("=" not in head or " " in head):
            parts[-1] += ", " + chunk
        else:
            parts.append(chunk)
    return parts


@router.api_route("/{full_path:path}", methods=_METHODS, include_in_schema=False)
async def studio(request: Request, full_path: str) -> Response:
    """Every studio URL: assets, SPA routes, and the data API."""
    universal = await to_universal_request(request)
    result = await request.app.state.handler.handle(universal)
    return to_fastapi_response(result)
