"""
core/static.py -- Serve the dashboard bundle from one configured directory.

The asset root is StudioConfig.public_dir (Settings.PUBLIC_DIR for the
standalone server). It is set once; nothing here searches the filesystem for
alternative locations.

Rules:
  - A regular file under the root is served with a content type from its
    extension. Fingerprinted build output (js, css, images, fonts) is cached
    for a year; everything else is revalidated.
  - Anything else (missing file, directory, a path escaping the root) gets
    the SPA shell, so client-side routes always render.
  - A missing root is a deployment error: 500 with a diagnostic body, never
    an exception.

File reads run in a worker thread so a slow disk never stalls the event loop.

Layer rule: core/ is the kernel. No imports from api/, web/, auth/, or events/.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional

from core.html import inject_config, prepare_frontend_config
from core.models import StudioConfig, UniversalResponse, json_response

logger = logging.getLogger("studio.static")

CONTENT_TYPES: dict[str, str] = {
    ".html": "text/html",
    ".js": "application/javascript",
    ".css": "text/css",
    ".json": "application/json",
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".svg": "image/svg+xml",
    ".ico": "image/x-icon",
    ".woff": "font/woff",
    ".woff2": "font/woff2",
    ".ttf": "font/ttf",
}
_IMMUTABLE_SUFFIXES = frozenset({".js", ".css", ".png", ".jpg", ".jpeg", ".svg", ".woff", ".woff2", ".ttf"})

IMMUTABLE_CACHE = "public, max-age=31536000, immutable"
NO_CACHE = "no-cache"


def content_type_for(path: str) -> str:
    return CONTENT_TYPES.get(Path(path).suffix.lower(), "application/octet-stream")


def cache_control_for(path: str) -> str:
    return IMMUTABLE_CACHE if Path(path).suffix.lower() in _IMMUTABLE_SUFFIXES else NO_CACHE


class StaticSite:
    def __init__(self, config: StudioConfig) -> None:
        self.config = config
        self.root: Optional[Path] = config.public_dir

    def _missing_root(self) -> UniversalResponse:
        logger.error("Studio public directory not found: %s", self.root)
        return json_response(
            500,
            {
                "error": {
                    "code": "public_dir_not_found",
                    "message": f"Studio public directory not found: {self.root}",
                    "detail": "Build the dashboard bundle, or point PUBLIC_DIR at a directory containing index.html.",
                }
            },
        )

    def _resolve(self, root: Path, path: str) -> Optional[Path]:
        """Map a URL path to a regular file under the root, or None."""
        relative = path.lstrip("/")
        if not relative:
            return None
        candidate = (root / relative).resolve()
        if not candidate.is_relative_to(root):
            logger.warning("Rejected static path outside public dir: %s", path)
            return None
        return candidate if candidate.is_file() else None

    async def serve(self, path: str) -> UniversalResponse:
        """Serve a file from the bundle, falling back to the SPA shell."""
        if self.root is None or not self.root.is_dir():
            return self._missing_root()
        file_path = self._resolve(self.root, path)
        if file_path is None:
            return await self.index()
        content = await asyncio.to_thread(file_path.read_bytes)
        return UniversalResponse(
            status=200,
            headers={"Content-Type": content_type_for(file_path.name), "Cache-Control": cache_control_for(path)},
            body=content,
        )

    async def index(self) -> UniversalResponse:
        """index.html with this deployment's config injected."""
        if self.root is None or not self.root.is_dir():
            return self._missing_root()
        index_path = self.root / "index.html"
        if not index_path.is_file():
            return self._missing_root()
        document = await asyncio.to_thread(index_path.read_text, "utf-8")
        rendered = inject_config(document, prepare_frontend_config(self.config))
        return UniversalResponse(
            status=200,
            headers={"Content-Type": "text/html", "Cache-Control": NO_CACHE},
            body=rendered,
        )
