"""
tests/conftest.py -- Shared test fixtures for Auth Studio tests.

This module provides:
  - public_dir: a minimal dashboard bundle (index.html + assets) in tmp_path
  - RecordingProvider / BatchRecordingProvider: in-memory event providers
    that record what they ingest and can be told to fail
  - FakeBackend: an AuthBackend with a fixed user table
  - build_app(): the real FastAPI app from create_app() plus the web binding

The DEBUG env var must be set before any app import so create_app() accepts
the built-in default session secret in tests.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Mapping, Optional

# CRITICAL: Set DEBUG before any api/core import.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi import FastAPI

from api.main import create_app
from core.config import Settings
from core.models import StudioConfig
from events.models import AuthEvent

TEST_SECRET = "s" * 40

INDEX_HTML = """<!doctype html>
<html lang="en">
  <head>
    <meta charset="UTF-8" />
    <link rel="icon" type="image/svg+xml" href="/vite.svg" />
    <title>Placeholder</title>
    <script type="module" crossorigin src="/assets/app.js"></script>
    <link rel="stylesheet" href="/assets/style.css">
  </head>
  <body><div id="root"></div></body>
</html>
"""

# ---------------------------------------------------------------------------
# Static bundle
# ---------------------------------------------------------------------------


@pytest.fixture
def public_dir(tmp_path: Path) -> Path:
    root = tmp_path / "public"
    (root / "assets").mkdir(parents=True)
    (root / "index.html").write_text(INDEX_HTML, encoding="utf-8")
    (root / "assets" / "app.js").write_text("console.log('studio');", encoding="utf-8")
    (root / "assets" / "style.css").write_text("body{}", encoding="utf-8")
    (root / "assets" / "data.bin").write_bytes(b"\x00\x01")
    (root / "logo.png").write_bytes(b"\x89PNG\r\n")
    (tmp_path / "secret.txt").write_text("outside the bundle", encoding="utf-8")
    return root


# ---------------------------------------------------------------------------
# Providers
# ---------------------------------------------------------------------------


class RecordingProvider:
    """ingest()-only provider. Events whose id is in fail_ids (or all, with fail_all) raise."""

    def __init__(self) -> None:
        self.ingested: list[AuthEvent] = []
        self.fail_all = False
        self.fail_ids: set[str] = set()
        self.shutdown_called = False

    async def ingest(self, event: AuthEvent) -> None:
        if self.fail_all or event.id in self.fail_ids:
            raise RuntimeError("provider unavailable")
        self.ingested.append(event)

    async def shutdown(self) -> None:
        self.shutdown_called = True


class BatchRecordingProvider(RecordingProvider):
    def __init__(self) -> None:
        super().__init__()
        self.batches: list[list[AuthEvent]] = []

    async def ingest_batch(self, events: list[AuthEvent]) -> None:
        if self.fail_all:
            raise RuntimeError("provider unavailable")
        self.batches.append(list(events))
        self.ingested.extend(events)


# ---------------------------------------------------------------------------
# Auth backend
# ---------------------------------------------------------------------------


class FakeBackend:
    def __init__(self, users: Optional[dict[str, dict[str, Any]]] = None) -> None:
        self.users = users or {
            "admin@example.com": {
                "id": "u-admin",
                "email": "admin@example.com",
                "name": "Ada Admin",
                "role": "admin",
                "password": "correct horse",
            },
            "member@example.com": {
                "id": "u-member",
                "email": "member@example.com",
                "name": "Max Member",
                "role": "user",
                "password": "battery staple",
            },
        }
        self.calls: list[str] = []

    async def sign_in_email(self, email: str, password: str) -> Optional[Mapping[str, Any]]:
        self.calls.append(email)
        user = self.users.get(email)
        if user is None or user["password"] != password:
            return None
        return {k: v for k, v in user.items() if k != "password"}


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------


def build_app(config: StudioConfig, backend: Any = None, **settings: Any) -> FastAPI:
    """create_app() with the catch-all binding mounted, as asgi.py does."""
    from web.routes import router as web_router

    app = create_app(Settings(debug=True, **settings), studio_config=config, backend=backend)
    app.include_router(web_router)
    return app
