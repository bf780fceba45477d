#!/usr/bin/env python3
"""
Auth Studio -- admin dashboard server for an authentication backend.

Usage:
  python main.py
  python main.py --port 4000
  python main.py --host 0.0.0.0 --no-open
  python main.py --reload

Environment variables (see core/config.py for the full list):
  STUDIO_SECRET       Session encryption key, 32+ characters. Required unless DEBUG=true.
  AUTH_BACKEND        "package.module:attribute" of the auth backend used for sign-in.
  BASE_PATH           Mount prefix for self-hosted mode, e.g. /api/studio.
  EVENTS_ENABLED      Turn on auth event ingestion (with EVENTS_CLIENT_TYPE / EVENTS_URL).
"""

import argparse
import threading
import webbrowser
from typing import Optional

import uvicorn

from core.config import get_settings


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="auth-studio",
        description="Serve the Auth Studio dashboard.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("-p", "--port", type=int, default=3001, help="Port to run the studio on (default: 3001)")
    parser.add_argument("--host", default="localhost", help="Host to bind (default: localhost)")
    parser.add_argument("--no-open", action="store_true", help="Do not open the browser automatically")
    parser.add_argument("--reload", action="store_true", help="Restart on code changes (development)")
    return parser


def studio_url(host: str, port: int, base_path: str) -> str:
    shown = "localhost" if host in ("0.0.0.0", "::") else host
    return f"http://{shown}:{port}{base_path or ''}/"


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    if not 0 < args.port < 65536:
        print(f"  [!] Invalid port {args.port}.")
        return 2

    settings = get_settings()
    url = studio_url(args.host, args.port, settings.base_path)
    print(f"  Auth Studio running at {url}")

    if not args.no_open:
        threading.Timer(1.0, webbrowser.open, args=(url,)).start()

    uvicorn.run(
        "asgi:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level=settings.log_level.lower(),
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
