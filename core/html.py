"""
core/html.py -- Inject the studio runtime config into the dashboard's index.html.

The dashboard bundle is built once and shipped as static files. Per-deployment
settings (base path, branding, live event ticker) reach it through a
window.__STUDIO_CONFIG__ object written into <head> at serve time.

Security: everything injected comes from operator configuration, but it is
still treated as untrusted text.
  - The JSON is emitted with <, > and & as \\u003c, \\u003e, \\u0026, so a
    value containing "</script>" cannot close the script element.
  - The <title> text and the favicon href are HTML-escaped.

Layer rule: core/ is the kernel. No imports from api/, web/, auth/, or events/.
"""

from __future__ import annotations

import html
import json
import logging
import re
from typing import Any

from core.models import StudioConfig, StudioMetadata

logger = logging.getLogger("studio.static")

_TITLE_RE = re.compile(r"<title>.*?</title>", re.IGNORECASE | re.DOTALL)
_ICON_LINK_RE = re.compile(r"""<link[^>]*rel=["'](?:icon|shortcut icon)["'][^>]*>""", re.IGNORECASE)

# Root-relative references the Vite build emits. Under a base path they must
# point below it.
_ASSET_REFERENCES = (
    ('href="/assets/', 'href="{base}/assets/'),
    ('src="/assets/', 'src="{base}/assets/'),
    ('href="/vite.svg"', 'href="{base}/vite.svg"'),
    ('href="/favicon.svg"', 'href="{base}/favicon.svg"'),
    ('href="/logo.png"', 'href="{base}/logo.png"'),
    ('src="/logo.png"', 'src="{base}/logo.png"'),
)


def _metadata_dict(metadata: StudioMetadata) -> dict[str, Any]:
    company: dict[str, Any] = {"name": metadata.company.name, "website": metadata.company.website}
    if metadata.company.support_email:
        company["supportEmail"] = metadata.company.support_email
    data: dict[str, Any] = {
        "title": metadata.title,
        "logo": metadata.logo,
        "favicon": metadata.favicon,
        "company": company,
        "theme": metadata.theme,
        "customStyles": metadata.custom_styles,
    }
    if metadata.colors:
        data["colors"] = dict(metadata.colors)
    return data


def prepare_frontend_config(config: StudioConfig) -> dict[str, Any]:
    """Build the object the dashboard reads as window.__STUDIO_CONFIG__.

    liveMarquee is present only when a ticker is configured or event
    ingestion is enabled; the dashboard hides the ticker when it is absent.
    """
    frontend: dict[str, Any] = {
        "basePath": config.base_path,
        "metadata": _metadata_dict(config.metadata),
    }
    events = config.events
    marquee = events.live_marquee
    if marquee is not None or events.enabled:
        live: dict[str, Any] = {
            "enabled": marquee.enabled if marquee else True,
            "pollInterval": (marquee.poll_interval_ms if marquee else 0) or 2000,
            "speed": marquee.speed if marquee else 0.5,
            "pauseOnHover": marquee.pause_on_hover if marquee else True,
            "limit": marquee.limit if marquee else 50,
            "sort": marquee.sort if marquee else "desc",
        }
        if marquee and marquee.colors:
            live["colors"] = dict(marquee.colors)
        if marquee and marquee.time_window:
            live["timeWindow"] = dict(marquee.time_window)
        frontend["liveMarquee"] = live
    return frontend


def safe_json(data: Any) -> str:
    """JSON that is safe to embed inside a <script> element."""
    return json.dumps(data).replace("<", "\\u003c").replace(">", "\\u003e").replace("&", "\\u0026")


def _favicon_mime(href: str) -> str:
    lowered = href.lower()
    if lowered.endswith(".ico"):
        return "image/x-icon"
    if lowered.endswith(".svg"):
        return "image/svg+xml"
    if lowered.endswith((".jpg", ".jpeg")):
        return "image/jpeg"
    if lowered.endswith(".webp"):
        return "image/webp"
    return "image/png"


def inject_config(document: str, frontend: dict[str, Any]) -> str:
    """Rewrite index.html for this deployment and append the config script to <head>.

    A document without </head> gets the script ahead of <body>, or at the very top.
    """
    metadata = frontend["metadata"]
    title = html.escape(metadata.get("title") or "", quote=True)
    document = _TITLE_RE.sub(lambda _: f"<title>{title}</title>", document, count=1)

    favicon = metadata.get("favicon")
    if favicon:
        tag = f'<link rel="icon" type="{_favicon_mime(favicon)}" href="{html.escape(favicon, quote=True)}" />'
        document, replaced = _ICON_LINK_RE.subn(lambda _: tag, document)
        if not replaced:
            document = document.replace("</head>", f"  {tag}\n</head>", 1)

    base_path = frontend.get("basePath")
    if base_path:
        for old, new in _ASSET_REFERENCES:
            document = document.replace(old, new.format(base=base_path))

    script = (
        "\n    <script>\n"
        f"      window.__STUDIO_CONFIG__ = {safe_json(frontend)};\n"
        "      Object.freeze(window.__STUDIO_CONFIG__);\n"
        "      if (window.__STUDIO_CONFIG__.metadata && window.__STUDIO_CONFIG__.metadata.title) {\n"
        "        document.title = window.__STUDIO_CONFIG__.metadata.title;\n"
        "      }\n"
        "    </script>\n  "
    )
    if "</head>" in document:
        return document.replace("</head>", f"{script}</head>", 1)

    # No <head>: still ship the config, ahead of the body or the whole document.
    logger.warning("index.html has no </head> -- injecting studio config before <body>")
    body = document.lower().find("<body")
    if body == -1:
        return script.strip() + "\n" + document
    return document[:body] + script.strip() + "\n" + document[body:]
