"""
events/providers/http.py -- Webhook events provider.

POSTs each event as JSON to a URL owned by the host application (a log
collector, a SIEM intake, a serverless function). ingest_batch() sends one
request with {"events": [...]}.

transform(event) -> dict replaces the default payload (event.to_dict()) for
receivers that expect their own schema. Any non-2xx response is a failure;
the pipeline decides whether to retry it.

Uses requests with one pooled Session per provider. requests is blocking,
so calls run in a worker thread via asyncio.to_thread.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Optional

import requests

from core.errors import ProviderError
from events.models import AuthEvent

logger = logging.getLogger("studio.events")

_DEFAULT_TIMEOUT = 10.0


class HttpEventProvider:
    def __init__(
        self,
        url: str,
        headers: Optional[dict[str, str]] = None,
        transform: Optional[Callable[[AuthEvent], dict[str, Any]]] = None,
        timeout: float = _DEFAULT_TIMEOUT,
    ) -> None:
        if not url.startswith(("http://", "https://")):
            raise ProviderError(f"Events webhook URL must be http(s), got {url!r}.")
        self.url = url
        self.timeout = timeout
        self._transform = transform
        self._session = requests.Session()
        self._session.headers.update({"Content-Type": "application/json"})
        if headers:
            self._session.headers.update(headers)

    def _payload(self, event: AuthEvent) -> dict[str, Any]:
        if self._transform is not None:
            return self._transform(event)
        return event.to_dict()

    def _post(self, body: dict[str, Any]) -> None:
        try:
            resp = self._session.post(self.url, json=body, timeout=self.timeout)
            resp.raise_for_status()
        except requests.RequestException as e:
            raise ProviderError(f"POST {self.url} failed: {e}") from e

    async def ingest(self, event: AuthEvent) -> None:
        await asyncio.to_thread(self._post, self._payload(event))

    async def ingest_batch(self, events: list[AuthEvent]) -> None:
        if events:
            await asyncio.to_thread(self._post, {"events": [self._payload(e) for e in events]})

    async def shutdown(self) -> None:
        self._session.close()
        logger.debug("Webhook session for %s closed", self.url)
