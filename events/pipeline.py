"""
events/pipeline.py -- Event ingestion pipeline: filter, describe, dispatch.

One EventPipeline owns one provider for its lifetime. The composition root
(api/main.py lifespan) creates it, initializes it on startup and shuts it
down on exit; nothing here is module-level state.

Dispatch:
  batch_size > 1 and the provider has ingest_batch()
      -> append to the queue; flush as soon as the queue reaches batch_size,
         and every flush_interval_ms from a background task.
  otherwise
      -> provider.ingest() right away. On failure with retry_on_error the
         event is queued for the next flush.

Failure contract: emit() and flush() never raise for provider errors. A
failed delivery is logged and either requeued (retry_on_error) or dropped.
The code path that triggered the lifecycle action never sees it.

Queue bound: max_queue_size caps the queue (None = unbounded). Going over it
drops the oldest events with a warning, so a dead provider under retry costs
bounded memory.

Shutdown stops the flush timer, lets a timer flush that is already
delivering finish, then drains the queue exactly once. Events that still
fail during shutdown are dropped, since there is no later flush to retry
them in.

Layer rule: events/ may import from core/. No imports from api/ or web/.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
import uuid
from collections import deque
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Optional, Union

from core.errors import ProviderError, StudioError
from core.models import EventsConfig
from events.models import (
    EVENT_SOURCES,
    EVENT_STATUSES,
    AuthEvent,
    AuthEventType,
    EventIngestionProvider,
    EventQueryOptions,
    EventQueryResult,
)
from events.providers.registry import create_provider
from events.templates import resolve_display

logger = logging.getLogger("studio.events")


class EventPipeline:
    """Buffers and forwards auth lifecycle events to a single provider."""

    def __init__(self, config: Optional[EventsConfig] = None) -> None:
        self._config = config
        self._provider: Optional[EventIngestionProvider] = None
        self._queue: deque[AuthEvent] = deque()
        self._flush_task: Optional[asyncio.Task] = None
        self._inflight: Optional[asyncio.Future] = None
        self._initialized = False
        self._shutting_down = False

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def config(self) -> Optional[EventsConfig]:
        return self._config

    @property
    def provider(self) -> Optional[EventIngestionProvider]:
        return self._provider

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def queue_size(self) -> int:
        return len(self._queue)

    @property
    def supports_query(self) -> bool:
        return self._provider is not None and callable(getattr(self._provider, "query", None))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self, config: Optional[EventsConfig] = None) -> None:
        """Bind a provider and start the flush task.

        No-op when already initialized or when ingestion is disabled. If no
        provider can be resolved the pipeline stays uninitialized and every
        emit() is dropped; the studio keeps working without an events backend.

        There is no await between the initialized check and setting it, so
        concurrent callers cannot both bind a provider.
        """
        if self._initialized:
            return
        if config is not None:
            self._config = config
        cfg = self._config
        if cfg is None or not cfg.enabled:
            return

        provider = self._resolve_provider(cfg)
        if provider is None:
            logger.warning("Event ingestion is enabled but no provider could be resolved -- events will be dropped")
            return

        self._provider = provider
        self._initialized = True
        self._shutting_down = False

        if cfg.batch_size > 1 or cfg.retry_on_error:
            self._flush_task = asyncio.create_task(self._flush_loop(cfg.flush_interval_ms / 1000))
        logger.info(
            "Event ingestion initialized (provider=%s, batch_size=%d, flush_interval_ms=%d)",
            type(provider).__name__,
            cfg.batch_size,
            cfg.flush_interval_ms,
        )

    def _resolve_provider(self, cfg: EventsConfig) -> Optional[EventIngestionProvider]:
        if cfg.provider is not None:
            return cfg.provider
        if cfg.client is None or cfg.client_type is None:
            return None
        try:
            return create_provider(cfg.client_type, cfg.client, cfg.table_name, **cfg.provider_options)
        except StudioError as e:
            logger.error("Could not create %s events provider: %s", cfg.client_type.value, e)
            return None

    async def shutdown(self) -> None:
        """Stop the flush task, drain the queue once, release the provider.

        Afterwards the pipeline is back in its initial state and may be
        initialized again.
        """
        if not self._initialized:
            self._queue.clear()
            return

        self._shutting_down = True
        if self._flush_task is not None:
            self._flush_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._flush_task
            self._flush_task = None
        if self._inflight is not None:
            # A timer flush caught mid-delivery finishes before the final drain.
            try:
                await self._inflight
            except Exception:
                logger.exception("Periodic event flush failed")
            self._inflight = None

        pending = len(self._queue)
        await self._drain()

        provider_shutdown = getattr(self._provider, "shutdown", None)
        if callable(provider_shutdown):
            try:
                await provider_shutdown()
            except Exception:
                logger.exception("Events provider shutdown failed")

        self._provider = None
        self._queue.clear()
        self._initialized = False
        self._shutting_down = False
        logger.info("Event ingestion shut down (%d queued event(s) drained)", pending)

    # ------------------------------------------------------------------
    # Emit
    # ------------------------------------------------------------------

    async def emit(
        self,
        event_type: Union[AuthEventType, str],
        *,
        status: str = "success",
        user_id: Optional[str] = None,
        session_id: Optional[str] = None,
        organization_id: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        source: str = "app",
        config: Optional[EventsConfig] = None,
    ) -> Optional[AuthEvent]:
        """Record one lifecycle event.

        Returns the event as dispatched (with its display resolved), or None
        when it was dropped: ingestion disabled, no provider, filtered out, or
        the pipeline is shutting down. An unknown event_type, status or source
        raises ValueError.
        """
        kind = AuthEventType(event_type)
        if status not in EVENT_STATUSES:
            raise ValueError(f"Unknown event status {status!r}. Expected one of: {', '.join(EVENT_STATUSES)}.")
        if source not in EVENT_SOURCES:
            raise ValueError(f"Unknown event source {source!r}. Expected one of: {', '.join(EVENT_SOURCES)}.")

        if not self._initialized and config is not None:
            await self.initialize(config)
        cfg = self._config
        if not self._initialized or self._provider is None or cfg is None or self._shutting_down:
            return None

        if cfg.include is not None and kind.value not in cfg.include:
            return None
        if cfg.exclude is not None and kind.value in cfg.exclude:
            return None

        event = AuthEvent(
            id=str(uuid.uuid4()),
            type=kind,
            timestamp=datetime.now(timezone.utc),
            status=status,
            user_id=user_id,
            session_id=session_id,
            organization_id=organization_id,
            metadata=dict(metadata or {}),
            ip_address=ip_address,
            user_agent=user_agent,
            source=source,
        )
        event = replace(event, display=resolve_display(event))

        await self._run_callback(cfg, event)

        if cfg.batch_size > 1 and self._supports_batch():
            self._enqueue([event])
            if len(self._queue) >= cfg.batch_size:
                await self.flush()
            return event

        try:
            await self._provider.ingest(event)
        except Exception as e:
            if cfg.retry_on_error:
                logger.warning("Ingest of %s failed (%s) -- queued for retry", kind.value, e)
                self._enqueue([event])
            else:
                logger.error("Ingest of %s failed (%s) -- event dropped", kind.value, e)
        return event

    async def _run_callback(self, cfg: EventsConfig, event: AuthEvent) -> None:
        if cfg.on_event_ingest is None:
            return
        try:
            result = cfg.on_event_ingest(event)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("on_event_ingest callback failed for %s", event.type.value)

    # ------------------------------------------------------------------
    # Flush
    # ------------------------------------------------------------------

    async def flush(self) -> None:
        """Deliver everything queued. No-op while shutting down."""
        if self._shutting_down:
            return
        await self._drain()

    async def _drain(self) -> None:
        if not self._queue or self._provider is None:
            return
        events = list(self._queue)
        self._queue.clear()

        failed = await self._deliver(events)
        if not failed:
            return

        cfg = self._config
        if cfg is not None and cfg.retry_on_error and not self._shutting_down:
            logger.warning("%d of %d event(s) failed to flush -- requeued", len(failed), len(events))
            self._enqueue(failed, front=True)
        else:
            logger.error("%d of %d event(s) failed to flush -- dropped", len(failed), len(events))

    async def _deliver(self, events: list[AuthEvent]) -> list[AuthEvent]:
        """Send events to the provider and return the ones that failed, in order."""
        ingest_batch = getattr(self._provider, "ingest_batch", None)
        if callable(ingest_batch):
            try:
                await ingest_batch(events)
                return []
            except Exception as e:
                logger.warning("Batch ingest of %d event(s) failed: %s", len(events), e)
                return events

        results = await asyncio.gather(
            *(self._provider.ingest(event) for event in events),
            return_exceptions=True,
        )
        failed = []
        for event, result in zip(events, results):
            if isinstance(result, BaseException):
                logger.warning("Ingest of %s (%s) failed: %s", event.type.value, event.id, result)
                failed.append(event)
        return failed

    async def _flush_loop(self, interval: float) -> None:
        """Flush every interval seconds until cancelled by shutdown().

        Each flush runs shielded in self._inflight. Cancelling the loop stops
        the timer only; shutdown() awaits a delivery already in progress.
        """
        while True:
            await asyncio.sleep(interval)
            self._inflight = asyncio.ensure_future(self.flush())
            try:
                await asyncio.shield(self._inflight)
            except Exception:
                logger.exception("Periodic event flush failed")
            self._inflight = None

    def _supports_batch(self) -> bool:
        return callable(getattr(self._provider, "ingest_batch", None))

    def _enqueue(self, events: list[AuthEvent], front: bool = False) -> None:
        if front:
            self._queue.extendleft(reversed(events))
        else:
            self._queue.extend(events)

        limit = self._config.max_queue_size if self._config is not None else None
        if limit is not None and len(self._queue) > limit:
            overflow = len(self._queue) - limit
            for _ in range(overflow):
                self._queue.popleft()
            logger.warning("Event queue exceeded %d -- dropped %d oldest event(s)", limit, overflow)

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    async def health_check(self) -> bool:
        """True when a provider is bound and (if it can tell) reachable."""
        if self._provider is None:
            return False
        check = getattr(self._provider, "health_check", None)
        if not callable(check):
            return True
        try:
            return bool(await check())
        except Exception as e:
            logger.warning("Events provider health check failed: %s", e)
            return False

    async def query(self, options: Optional[EventQueryOptions] = None) -> EventQueryResult:
        """Read stored events back through the provider.

        Raises ProviderError when ingestion is not initialized or the provider
        has no query() support.
        """
        if self._provider is None:
            raise ProviderError("Event ingestion is not initialized.")
        if not self.supports_query:
            raise ProviderError(f"{type(self._provider).__name__} does not support querying events.")
        return await self._provider.query(options or EventQueryOptions())
