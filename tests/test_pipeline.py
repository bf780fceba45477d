"""
tests/test_pipeline.py -- Unit tests for events/pipeline.py.

Coroutines are driven with asyncio.run(); every scenario that starts a
flush task also shuts the pipeline down inside the same loop.

Covers:
  - Disabled / provider-less pipelines drop events without error
  - include / exclude filters
  - on_event_ingest (sync and async), callback failures
  - Immediate ingest, retry-on-error queueing, drop without retry
  - Batching: size-triggered and timer-triggered flushes
  - Per-event fallback flush requeues only failed events, at the front
  - Queue bound drops the oldest events
  - Shutdown waits for an in-progress timer flush, drains the queue once
    and resets state
  - Unknown kind, status or source is rejected
"""

from __future__ import annotations

import asyncio
from unittest.mock import MagicMock, patch

import pytest

from conftest import BatchRecordingProvider, RecordingProvider
from core.errors import ProviderError
from core.models import ClientType, EventsConfig
from events.models import AuthEventType, Severity
from events.pipeline import EventPipeline


def _config(provider, **overrides) -> EventsConfig:
    return EventsConfig(enabled=True, provider=provider, **overrides)


# ---------------------------------------------------------------------------
# Initialization
# ---------------------------------------------------------------------------


class TestInitialize:
    def test_disabled_pipeline_drops_events(self):
        provider = RecordingProvider()
        pipeline = EventPipeline(EventsConfig(enabled=False, provider=provider))

        async def scenario():
            await pipeline.initialize()
            return await pipeline.emit(AuthEventType.user_joined)

        assert asyncio.run(scenario()) is None
        assert pipeline.initialized is False
        assert provider.ingested == []

    def test_no_provider_stays_uninitialized(self):
        pipeline = EventPipeline(EventsConfig(enabled=True))

        async def scenario():
            await pipeline.initialize()
            return await pipeline.emit(AuthEventType.user_joined)

        assert asyncio.run(scenario()) is None
        assert pipeline.initialized is False

    def test_lazy_initialize_from_emit_config(self):
        provider = RecordingProvider()
        pipeline = EventPipeline()

        async def scenario():
            return await pipeline.emit(AuthEventType.user_joined, config=_config(provider))

        event = asyncio.run(scenario())
        assert event is not None
        assert pipeline.initialized is True
        assert provider.ingested == [event]

    def test_concurrent_initialize_resolves_provider_once(self):
        provider = RecordingProvider()
        config = EventsConfig(enabled=True, client=object(), client_type=ClientType.https)
        pipeline = EventPipeline(config)

        async def scenario():
            with patch("events.pipeline.create_provider", return_value=provider) as factory:
                await asyncio.gather(pipeline.initialize(), pipeline.initialize(), pipeline.initialize())
            await pipeline.shutdown()
            return factory

        factory = asyncio.run(scenario())
        factory.assert_called_once()

    def test_provider_factory_error_disables_ingestion(self):
        config = EventsConfig(enabled=True, client="ftp://nope", client_type="https")
        pipeline = EventPipeline(config)
        asyncio.run(pipeline.initialize())
        assert pipeline.initialized is False

    def test_unknown_event_type_raises(self):
        pipeline = EventPipeline(_config(RecordingProvider()))
        with pytest.raises(ValueError):
            asyncio.run(pipeline.emit("user.teleported"))

    @pytest.mark.parametrize("fields", [{"status": "FAILED"}, {"status": "error"}, {"source": "nowhere"}])
    def test_unknown_status_or_source_raises(self, fields):
        provider = RecordingProvider()
        pipeline = EventPipeline(_config(provider))
        with pytest.raises(ValueError):
            asyncio.run(pipeline.emit(AuthEventType.user_joined, config=pipeline.config, **fields))
        assert provider.ingested == []


# ---------------------------------------------------------------------------
# Emit
# ---------------------------------------------------------------------------


class TestEmit:
    def test_immediate_ingest_resolves_display(self):
        provider = RecordingProvider()
        pipeline = EventPipeline(_config(provider))

        async def scenario():
            await pipeline.initialize()
            return await pipeline.emit(
                AuthEventType.user_joined,
                user_id="u1",
                metadata={"name": "Ada"},
                ip_address="10.0.0.1",
                source="api",
            )

        event = asyncio.run(scenario())
        assert provider.ingested == [event]
        assert event.display.message == "Ada joined!"
        assert event.display.severity == Severity.success
        assert event.user_id == "u1"
        assert event.source == "api"
        assert event.timestamp.tzinfo is not None

    def test_string_event_type_accepted(self):
        provider = RecordingProvider()
        pipeline = EventPipeline(_config(provider))
        event = asyncio.run(pipeline.emit("user.logged_in", config=pipeline.config))
        assert event.type is AuthEventType.user_logged_in

    def test_include_filter(self):
        provider = RecordingProvider()
        pipeline = EventPipeline(_config(provider, include={AuthEventType.user_joined}))

        async def scenario():
            await pipeline.initialize()
            await pipeline.emit(AuthEventType.user_joined)
            await pipeline.emit(AuthEventType.user_logged_in)

        asyncio.run(scenario())
        assert [e.type for e in provider.ingested] == [AuthEventType.user_joined]

    def test_exclude_filter(self):
        provider = RecordingProvider()
        pipeline = EventPipeline(_config(provider, exclude={"user.logged_in"}))

        async def scenario():
            await pipeline.initialize()
            await pipeline.emit(AuthEventType.user_joined)
            return await pipeline.emit(AuthEventType.user_logged_in)

        assert asyncio.run(scenario()) is None
        assert [e.type for e in provider.ingested] == [AuthEventType.user_joined]

    def test_sync_callback_runs_once_before_dispatch(self):
        provider = RecordingProvider()
        seen = []

        def callback(event):
            seen.append((event.id, len(provider.ingested)))

        pipeline = EventPipeline(_config(provider, on_event_ingest=callback))
        event = asyncio.run(pipeline.emit(AuthEventType.user_joined, config=pipeline.config))
        assert seen == [(event.id, 0)]

    def test_async_callback_is_awaited(self):
        seen = []

        async def callback(event):
            seen.append(event.type)

        pipeline = EventPipeline(_config(RecordingProvider(), on_event_ingest=callback))
        asyncio.run(pipeline.emit(AuthEventType.user_joined, config=pipeline.config))
        assert seen == [AuthEventType.user_joined]

    def test_failing_callback_does_not_block(self):
        provider = RecordingProvider()
        callback = MagicMock(side_effect=RuntimeError("boom"))
        pipeline = EventPipeline(_config(provider, on_event_ingest=callback))
        event = asyncio.run(pipeline.emit(AuthEventType.user_joined, config=pipeline.config))
        callback.assert_called_once()
        assert provider.ingested == [event]

    def test_provider_failure_without_retry_drops(self):
        provider = RecordingProvider()
        provider.fail_all = True
        pipeline = EventPipeline(_config(provider))
        event = asyncio.run(pipeline.emit(AuthEventType.user_joined, config=pipeline.config))
        assert event is not None
        assert pipeline.queue_size == 0

    def test_provider_failure_with_retry_queues_and_flush_recovers(self):
        provider = RecordingProvider()
        provider.fail_all = True
        pipeline = EventPipeline(_config(provider, retry_on_error=True))

        async def scenario():
            await pipeline.initialize()
            event = await pipeline.emit(AuthEventType.user_joined)
            queued = pipeline.queue_size
            provider.fail_all = False
            await pipeline.flush()
            await pipeline.shutdown()
            return event, queued

        event, queued = asyncio.run(scenario())
        assert queued == 1
        assert provider.ingested == [event]


# ---------------------------------------------------------------------------
# Batching and flush
# ---------------------------------------------------------------------------


class TestBatching:
    def test_queue_flushes_when_batch_size_reached(self):
        provider = BatchRecordingProvider()
        pipeline = EventPipeline(_config(provider, batch_size=3, flush_interval_ms=60_000))

        async def scenario():
            await pipeline.initialize()
            await pipeline.emit(AuthEventType.user_joined)
            await pipeline.emit(AuthEventType.user_joined)
            before = len(provider.batches)
            await pipeline.emit(AuthEventType.user_joined)
            after = len(provider.batches)
            left = pipeline.queue_size
            await pipeline.shutdown()
            return before, after, left

        before, after, left = asyncio.run(scenario())
        assert (before, after) == (0, 1)
        assert left == 0
        assert len(provider.batches[0]) == 3

    def test_batching_needs_ingest_batch(self):
        provider = RecordingProvider()
        pipeline = EventPipeline(_config(provider, batch_size=5, flush_interval_ms=60_000))

        async def scenario():
            await pipeline.initialize()
            await pipeline.emit(AuthEventType.user_joined)
            size = pipeline.queue_size
            await pipeline.shutdown()
            return size

        assert asyncio.run(scenario()) == 0
        assert len(provider.ingested) == 1

    def test_timer_flushes_partial_batch(self):
        provider = BatchRecordingProvider()
        pipeline = EventPipeline(_config(provider, batch_size=10, flush_interval_ms=10))

        async def scenario():
            await pipeline.initialize()
            await pipeline.emit(AuthEventType.user_joined)
            await asyncio.sleep(0.1)
            flushed = len(provider.ingested)
            await pipeline.shutdown()
            return flushed

        assert asyncio.run(scenario()) == 1

    def test_failed_batch_requeued_at_front_in_order(self):
        provider = BatchRecordingProvider()
        pipeline = EventPipeline(_config(provider, batch_size=100, flush_interval_ms=60_000, retry_on_error=True))

        async def scenario():
            await pipeline.initialize()
            a = await pipeline.emit(AuthEventType.user_joined)
            b = await pipeline.emit(AuthEventType.user_updated)
            provider.fail_all = True
            await pipeline.flush()
            c = await pipeline.emit(AuthEventType.user_deleted)
            order = [e.id for e in pipeline._queue]
            provider.fail_all = False
            await pipeline.flush()
            retried = [e.id for e in provider.batches[-1]]
            await pipeline.shutdown()
            return [a.id, b.id, c.id], order, retried

        expected, order, retried = asyncio.run(scenario())
        assert order == expected
        assert retried == expected
        assert len(provider.batches) == 1

    def test_per_event_flush_requeues_only_failures(self):
        provider = RecordingProvider()
        provider.fail_all = True
        pipeline = EventPipeline(_config(provider, retry_on_error=True, flush_interval_ms=60_000))

        async def scenario():
            await pipeline.initialize()
            events = [await pipeline.emit(AuthEventType.user_joined) for _ in range(3)]
            provider.fail_all = False
            provider.fail_ids = {events[1].id}
            await pipeline.flush()
            remaining = [e.id for e in pipeline._queue]
            provider.fail_ids = set()
            await pipeline.shutdown()
            return events, remaining

        events, remaining = asyncio.run(scenario())
        assert remaining == [events[1].id]
        assert [e.id for e in provider.ingested] == [events[0].id, events[2].id, events[1].id]

    def test_flush_failure_without_retry_drops(self):
        provider = BatchRecordingProvider()
        pipeline = EventPipeline(_config(provider, batch_size=100, flush_interval_ms=60_000))

        async def scenario():
            await pipeline.initialize()
            await pipeline.emit(AuthEventType.user_joined)
            provider.fail_all = True
            await pipeline.flush()
            size = pipeline.queue_size
            await pipeline.shutdown()
            return size

        assert asyncio.run(scenario()) == 0

    def test_queue_bound_drops_oldest(self):
        provider = RecordingProvider()
        provider.fail_all = True
        pipeline = EventPipeline(
            _config(provider, retry_on_error=True, max_queue_size=2, flush_interval_ms=60_000)
        )

        async def scenario():
            await pipeline.initialize()
            events = [await pipeline.emit(AuthEventType.user_joined) for _ in range(3)]
            queued = [e.id for e in pipeline._queue]
            await pipeline.shutdown()
            return events, queued

        events, queued = asyncio.run(scenario())
        assert queued == [events[1].id, events[2].id]


# ---------------------------------------------------------------------------
# Shutdown
# ---------------------------------------------------------------------------


class SlowBatchProvider(BatchRecordingProvider):
    def __init__(self, delay: float) -> None:
        super().__init__()
        self.delay = delay
        self.started = asyncio.Event()

    async def ingest_batch(self, events):
        self.started.set()
        await asyncio.sleep(self.delay)
        await super().ingest_batch(events)


class TestShutdown:
    def test_shutdown_drains_queue_and_resets(self):
        provider = BatchRecordingProvider()
        pipeline = EventPipeline(_config(provider, batch_size=10, flush_interval_ms=60_000))

        async def scenario():
            await pipeline.initialize()
            await pipeline.emit(AuthEventType.user_joined)
            await pipeline.emit(AuthEventType.user_joined)
            await pipeline.shutdown()

        asyncio.run(scenario())
        assert len(provider.batches) == 1
        assert len(provider.batches[0]) == 2
        assert provider.shutdown_called is True
        assert pipeline.initialized is False
        assert pipeline.provider is None
        assert pipeline.queue_size == 0

    def test_shutdown_waits_for_timer_flush_in_progress(self):
        provider = SlowBatchProvider(delay=0.2)
        pipeline = EventPipeline(_config(provider, batch_size=10, flush_interval_ms=10))

        async def scenario():
            await pipeline.initialize()
            first = await pipeline.emit(AuthEventType.user_joined)
            second = await pipeline.emit(AuthEventType.user_logged_in)
            await asyncio.wait_for(provider.started.wait(), timeout=2)
            await pipeline.shutdown()
            return [first.id, second.id]

        expected = asyncio.run(scenario())
        assert [e.id for e in provider.ingested] == expected
        assert provider.shutdown_called is True
        assert pipeline.queue_size == 0

    def test_shutdown_drains_events_queued_behind_timer_flush(self):
        provider = SlowBatchProvider(delay=0.1)
        pipeline = EventPipeline(_config(provider, batch_size=10, flush_interval_ms=10))

        async def scenario():
            await pipeline.initialize()
            await pipeline.emit(AuthEventType.user_joined)
            await asyncio.wait_for(provider.started.wait(), timeout=2)
            await pipeline.emit(AuthEventType.user_updated)
            await pipeline.shutdown()

        asyncio.run(scenario())
        assert [len(batch) for batch in provider.batches] == [1, 1]
        assert [e.type for e in provider.ingested] == [AuthEventType.user_joined, AuthEventType.user_updated]

    def test_events_failing_during_shutdown_are_dropped(self):
        provider = BatchRecordingProvider()
        pipeline = EventPipeline(_config(provider, batch_size=10, flush_interval_ms=60_000, retry_on_error=True))

        async def scenario():
            await pipeline.initialize()
            await pipeline.emit(AuthEventType.user_joined)
            provider.fail_all = True
            await pipeline.shutdown()

        asyncio.run(scenario())
        assert pipeline.queue_size == 0
        assert provider.ingested == []

    def test_can_reinitialize_after_shutdown(self):
        provider = RecordingProvider()
        pipeline = EventPipeline(_config(provider))

        async def scenario():
            await pipeline.initialize()
            await pipeline.shutdown()
            await pipeline.initialize()
            await pipeline.emit(AuthEventType.user_joined)
            await pipeline.shutdown()

        asyncio.run(scenario())
        assert len(provider.ingested) == 1


# ---------------------------------------------------------------------------
# Read side
# ---------------------------------------------------------------------------


class TestReadSide:
    def test_health_check_without_provider(self):
        assert asyncio.run(EventPipeline().health_check()) is False

    def test_health_check_defaults_true_without_provider_support(self):
        pipeline = EventPipeline(_config(RecordingProvider()))

        async def scenario():
            await pipeline.initialize()
            return await pipeline.health_check()

        assert asyncio.run(scenario()) is True

    def test_query_unsupported_raises(self):
        pipeline = EventPipeline(_config(RecordingProvider()))

        async def scenario():
            await pipeline.initialize()
            await pipeline.query()

        assert pipeline.supports_query is False
        with pytest.raises(ProviderError):
            asyncio.run(scenario())

    def test_query_without_provider_raises(self):
        with pytest.raises(ProviderError):
            asyncio.run(EventPipeline().query())
