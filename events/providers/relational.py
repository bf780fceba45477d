"""
events/providers/relational.py -- SQLAlchemy Core events provider.

Serves both the "sqlalchemy" and "postgres" client types: the client is an
Engine (or a database URL, turned into one here), so PostgreSQL, MySQL and
SQLite are a connection string change, not a different provider.

metadata is a native JSON column. Timestamps are stored as UTC.

The engine is synchronous; every database call runs in a worker thread via
asyncio.to_thread so ingestion never blocks the event loop.

Security: all queries use bound parameters. The table name is validated as a
plain identifier before it reaches any DDL.

Usage:
    engine = create_engine("postgresql://user:pw@host/db")
    provider = RelationalEventProvider(engine, table_name="auth_events")
    await provider.ingest(event)
    page = await provider.query(EventQueryOptions(limit=50))
"""

from __future__ import annotations

import asyncio
import logging
from typing import Union

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Index,
    MetaData,
    String,
    Table,
    Text,
    and_,
    create_engine,
    func,
    or_,
    select,
    text,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from core.errors import ProviderError
from events.models import AuthEvent, EventQueryOptions, EventQueryResult
from events.providers.rows import (
    EVENT_COLUMNS,
    build_page,
    decode_cursor,
    event_to_row,
    to_utc,
    validate_table_name,
)

logger = logging.getLogger("studio.events")


def build_events_table(table_name: str, metadata: MetaData) -> Table:
    return Table(
        table_name,
        metadata,
        Column("id", String(36), primary_key=True),
        Column("type", String(64), nullable=False),
        Column("timestamp", DateTime(timezone=True), nullable=False),
        Column("status", String(16), nullable=False, server_default="success"),
        Column("user_id", String(255)),
        Column("session_id", String(255)),
        Column("organization_id", String(255)),
        Column("metadata", JSON),
        Column("ip_address", String(64)),
        Column("user_agent", Text),
        Column("source", String(16), nullable=False, server_default="app"),
        Column("display_message", Text),
        Column("display_severity", String(16)),
        Column("created_at", DateTime(timezone=True), server_default=func.now()),
        Index(f"ix_{table_name}_timestamp", "timestamp"),
        Index(f"ix_{table_name}_user_id", "user_id"),
    )


class RelationalEventProvider:
    def __init__(self, engine: Union[Engine, str], table_name: str = "auth_events") -> None:
        if isinstance(engine, str):
            engine = create_engine(engine)
        self.engine: Engine = engine
        self._metadata = MetaData()
        self._table = build_events_table(validate_table_name(table_name), self._metadata)
        try:
            self._metadata.create_all(self.engine)
        except SQLAlchemyError as e:
            raise ProviderError(f"Could not create events table {table_name!r}: {e}") from e

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    def _insert(self, events: list[AuthEvent]) -> None:
        rows = [event_to_row(event) for event in events]
        try:
            with self.engine.begin() as conn:
                conn.execute(self._table.insert(), rows)
        except SQLAlchemyError as e:
            raise ProviderError(f"Insert into {self._table.name} failed: {e}") from e

    async def ingest(self, event: AuthEvent) -> None:
        await asyncio.to_thread(self._insert, [event])

    async def ingest_batch(self, events: list[AuthEvent]) -> None:
        """One executemany INSERT for the whole batch, in one transaction."""
        if events:
            await asyncio.to_thread(self._insert, list(events))

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def _select(self, options: EventQueryOptions) -> EventQueryResult:
        t = self._table
        stmt = select(*(t.c[name] for name in EVENT_COLUMNS))
        descending = options.sort != "asc"

        if options.after:
            stamp, event_id = decode_cursor(options.after)
            if descending:
                stmt = stmt.where(or_(t.c.timestamp < stamp, and_(t.c.timestamp == stamp, t.c.id < event_id)))
            else:
                stmt = stmt.where(or_(t.c.timestamp > stamp, and_(t.c.timestamp == stamp, t.c.id > event_id)))
        if options.type:
            stmt = stmt.where(t.c.type == options.type)
        if options.user_id:
            stmt = stmt.where(t.c.user_id == options.user_id)
        if options.since is not None:
            stmt = stmt.where(t.c.timestamp >= to_utc(options.since))

        if descending:
            stmt = stmt.order_by(t.c.timestamp.desc(), t.c.id.desc())
        else:
            stmt = stmt.order_by(t.c.timestamp.asc(), t.c.id.asc())
        stmt = stmt.limit(options.limit + 1)

        try:
            with self.engine.connect() as conn:
                rows = [dict(row._mapping) for row in conn.execute(stmt)]
        except SQLAlchemyError as e:
            raise ProviderError(f"Query on {t.name} failed: {e}") from e
        return build_page(rows, options.limit)

    async def query(self, options: EventQueryOptions) -> EventQueryResult:
        return await asyncio.to_thread(self._select, options)

    def _ping(self) -> bool:
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            logger.warning("Events database unreachable: %s", e)
            return False

    async def health_check(self) -> bool:
        return await asyncio.to_thread(self._ping)
