"""
events/providers/embedded.py -- SQLite events provider on the stdlib sqlite3 driver.

For single-process deployments that want events on local disk without a
database server. The client is a sqlite3.Connection opened by the caller with
check_same_thread=False (calls run in worker threads); a path is also
accepted and opened here.

Storage: metadata is JSON text, timestamps are UTC ISO-8601 text with fixed
microsecond precision, so lexical order equals chronological order and the
keyset cursor works on plain string comparison.

sqlite3 connections are not safe for concurrent use, so every call holds
self._lock.

Usage:
    conn = sqlite3.connect("events.db", check_same_thread=False)
    provider = EmbeddedEventProvider(conn)
    await provider.ingest(event)
"""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Union

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

_DDL = """
CREATE TABLE IF NOT EXISTS {table} (
    id                TEXT PRIMARY KEY,
    type              TEXT NOT NULL,
    timestamp         TEXT NOT NULL,
    status            TEXT NOT NULL DEFAULT 'success',
    user_id           TEXT,
    session_id        TEXT,
    organization_id   TEXT,
    metadata          TEXT,
    ip_address        TEXT,
    user_agent        TEXT,
    source            TEXT NOT NULL DEFAULT 'app',
    display_message   TEXT,
    display_severity  TEXT,
    created_at        TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
);
CREATE INDEX IF NOT EXISTS ix_{table}_timestamp ON {table} (timestamp);
CREATE INDEX IF NOT EXISTS ix_{table}_user_id ON {table} (user_id);
"""


def _stamp(value: datetime) -> str:
    return to_utc(value).isoformat(timespec="microseconds")


def _to_params(event: AuthEvent) -> tuple[Any, ...]:
    row = event_to_row(event)
    row["timestamp"] = _stamp(row["timestamp"])
    row["metadata"] = json.dumps(row["metadata"])
    return tuple(row[name] for name in EVENT_COLUMNS)


class EmbeddedEventProvider:
    def __init__(self, conn: Union[sqlite3.Connection, str, Path], table_name: str = "auth_events") -> None:
        if not isinstance(conn, sqlite3.Connection):
            conn = sqlite3.connect(conn, check_same_thread=False)
        self._conn = conn
        # Interpolated into SQL below; only plain identifiers pass validation.
        self._table = validate_table_name(table_name)
        self._lock = threading.Lock()
        placeholders = ", ".join("?" for _ in EVENT_COLUMNS)
        self._insert_sql = f"INSERT INTO {self._table} ({', '.join(EVENT_COLUMNS)}) VALUES ({placeholders})"  # nosemgrep
        try:
            with self._lock:
                self._conn.executescript(_DDL.format(table=self._table))
                self._conn.commit()
        except sqlite3.Error as e:
            raise ProviderError(f"Could not create events table {table_name!r}: {e}") from e

    def _insert(self, events: list[AuthEvent]) -> None:
        params = [_to_params(event) for event in events]
        try:
            with self._lock:
                self._conn.executemany(self._insert_sql, params)
                self._conn.commit()
        except sqlite3.Error as e:
            raise ProviderError(f"Insert into {self._table} failed: {e}") from e

    async def ingest(self, event: AuthEvent) -> None:
        await asyncio.to_thread(self._insert, [event])

    async def ingest_batch(self, events: list[AuthEvent]) -> None:
        if events:
            await asyncio.to_thread(self._insert, list(events))

    def _select(self, options: EventQueryOptions) -> EventQueryResult:
        clauses: list[str] = []
        params: list[Any] = []
        descending = options.sort != "asc"

        if options.after:
            stamp, event_id = decode_cursor(options.after)
            op = "<" if descending else ">"
            clauses.append(f"(timestamp {op} ? OR (timestamp = ? AND id {op} ?))")
            params.extend([_stamp(stamp), _stamp(stamp), event_id])
        if options.type:
            clauses.append("type = ?")
            params.append(options.type)
        if options.user_id:
            clauses.append("user_id = ?")
            params.append(options.user_id)
        if options.since is not None:
            clauses.append("timestamp >= ?")
            params.append(_stamp(options.since))

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        direction = "DESC" if descending else "ASC"
        sql = (
            f"SELECT {', '.join(EVENT_COLUMNS)} FROM {self._table} {where} "  # nosemgrep
            f"ORDER BY timestamp {direction}, id {direction} LIMIT ?"
        )
        params.append(options.limit + 1)

        try:
            with self._lock:
                cursor = self._conn.execute(sql, params)
                rows = [dict(zip(EVENT_COLUMNS, row)) for row in cursor.fetchall()]
        except sqlite3.Error as e:
            raise ProviderError(f"Query on {self._table} failed: {e}") from e
        return build_page(rows, options.limit)

    async def query(self, options: EventQueryOptions) -> EventQueryResult:
        return await asyncio.to_thread(self._select, options)

    def _ping(self) -> bool:
        try:
            with self._lock:
                self._conn.execute("SELECT 1").fetchone()
            return True
        except sqlite3.Error as e:
            logger.warning("Events database unreachable: %s", e)
            return False

    async def health_check(self) -> bool:
        return await asyncio.to_thread(self._ping)
