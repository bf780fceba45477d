"""
events/providers/columnar.py -- ClickHouse events provider.

The client is a clickhouse-connect Client (clickhouse_connect.get_client(...))
supplied by the host application; this module only relies on its command(),
insert(), query() and ping() methods, so clickhouse-connect is not a
dependency of the studio itself.

Storage: MergeTree ordered by (timestamp, id), partitioned by month. metadata
is a JSON String column; ClickHouse has no cheap native map for arbitrary
nested values.

The client is synchronous; calls run in a worker thread via asyncio.to_thread.
ingest() is a one-row insert. ClickHouse prefers batches, so pair this
provider with batch_size > 1.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Optional

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
    id                String,
    type              String,
    timestamp         DateTime64(6, 'UTC'),
    status            String DEFAULT 'success',
    user_id           Nullable(String),
    session_id        Nullable(String),
    organization_id   Nullable(String),
    metadata          String,
    ip_address        Nullable(String),
    user_agent        Nullable(String),
    source            String DEFAULT 'app',
    display_message   Nullable(String),
    display_severity  Nullable(String),
    created_at        DateTime DEFAULT now()
) ENGINE = MergeTree()
PARTITION BY toYYYYMM(timestamp)
ORDER BY (timestamp, id)
"""


class ColumnarEventProvider:
    def __init__(self, client: Any, table_name: str = "auth_events", database: Optional[str] = None) -> None:
        self._client = client
        table = validate_table_name(table_name)
        self._table = f"{validate_table_name(database)}.{table}" if database else table
        try:
            self._client.command(_DDL.format(table=self._table))
        except Exception as e:
            raise ProviderError(f"Could not create ClickHouse table {self._table!r}: {e}") from e

    def _insert(self, events: list[AuthEvent]) -> None:
        data = []
        for event in events:
            row = event_to_row(event)
            row["metadata"] = json.dumps(row["metadata"])
            data.append([row[name] for name in EVENT_COLUMNS])
        try:
            self._client.insert(self._table, data, column_names=list(EVENT_COLUMNS))
        except Exception as e:
            raise ProviderError(f"Insert into {self._table} failed: {e}") from e

    async def ingest(self, event: AuthEvent) -> None:
        await asyncio.to_thread(self._insert, [event])

    async def ingest_batch(self, events: list[AuthEvent]) -> None:
        if events:
            await asyncio.to_thread(self._insert, list(events))

    def _select(self, options: EventQueryOptions) -> EventQueryResult:
        clauses: list[str] = []
        params: dict[str, Any] = {"limit": options.limit + 1}
        descending = options.sort != "asc"

        # {name:Type} placeholders are bound server-side by ClickHouse.
        if options.after:
            stamp, event_id = decode_cursor(options.after)
            op = "<" if descending else ">"
            clauses.append(
                f"(timestamp {op} {{cursor_ts:DateTime64(6, 'UTC')}} "
                f"OR (timestamp = {{cursor_ts:DateTime64(6, 'UTC')}} AND id {op} {{cursor_id:String}}))"
            )
            params["cursor_ts"] = stamp
            params["cursor_id"] = event_id
        if options.type:
            clauses.append("type = {type:String}")
            params["type"] = options.type
        if options.user_id:
            clauses.append("user_id = {user_id:String}")
            params["user_id"] = options.user_id
        if options.since is not None:
            clauses.append("timestamp >= {since:DateTime64(6, 'UTC')}")
            params["since"] = to_utc(options.since)

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        direction = "DESC" if descending else "ASC"
        sql = (
            f"SELECT {', '.join(EVENT_COLUMNS)} FROM {self._table} {where} "
            f"ORDER BY timestamp {direction}, id {direction} LIMIT {{limit:UInt32}}"
        )
        try:
            result = self._client.query(sql, parameters=params)
        except Exception as e:
            raise ProviderError(f"Query on {self._table} failed: {e}") from e
        rows = [dict(zip(result.column_names, row)) for row in result.result_rows]
        return build_page(rows, options.limit)

    async def query(self, options: EventQueryOptions) -> EventQueryResult:
        return await asyncio.to_thread(self._select, options)

    async def health_check(self) -> bool:
        try:
            return bool(await asyncio.to_thread(self._client.ping))
        except Exception as e:
            logger.warning("ClickHouse unreachable: %s", e)
            return False
