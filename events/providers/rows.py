"""
events/providers/rows.py -- Flat row mapping and pagination cursors shared by
the table-backed providers (relational, embedded, columnar).

Every table uses the same column set (EVENT_COLUMNS). metadata stays a dict
here; each provider decides whether its backend stores it natively (JSON) or
as text.

Cursor: base64url("<iso timestamp>|<event id>"). Pagination is keyset on
(timestamp, id), so rows inserted while a client pages through results never
shift or repeat a page. The cursor is opaque to clients.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import re
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping

from core.errors import ConfigurationError, ProviderError
from events.models import AuthEvent, AuthEventType, EventDisplay, EventQueryResult, Severity

EVENT_COLUMNS = (
    "id",
    "type",
    "timestamp",
    "status",
    "user_id",
    "session_id",
    "organization_id",
    "metadata",
    "ip_address",
    "user_agent",
    "source",
    "display_message",
    "display_severity",
)

logger = logging.getLogger("studio.events")

_TABLE_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]{0,62}$")


def validate_table_name(name: str) -> str:
    """Table names end up in DDL, so only plain identifiers are accepted."""
    if not _TABLE_NAME_RE.match(name or ""):
        raise ConfigurationError(f"Invalid events table name {name!r}.")
    return name


def to_utc(value: datetime) -> datetime:
    """Naive datetimes coming back from a database are UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def event_to_row(event: AuthEvent) -> dict[str, Any]:
    display = event.display
    return {
        "id": event.id,
        "type": event.type.value,
        "timestamp": to_utc(event.timestamp),
        "status": event.status,
        "user_id": event.user_id,
        "session_id": event.session_id,
        "organization_id": event.organization_id,
        "metadata": dict(event.metadata),
        "ip_address": event.ip_address,
        "user_agent": event.user_agent,
        "source": event.source,
        "display_message": display.message if display else None,
        "display_severity": display.severity.value if display else None,
    }


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        return to_utc(value)
    return to_utc(datetime.fromisoformat(str(value)))


def _parse_metadata(value: Any) -> dict[str, Any]:
    if not value:
        return {}
    if isinstance(value, str):
        parsed = json.loads(value)
        return parsed if isinstance(parsed, dict) else {}
    return dict(value)


def row_to_event(row: Mapping[str, Any]) -> AuthEvent:
    """Rebuild an AuthEvent from a stored row. Missing display falls back to the kind."""
    try:
        severity = Severity(row.get("display_severity") or "info")
    except ValueError:
        severity = Severity.info
    return AuthEvent(
        id=str(row["id"]),
        type=AuthEventType(row["type"]),
        timestamp=_parse_timestamp(row["timestamp"]),
        status=row.get("status") or "success",
        user_id=row.get("user_id"),
        session_id=row.get("session_id"),
        organization_id=row.get("organization_id"),
        metadata=_parse_metadata(row.get("metadata")),
        ip_address=row.get("ip_address"),
        user_agent=row.get("user_agent"),
        source=row.get("source") or "app",
        display=EventDisplay(message=row.get("display_message") or row["type"], severity=severity),
    )


def rows_to_events(rows: Iterable[Mapping[str, Any]]) -> list[AuthEvent]:
    """Map rows to events, skipping rows whose type this version does not know."""
    events = []
    for row in rows:
        try:
            events.append(row_to_event(row))
        except ValueError as e:
            logger.debug("Skipping unreadable event row %s: %s", row.get("id"), e)
    return events


# ---------------------------------------------------------------------------
# Cursors
# ---------------------------------------------------------------------------


def _encode_key(timestamp: datetime, event_id: str) -> str:
    raw = f"{to_utc(timestamp).isoformat()}|{event_id}".encode("utf-8")
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def encode_cursor(event: AuthEvent) -> str:
    return _encode_key(event.timestamp, event.id)


def decode_cursor(cursor: str) -> tuple[datetime, str]:
    """Split a cursor into (timestamp, id). Raises ProviderError if it is malformed."""
    try:
        raw = base64.urlsafe_b64decode(cursor + "=" * (-len(cursor) % 4)).decode("utf-8")
        stamp, sep, event_id = raw.partition("|")
        if not sep or not event_id:
            raise ValueError("missing separator")
        return _parse_timestamp(stamp), event_id
    except (binascii.Error, UnicodeDecodeError, ValueError) as e:
        raise ProviderError(f"Invalid pagination cursor: {e}") from e


def build_page(rows: list[Mapping[str, Any]], limit: int) -> EventQueryResult:
    """Turn a limit+1 row fetch into a page. The extra row only signals has_more.

    has_more and the cursor come from the raw rows, so an unreadable row that
    rows_to_events() skips never ends pagination early.
    """
    has_more = len(rows) > limit
    page = rows[:limit]
    next_cursor = None
    if has_more and page:
        last = page[-1]
        next_cursor = _encode_key(_parse_timestamp(last["timestamp"]), str(last["id"]))
    return EventQueryResult(events=rows_to_events(page), has_more=has_more, next_cursor=next_cursor)
