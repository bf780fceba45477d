"""
events/models.py -- Auth lifecycle event types and the provider protocol.

AuthEvent is immutable: it is built once when a lifecycle action completes
and handed to exactly one provider call path (immediate ingest or a queued
flush). to_dict() is the JSON wire form used by the HTTP provider and the
studio events API, with camelCase keys the dashboard frontend expects.

Layer rule: events/ may import from core/. No imports from api/ or web/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Protocol, runtime_checkable


class AuthEventType(str, Enum):
    user_joined = "user.joined"
    user_logged_in = "user.logged_in"
    user_updated = "user.updated"
    user_logged_out = "user.logged_out"
    user_password_changed = "user.password_changed"
    user_email_verified = "user.email_verified"
    user_banned = "user.banned"
    user_unbanned = "user.unbanned"
    user_deleted = "user.deleted"
    user_delete_verification_requested = "user.delete_verification_requested"
    organization_created = "organization.created"
    organization_deleted = "organization.deleted"
    organization_updated = "organization.updated"
    member_added = "member.added"
    member_removed = "member.removed"
    member_role_changed = "member.role_changed"
    session_created = "session.created"
    login_failed = "login.failed"
    password_reset_requested = "password.reset_requested"
    password_reset_completed = "password.reset_completed"
    password_reset_requested_otp = "password.reset_requested_otp"
    password_reset_completed_otp = "password.reset_completed_otp"
    oauth_linked = "oauth.linked"
    oauth_unlinked = "oauth.unlinked"
    oauth_sign_in = "oauth.sign_in"
    team_created = "team.created"
    team_updated = "team.updated"
    team_deleted = "team.deleted"
    team_member_added = "team.member.added"
    team_member_removed = "team.member.removed"
    invitation_created = "invitation.created"
    invitation_accepted = "invitation.accepted"
    invitation_rejected = "invitation.rejected"
    invitation_cancelled = "invitation.cancelled"


class Severity(str, Enum):
    info = "info"
    success = "success"
    warning = "warning"
    failed = "failed"


EVENT_STATUSES = ("success", "failed")
EVENT_SOURCES = ("app", "api")


@dataclass(frozen=True)
class EventDisplay:
    message: str
    severity: Severity = Severity.info


@dataclass(frozen=True)
class AuthEvent:
    id: str
    type: AuthEventType
    timestamp: datetime
    status: str = "success"  # success | failed
    user_id: Optional[str] = None
    session_id: Optional[str] = None
    organization_id: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    source: str = "app"  # app | api
    display: Optional[EventDisplay] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "type": self.type.value,
            "timestamp": self.timestamp.astimezone(timezone.utc).isoformat(),
            "status": self.status,
            "userId": self.user_id,
            "sessionId": self.session_id,
            "organizationId": self.organization_id,
            "metadata": dict(self.metadata),
            "ipAddress": self.ip_address,
            "userAgent": self.user_agent,
            "source": self.source,
        }
        if self.display is not None:
            data["display"] = {"message": self.display.message, "severity": self.display.severity.value}
        return data


@dataclass
class EventQueryOptions:
    """Filters and keyset pagination for provider.query().

    after is the opaque next_cursor from a previous page.
    sort "desc" is newest first.
    """

    limit: int = 20
    after: Optional[str] = None
    sort: str = "desc"
    type: Optional[str] = None
    user_id: Optional[str] = None
    since: Optional[datetime] = None


@dataclass
class EventQueryResult:
    events: list[AuthEvent]
    has_more: bool = False
    next_cursor: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "events": [e.to_dict() for e in self.events],
            "hasMore": self.has_more,
            "nextCursor": self.next_cursor,
        }


@runtime_checkable
class EventIngestionProvider(Protocol):
    """The one contract an events storage integration must satisfy.

    Only ingest() is required. A provider may also define any of:
        async def ingest_batch(self, events: list[AuthEvent]) -> None
        async def query(self, options: EventQueryOptions) -> EventQueryResult
        async def health_check(self) -> bool
        async def shutdown(self) -> None
    EventPipeline looks these up with getattr() and falls back when absent.
    """

    async def ingest(self, event: AuthEvent) -> None: ...
