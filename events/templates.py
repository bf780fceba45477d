"""
events/templates.py -- Display message and severity for each auth event kind.

Pure functions, no I/O. EVENT_TEMPLATES is a total table: every
AuthEventType has an entry, and the module refuses to import if one is
missing.

Templates read display fields from event.metadata and fall back to neutral
literals ("User", "Organization", ...) when a field is absent or empty.

Severity precedence (order matters, status always beats kind):
  1. status == "failed"                                   -> failed
  2. kind mentions joined/created/verified/accepted/
     added/sign_in/logged_in                              -> success
  3. kind mentions failed/banned, or deleted without
     verification                                         -> failed
  4. kind mentions warning/reset/verification             -> warning
  5. anything else (updated, removed, rejected, ...)      -> info
"""

from __future__ import annotations

from typing import Any, Callable, Mapping, Optional

from events.models import AuthEvent, AuthEventType, EventDisplay, Severity

Template = Callable[[AuthEvent], str]

# placeholder -> (metadata keys tried in order, fallback literal)
_Field = tuple[tuple[str, ...], str]

_USER: _Field = (("name", "email"), "User")
_SOMEONE: _Field = (("name", "email"), "Someone")
_EMAIL: _Field = (("email",), "User")
_INVITEE: _Field = (("email",), "user")
_ORG_TITLE: _Field = (("organizationName",), "Organization")
_ORG: _Field = (("organizationName",), "organization")
_PROVIDER: _Field = (("provider",), "OAuth")
_TEAM_TITLE: _Field = (("teamName",), "Team")
_TEAM: _Field = (("teamName",), "team")


def _pick(metadata: Mapping[str, Any], keys: tuple[str, ...], default: str) -> str:
    for key in keys:
        value = metadata.get(key)
        if value:
            return str(value)
    return default


def _template(success: str, failure: Optional[str] = None, **fields: _Field) -> Template:
    """Build a template from format strings and the metadata fields they use.

    failure=None means the kind reads the same whether it succeeded or not.
    """

    def render(event: AuthEvent) -> str:
        values = {name: _pick(event.metadata, keys, default) for name, (keys, default) in fields.items()}
        pattern = failure if failure is not None and event.status == "failed" else success
        return pattern.format(**values)

    return render


def _organization_created(event: AuthEvent) -> str:
    org = _pick(event.metadata, *_ORG_TITLE)
    if event.status == "failed":
        return f'Failed to create organization "{org}"'
    creator = _pick(event.metadata, *_USER).split(" ")[0]
    return f'New organization "{org}" created by {creator}'


EVENT_TEMPLATES: dict[AuthEventType, Template] = {
    AuthEventType.user_joined: _template("{name} joined!", "{name} failed to join", name=_USER),
    AuthEventType.user_updated: _template("{name} updated their profile", name=_USER),
    AuthEventType.user_logged_in: _template("{name} logged in", "{name} failed to login", name=_USER),
    AuthEventType.user_logged_out: _template("{name} logged out", "{name} failed to logout", name=_USER),
    AuthEventType.user_password_changed: _template(
        "{name} changed password", "{name} failed to change password", name=_USER
    ),
    AuthEventType.user_email_verified: _template(
        "{name} verified email", "{name} failed to verify email", name=_USER
    ),
    AuthEventType.user_banned: _template("{name} was banned", "{name} failed to ban", name=_USER),
    AuthEventType.user_unbanned: _template("{name} was unbanned", "{name} failed to unban", name=_USER),
    AuthEventType.user_deleted: _template("{name} was deleted", name=_USER),
    AuthEventType.user_delete_verification_requested: _template(
        "Delete verification requested for {name}",
        'Failed to send delete verification for "{name}"',
        name=_USER,
    ),
    AuthEventType.organization_created: _organization_created,
    AuthEventType.organization_deleted: _template(
        'Organization "{org}" deleted', 'Failed to delete organization "{org}"', org=_ORG_TITLE
    ),
    AuthEventType.organization_updated: _template(
        'Organization "{org}" updated', 'Failed to update organization "{org}"', org=_ORG_TITLE
    ),
    AuthEventType.member_added: _template(
        "{member} added to {org}",
        'Failed to add member "{member}" to "{org}"',
        member=(("addedByName", "addedByEmail"), "Member"),
        org=_ORG,
    ),
    AuthEventType.member_removed: _template(
        "{member} removed from {org}",
        'Failed to remove member "{member}" from "{org}"',
        member=(("removedByName", "removedByEmail"), "Member"),
        org=_ORG,
    ),
    AuthEventType.member_role_changed: _template(
        "{member} role changed from {old} to {new}",
        'Failed to change role of "{member}" from "{old}" to "{new}"',
        member=(("changedByName", "changedByEmail"), "Member"),
        old=(("oldRole",), "member"),
        new=(("newRole",), "member"),
    ),
    AuthEventType.session_created: _template(
        "New session created for {name}", 'Failed to create session for "{name}"', name=_USER
    ),
    AuthEventType.login_failed: _template("Failed login attempt for {email}", email=_EMAIL),
    AuthEventType.password_reset_requested: _template(
        "Password reset requested for {email}", 'Failed to request password reset for "{email}"', email=_EMAIL
    ),
    AuthEventType.password_reset_completed: _template(
        "{name} reset their password", 'Failed to complete password reset for "{name}"', name=_SOMEONE
    ),
    AuthEventType.password_reset_requested_otp: _template(
        "Password reset OTP requested for {email}",
        'Failed to request password reset OTP for "{email}"',
        email=_EMAIL,
    ),
    AuthEventType.password_reset_completed_otp: _template(
        "{name} reset their password via email OTP",
        'Failed to complete password reset via email OTP for "{name}"',
        name=_SOMEONE,
    ),
    AuthEventType.oauth_linked: _template(
        "OAuth account linked: {provider}", 'Failed to link OAuth account "{provider}"', provider=_PROVIDER
    ),
    AuthEventType.oauth_unlinked: _template(
        "OAuth account unlinked: {provider}", 'Failed to unlink OAuth account "{provider}"', provider=_PROVIDER
    ),
    AuthEventType.oauth_sign_in: _template(
        "{name} signed in via {provider}",
        'Failed to sign in via {provider} for "{name}"',
        name=(("name", "userEmail"), "User"),
        provider=(("provider", "providerId"), "OAuth"),
    ),
    AuthEventType.team_created: _template(
        'Team "{team}" created in {org}', 'Failed to create team "{team}" in "{org}"', team=_TEAM_TITLE, org=_ORG
    ),
    AuthEventType.team_updated: _template(
        'Team "{team}" updated in {org}', 'Failed to update team "{team}" in "{org}"', team=_TEAM_TITLE, org=_ORG
    ),
    AuthEventType.team_deleted: _template(
        'Team "{team}" deleted from {org}',
        'Failed to delete team "{team}" from "{org}"',
        team=_TEAM_TITLE,
        org=_ORG,
    ),
    AuthEventType.team_member_added: _template(
        '{member} added to team "{team}"',
        'Failed to add member "{member}" to team "{team}"',
        member=(("addedName", "addedEmail"), "Member"),
        team=_TEAM,
    ),
    AuthEventType.team_member_removed: _template(
        '{member} removed from team "{team}"',
        'Failed to remove member "{member}" from team "{team}"',
        member=(("removedName", "removedEmail"), "Member"),
        team=_TEAM,
    ),
    AuthEventType.invitation_created: _template(
        "Invitation sent to {email} to join {org} as {role}",
        'Failed to create invitation for "{email}" to join "{org}"',
        email=_INVITEE,
        org=_ORG,
        role=(("role",), "member"),
    ),
    AuthEventType.invitation_accepted: _template(
        "{email} accepted invitation to join {org}",
        'Failed to accept invitation for "{email}" to join "{org}"',
        email=_INVITEE,
        org=_ORG,
    ),
    AuthEventType.invitation_rejected: _template(
        "{email} rejected invitation to join {org}",
        'Failed to reject invitation for "{email}" to join "{org}"',
        email=_INVITEE,
        org=_ORG,
    ),
    AuthEventType.invitation_cancelled: _template(
        "Invitation cancelled for {email} to join {org}",
        'Failed to cancel invitation for "{email}" to join "{org}"',
        email=_INVITEE,
        org=_ORG,
    ),
}

_missing = set(AuthEventType) - set(EVENT_TEMPLATES)
if _missing:
    raise RuntimeError(f"EVENT_TEMPLATES is missing entries for: {sorted(k.value for k in _missing)}")


# ---------------------------------------------------------------------------
# Severity
# ---------------------------------------------------------------------------

_SUCCESS_MARKERS = ("joined", "created", "verified", "accepted", "added", "sign_in", "logged_in")
_WARNING_MARKERS = ("warning", "reset", "verification")


def get_event_severity(event_type: AuthEventType, status: str = "success") -> Severity:
    """Classify an event kind + outcome. A failed status always yields Severity.failed."""
    if status == "failed":
        return Severity.failed

    kind = event_type.value
    if any(marker in kind for marker in _SUCCESS_MARKERS):
        return Severity.success
    if "failed" in kind or "banned" in kind or ("deleted" in kind and "verification" not in kind):
        return Severity.failed
    if any(marker in kind for marker in _WARNING_MARKERS):
        return Severity.warning
    return Severity.info


def render_message(event: AuthEvent) -> str:
    return EVENT_TEMPLATES[event.type](event)


def resolve_display(event: AuthEvent) -> EventDisplay:
    """Message + severity for an event that does not carry a display yet."""
    return EventDisplay(message=render_message(event), severity=get_event_severity(event.type, event.status))
