"""
auth/access.py -- Who may open the studio.

A successful sign-in against the auth backend only proves identity. The
studio then applies its own policy: the user's role must be in access.roles,
or their email in access.allow_emails. With neither list configured, only
the "admin" role is admitted -- an unconfigured studio never opens to every
user of the host application.

Layer rule: no imports from api/, web/, or events/.
"""

from __future__ import annotations

from typing import Any, Mapping

from core.models import AccessConfig

_DEFAULT_ROLE = "admin"


def is_access_allowed(user: Mapping[str, Any], access: AccessConfig) -> bool:
    """Return True if the backend user record may use the studio."""
    role = str(user.get("role") or "")
    email = str(user.get("email") or "").lower()

    if not access.roles and not access.allow_emails:
        return role == _DEFAULT_ROLE

    if access.roles and role in access.roles:
        return True
    if access.allow_emails and email in {e.lower() for e in access.allow_emails}:
        return True
    return False
