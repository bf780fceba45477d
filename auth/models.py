"""
auth/models.py -- Domain dataclasses for studio authentication.

Pattern: Data class (pure data container, zero logic beyond (de)serialization).
Mirrors core/models.py -- dataclasses own domain shape; the codec and the API
router do the work.

Layer rule: no imports from api/, web/, or events/.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional


@dataclass(frozen=True)
class StudioSession:
    """A signed-in dashboard operator.

    Never mutated: re-issuing a session builds a new instance with fresh
    issued_at / expires_at. Both timestamps are epoch milliseconds so the
    serialized form matches what the dashboard frontend reads.
    """

    user_id: str
    email: str
    name: str
    role: str
    issued_at: int
    expires_at: int
    image: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "userId": self.user_id,
            "email": self.email,
            "name": self.name,
            "role": self.role,
            "issuedAt": self.issued_at,
            "expiresAt": self.expires_at,
        }
        if self.image is not None:
            data["image"] = self.image
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StudioSession":
        """Build from the wire form. Raises KeyError / TypeError / ValueError on bad input."""
        return cls(
            user_id=str(data["userId"]),
            email=str(data["email"]),
            name=str(data.get("name") or ""),
            role=str(data.get("role") or "user"),
            issued_at=int(data["issuedAt"]),
            expires_at=int(data["expiresAt"]),
            image=data.get("image"),
        )


@dataclass
class SessionCheck:
    """Outcome of verifying a request's session cookie.

    error is the client-facing reason and is identical for every failure cause.
    """

    valid: bool
    session: Optional[StudioSession] = None
    error: Optional[str] = None
