"""
API request and response models for the studio data API.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in core/, auth/ and
events/, which own the internal domain representation. api/router.py maps
between the two.

Separation of concerns: domain dataclasses = domain truth; api/ models = API contract.
"""

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


def error_body(code: str, message: str, detail: Optional[str] = None) -> dict[str, Any]:
    """ErrorResponse as a plain dict, ready for json_response()."""
    return ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail)).model_dump(exclude_none=True)


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


class HealthComponents(BaseModel):
    model_config = ConfigDict(frozen=True)

    app: Literal["ok"] = "ok"
    events: Literal["ok", "degraded", "disabled"] = "disabled"


class HealthResponse(BaseModel):
    """Response for GET /api/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: HealthComponents = Field(default_factory=HealthComponents)


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


class SignInRequest(BaseModel):
    """Request body for POST /api/auth/sign-in."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=3, max_length=320, pattern=r"^[^@\s]+@[^@\s]+$")
    password: str = Field(min_length=1, max_length=1024)

    @field_validator("email")
    @classmethod
    def lowercase_email(cls, v: str) -> str:
        return v.lower()


class StudioUser(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    email: str
    name: str = ""
    role: str = "user"
    image: Optional[str] = None


class SignInResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool = True
    user: StudioUser


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


class EventsQuery(BaseModel):
    """Query parameters for GET /api/events.

    Field names follow the dashboard's camelCase (userId) through aliases.
    """

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    limit: int = Field(default=20, ge=1, le=100)
    after: Optional[str] = Field(default=None, max_length=512)
    sort: Literal["asc", "desc"] = "desc"
    type: Optional[str] = Field(default=None, max_length=64)
    user_id: Optional[str] = Field(default=None, alias="userId", max_length=255)
    since: Optional[datetime] = None

    @field_validator("after", "type", "user_id", "since", mode="before")
    @classmethod
    def empty_as_none(cls, v: Any) -> Any:
        return v or None
