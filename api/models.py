"""
API request and response models for the LMS Bridge REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in auth/models.py, which own the
internal domain representation. Route handlers map between the two.

Field names follow the wire contract clients already use (userId, newRole,
firstname), not Python naming.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from auth.models import AuthResult, LocalUserRecord, RoleChange, UserSummary

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /auth/login."""

    model_config = ConfigDict(str_strip_whitespace=True)

    username: str = Field(min_length=1, max_length=100)
    password: str = Field(min_length=1, max_length=255)


class RegisterRequest(BaseModel):
    """Request body for POST /auth/register. Presence and shape only; Moodle enforces its own policy."""

    model_config = ConfigDict(str_strip_whitespace=True)

    username: str = Field(min_length=1, max_length=100)
    password: str = Field(min_length=1, max_length=255)
    firstname: str = Field(min_length=1, max_length=100)
    lastname: str = Field(min_length=1, max_length=100)
    email: EmailStr


class ChangeRoleRequest(BaseModel):
    """Request body for POST /auth/change-role and POST /users/change-role.

    newRole is a plain string on purpose: the closed vocabulary is checked by
    RoleAuthority so invalid roles get the same 400 from every entry point.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    userId: int = Field(gt=0)
    newRole: str = Field(min_length=1, max_length=30)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class SessionUser(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    username: str
    fullname: str
    role: str
    email: Optional[str] = None
    firstname: Optional[str] = None
    lastname: Optional[str] = None

    @classmethod
    def from_summary(cls, user: UserSummary) -> "SessionUser":
        return cls(
            id=user.id,
            username=user.username,
            fullname=user.fullname,
            role=user.role,
            email=user.email,
            firstname=user.firstname,
            lastname=user.lastname,
        )


class AuthResponse(BaseModel):
    """Response for POST /auth/login and POST /auth/register."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str = "bearer"
    user: SessionUser

    @classmethod
    def from_result(cls, result: AuthResult) -> "AuthResponse":
        return cls(access_token=result.access_token, user=SessionUser.from_summary(result.user))


class ChangeRoleResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool
    message: str
    role: str


class MeResponse(BaseModel):
    """Response for GET /auth/me -- the validated session, minus the remote token."""

    model_config = ConfigDict(frozen=True)

    user_id: int
    username: str
    role: str


class LocalUserResponse(BaseModel):
    """One cached user, as returned by GET /users and GET /users/{id}."""

    model_config = ConfigDict(frozen=True)

    remote_user_id: int
    username: str
    email: Optional[str]
    first_name: Optional[str]
    last_name: Optional[str]
    role: str
    is_active: bool
    last_login: Optional[str]

    @classmethod
    def from_record(cls, record: LocalUserRecord) -> "LocalUserResponse":
        return cls(
            remote_user_id=record.remote_user_id,
            username=record.username,
            email=record.email,
            first_name=record.first_name,
            last_name=record.last_name,
            role=record.role,
            is_active=record.is_active,
            last_login=record.last_login,
        )


class RoleChangeResponse(BaseModel):
    """One entry of GET /users/{id}/roles."""

    model_config = ConfigDict(frozen=True)

    old_role: Optional[str]
    new_role: str
    changed_at: str

    @classmethod
    def from_change(cls, change: RoleChange) -> "RoleChangeResponse":
        return cls(old_role=change.old_role, new_role=change.new_role, changed_at=change.changed_at)


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


class HealthResponse(BaseModel):
    """Response for GET /health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, Any] = Field(default_factory=dict)
