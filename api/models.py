"""
API request and response models for ClubGate REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.
"""

from datetime import datetime
from typing import Annotated, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, StringConstraints, model_validator

from auth.models import Identity, InviteCode, User
from auth.roles import Role, permissions_of
from auth.tokens import PASSWORD_MAX_BYTES

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Deliberately loose: one @, no whitespace, a dot in the domain. Deliverability
# is not our problem; the value is only a unique login key.
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"

# Character caps on password fields are a cheap first cut; _fits_bcrypt()
# checks the encoded length that bcrypt actually limits.


# ---------------------------------------------------------------------------
# Errors / health
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


class HealthResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str


class MessageResponse(BaseModel):
    message: str


# ---------------------------------------------------------------------------
# Auth -- requests
# ---------------------------------------------------------------------------

# Emails and names are trimmed; passwords are taken byte for byte.
LoginEmail = Annotated[str, StringConstraints(strip_whitespace=True, min_length=3, max_length=255)]
Email = Annotated[
    str, StringConstraints(strip_whitespace=True, min_length=3, max_length=255, pattern=EMAIL_PATTERN)
]
Name = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=100)]


def _fits_bcrypt(value: str) -> str:
    if len(value.encode("utf-8")) > PASSWORD_MAX_BYTES:
        raise ValueError(f"Password must be at most {PASSWORD_MAX_BYTES} bytes when UTF-8 encoded")
    return value


NewPassword = Annotated[str, Field(min_length=8, max_length=PASSWORD_MAX_BYTES), AfterValidator(_fits_bcrypt)]


class LoginRequest(BaseModel):
    email: LoginEmail
    password: str = Field(min_length=1, max_length=PASSWORD_MAX_BYTES)


class SignupRequest(BaseModel):
    """Request body for POST /api/v1/auth/signup.

    The granted role comes from the invite code, never from the request.
    """

    email: Email
    password: NewPassword
    confirm_password: str = Field(min_length=1, max_length=PASSWORD_MAX_BYTES)
    first_name: Name
    last_name: Name
    invite_code: str = Field(min_length=1, max_length=64)

    @model_validator(mode="after")
    def passwords_match(self) -> "SignupRequest":
        if self.password != self.confirm_password:
            raise ValueError("Passwords don't match")
        return self


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(min_length=1, max_length=PASSWORD_MAX_BYTES)
    new_password: NewPassword
    confirm_password: str = Field(min_length=1, max_length=PASSWORD_MAX_BYTES)

    @model_validator(mode="after")
    def passwords_match(self) -> "ChangePasswordRequest":
        if self.new_password != self.confirm_password:
            raise ValueError("Passwords don't match")
        return self


class PasswordResetRequest(BaseModel):
    email: LoginEmail


class PasswordResetConfirm(BaseModel):
    """Request body for POST /api/v1/auth/password-reset/confirm."""

    token: str = Field(min_length=1, max_length=128)
    new_password: NewPassword
    confirm_password: str = Field(min_length=1, max_length=PASSWORD_MAX_BYTES)

    @model_validator(mode="after")
    def passwords_match(self) -> "PasswordResetConfirm":
        if self.new_password != self.confirm_password:
            raise ValueError("Passwords don't match")
        return self


class UserCreate(BaseModel):
    """Request body for POST /api/v1/auth/users (admin only)."""

    email: Email
    password: NewPassword
    first_name: Name
    last_name: Name
    role: Role = Role.MEMBER


class UserPatch(BaseModel):
    """Request body for PATCH /api/v1/auth/users/{id}. Omitted fields are left alone."""

    role: Optional[Role] = None
    is_active: Optional[bool] = None
    first_name: Optional[Name] = None
    last_name: Optional[Name] = None


class InviteCreate(BaseModel):
    """Request body for POST /api/v1/auth/invite-codes."""

    role: Role = Role.MEMBER
    max_uses: int = Field(default=1, ge=1, le=1000)
    # None = never expires. Capped at 90 days.
    expires_in_hours: Optional[int] = Field(default=None, ge=1, le=24 * 90)


# ---------------------------------------------------------------------------
# Auth -- responses
# ---------------------------------------------------------------------------


class IdentityResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    email: str
    role: Role
    first_name: Optional[str]
    last_name: Optional[str]
    display_name: str

    @classmethod
    def from_identity(cls, identity: Identity) -> "IdentityResponse":
        return cls(
            id=identity.id,
            email=identity.email,
            role=identity.role,
            first_name=identity.first_name,
            last_name=identity.last_name,
            display_name=identity.display_name,
        )


class MeResponse(IdentityResponse):
    """Identity plus the permission strings its role grants ("*" for admin)."""

    permissions: list[str]

    @classmethod
    def from_identity(cls, identity: Identity) -> "MeResponse":
        base = IdentityResponse.from_identity(identity).model_dump()
        return cls(**base, permissions=sorted(permissions_of(identity.role)))


class LoginResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str = "bearer"
    expires_at: datetime
    user: IdentityResponse


class UserResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    email: str
    role: Role
    first_name: Optional[str]
    last_name: Optional[str]
    is_active: bool
    created_at: str
    last_login: Optional[str]

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            email=user.email,
            role=user.role,
            first_name=user.first_name,
            last_name=user.last_name,
            is_active=user.is_active,
            created_at=user.created_at or "",
            last_login=user.last_login,
        )


class InviteCodeResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    code: str
    role: Role
    max_uses: int
    current_uses: int
    remaining_uses: int
    expires_at: Optional[datetime]
    created_by: str
    is_active: bool
    created_at: Optional[datetime]

    @classmethod
    def from_invite(cls, invite: InviteCode) -> "InviteCodeResponse":
        return cls(
            code=invite.code,
            role=invite.role,
            max_uses=invite.max_uses,
            current_uses=invite.current_uses,
            remaining_uses=invite.remaining_uses,
            expires_at=invite.expires_at,
            created_by=invite.created_by,
            is_active=invite.is_active,
            created_at=invite.created_at,
        )


class RoleInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    value: Role
    label: str
    level: int
