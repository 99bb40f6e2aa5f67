"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, near-zero logic). Stores and routes
do the work; these own the domain shape.

Timestamps are timezone-aware UTC datetimes everywhere above the store layer.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from auth.roles import Role


@dataclass
class User:
    """A registered account.

    email is the login key and is matched case-sensitively. Users are never
    hard-deleted; is_active=False is the terminal state and blocks every
    further authentication, including tokens issued before deactivation.
    """

    email: str
    role: Role
    hashed_password: str
    id: str | None = None  # UUID hex, assigned by the store
    first_name: str | None = None
    last_name: str | None = None
    is_active: bool = True
    created_at: str | None = None
    last_login: str | None = None


@dataclass
class Session:
    """Server-side record of a live login. Valid iff expires_at > now."""

    user_id: str
    token: str
    expires_at: datetime
    id: int | None = None
    created_at: datetime | None = None


@dataclass
class InviteCode:
    """A bounded-use, optionally time-limited grant of a role at signup.

    current_uses never exceeds max_uses. The store clears is_active in the
    same UPDATE that brings current_uses up to max_uses.
    """

    code: str
    role: Role
    max_uses: int
    created_by: str
    current_uses: int = 0
    expires_at: datetime | None = None
    is_active: bool = True
    id: int | None = None
    created_at: datetime | None = None

    @property
    def remaining_uses(self) -> int:
        return max(self.max_uses - self.current_uses, 0)


@dataclass(frozen=True)
class Identity:
    """The authenticated caller attached to request.state by the auth dependency."""

    id: str
    email: str
    role: Role
    first_name: str | None = None
    last_name: str | None = None

    @property
    def display_name(self) -> str:
        name = " ".join(part for part in (self.first_name, self.last_name) if part)
        return name or self.email

    @classmethod
    def from_user(cls, user: User) -> Identity:
        return cls(
            id=user.id,
            email=user.email,
            role=user.role,
            first_name=user.first_name,
            last_name=user.last_name,
        )


@dataclass
class PasswordReset:
    """A single-use password reset grant. Only the token digest is persisted."""

    user_id: str
    token_hash: str
    expires_at: datetime
    used: bool = False
    id: int | None = None
    created_at: datetime | None = None
