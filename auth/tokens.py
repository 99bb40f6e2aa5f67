"""
auth/tokens.py -- Access token codec and password hashing.

Security design decisions:
  Tokens: python-jose with HS256. Claims are sub (user id), iat, exp and a
       random jti, so two tokens issued for one user in the same second still
       differ (the sessions table keys on the exact token string).
       verify_access_token() raises InvalidCredential on any failure -- bad
       signature, malformed input, missing claims or expiry -- and never hands
       back an unchecked user id. The codec is stateless; the only shared
       input is the signing key, read once at import.

  Passwords: bcrypt directly (no passlib wrapper). Work factor comes from
       Settings.bcrypt_rounds (12 by default). Each hash embeds a fresh salt;
       checkpw compares in constant time. Both calls block for tens of
       milliseconds, so callers run them from sync route handlers (FastAPI
       worker threads) and never while holding a lock.

  Reset tokens: 32 random bytes as hex, handed to the user once. The store
       keeps only an HMAC-SHA256 digest keyed with SECRET_KEY.

  The _DUMMY_HASH constant enables timing equalization in authenticate_user()
       so response time does not reveal whether an email is registered.

Layer rule: no imports from api/. Import from core/ is allowed -- core/ is the
kernel and has no reverse dependencies.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import bcrypt
from jose import JWTError, jwt

from auth.errors import InvalidCredential
from core.config import get_settings

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import UserStore


# ---------------------------------------------------------------------------
# Config -- read once at module load via the lru_cache singleton
# ---------------------------------------------------------------------------

_settings = get_settings()

_ALGORITHM = "HS256"

# bcrypt rejects longer input outright.
PASSWORD_MAX_BYTES = 72

# ---------------------------------------------------------------------------
# Password hashing (bcrypt)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    Raises ValueError if the UTF-8 encoding is longer than PASSWORD_MAX_BYTES.
    Request models reject such passwords with a 422 before they get here.
    """
    encoded = plain.encode("utf-8")
    if len(encoded) > PASSWORD_MAX_BYTES:
        raise ValueError(f"password exceeds {PASSWORD_MAX_BYTES} bytes")
    salt = bcrypt.gensalt(rounds=_settings.bcrypt_rounds)
    return bcrypt.hashpw(encoded, salt).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    A malformed stored hash is a mismatch, not an error.
    """
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones.
_DUMMY_HASH: str = hash_password("clubgate_timing_dummy")


# ---------------------------------------------------------------------------
# Token encode / verify
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class IssuedToken:
    token: str
    expires_at: datetime


def create_access_token(user_id: str, expires_delta: timedelta | None = None) -> IssuedToken:
    """Encode a signed token for user_id.

    Args:
        user_id:       Opaque user id, stored as the sub claim.
        expires_delta: Lifetime override. Defaults to
                       Settings.token_expire_seconds (7 days).

    The returned expires_at is the same instant as the exp claim, so the
    session row created alongside the token expires together with it.
    """
    if expires_delta is None:
        expires_delta = timedelta(seconds=_settings.token_expire_seconds)
    now = datetime.now(timezone.utc)
    expire = now + expires_delta
    payload = {
        "sub": user_id,
        "iat": now,
        "exp": expire,
        "jti": secrets.token_hex(8),
    }
    token = jwt.encode(payload, _settings.secret_key, algorithm=_ALGORITHM)
    # exp is serialized with one-second resolution; report what the token says.
    return IssuedToken(token=token, expires_at=expire.replace(microsecond=0))


def verify_access_token(token: str) -> str:
    """Verify signature and expiry; return the user id from the sub claim.

    Raises InvalidCredential on any failure.
    """
    try:
        payload = jwt.decode(token, _settings.secret_key, algorithms=[_ALGORITHM])
    except JWTError as exc:
        raise InvalidCredential(detail=type(exc).__name__) from exc
    user_id = payload.get("sub")
    if not isinstance(user_id, str) or not user_id:
        raise InvalidCredential(detail="missing subject")
    return user_id


# ---------------------------------------------------------------------------
# User authentication (constant-time)
# ---------------------------------------------------------------------------


def authenticate_user(store: UserStore, email: str, password: str) -> User | None:
    """Authenticate an email/password login with timing equalization.

    Always runs bcrypt whether or not the user exists:
    - Unknown email: bcrypt runs against _DUMMY_HASH (same cost as real check)
    - Wrong password: bcrypt runs against the real hash (same cost)

    Returns the User on success, None on any failure. Inactive users fail
    only after their password has been checked, for the same reason.
    """
    user = store.get_by_email(email)
    if user is None:
        verify_password(password, _DUMMY_HASH)
        return None
    if not verify_password(password, user.hashed_password):
        return None
    if not user.is_active:
        return None
    return user


# ---------------------------------------------------------------------------
# Password reset tokens
# ---------------------------------------------------------------------------


def generate_reset_token() -> str:
    """Return a new raw reset token: 64 hex chars (32 random bytes)."""
    return secrets.token_hex(32)


def hash_reset_token(raw: str) -> str:
    """HMAC-SHA256 of a raw reset token, keyed with SECRET_KEY.

    Only this digest is stored, so a copy of the database cannot be replayed
    against the reset endpoint.
    """
    return hmac.new(_settings.secret_key.encode(), raw.encode(), hashlib.sha256).hexdigest()
