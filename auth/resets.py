"""
auth/resets.py -- Single-use password reset tokens.

issue() hands back the raw token exactly once; the table keeps only its
HMAC digest. Issuing a new token retires any earlier unused ones for the same
user, so at most one reset is outstanding per account.

redeem() is one conditional UPDATE, the same shape as InviteStore.redeem():

    UPDATE password_reset_tokens SET used = 1
     WHERE token_hash = :h AND NOT used AND expires_at > :now

Two concurrent redeemers of one token get exactly one updated row between
them. Unknown, used and expired tokens are indistinguishable to the caller.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from sqlalchemy.engine import Engine

from auth.errors import InvalidResetToken
from auth.models import PasswordReset
from auth.store import from_db, password_reset_tokens, to_db, utcnow
from auth.tokens import generate_reset_token, hash_reset_token

logger = logging.getLogger("clubgate.auth")


class PasswordResetStore:
    """Repository and issuer for PasswordReset records."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def issue(self, user_id: str, ttl: timedelta, now: datetime | None = None) -> tuple[str, PasswordReset]:
        """Persist a fresh token for user_id; return (raw_token, record)."""
        now = now or utcnow()
        raw = generate_reset_token()
        reset = PasswordReset(
            user_id=user_id,
            token_hash=hash_reset_token(raw),
            expires_at=now + ttl,
            created_at=now,
        )
        with self.engine.begin() as conn:
            conn.execute(
                password_reset_tokens.update()
                .where((password_reset_tokens.c.user_id == user_id) & (password_reset_tokens.c.used.is_(False)))
                .values(used=True)
            )
            result = conn.execute(
                password_reset_tokens.insert().values(
                    token_hash=reset.token_hash,
                    user_id=user_id,
                    expires_at=to_db(reset.expires_at),
                    used=False,
                    created_at=to_db(now),
                )
            )
        reset.id = result.inserted_primary_key[0]
        logger.info("Password reset token issued for user %s", user_id)
        return raw, reset

    def get(self, raw_token: str) -> PasswordReset | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                password_reset_tokens.select().where(password_reset_tokens.c.token_hash == hash_reset_token(raw_token))
            ).fetchone()
        return _row_to_reset(row) if row is not None else None

    def redeem(self, raw_token: str, now: datetime | None = None) -> PasswordReset:
        """Mark the token used and return it. Raises InvalidResetToken if it was not usable."""
        now = now or utcnow()
        token_hash = hash_reset_token(raw_token)
        with self.engine.begin() as conn:
            result = conn.execute(
                password_reset_tokens.update()
                .where(
                    (password_reset_tokens.c.token_hash == token_hash)
                    & (password_reset_tokens.c.used.is_(False))
                    & (password_reset_tokens.c.expires_at > to_db(now))
                )
                .values(used=True)
            )
            if result.rowcount != 1:
                raise InvalidResetToken()
            row = conn.execute(
                password_reset_tokens.select().where(password_reset_tokens.c.token_hash == token_hash)
            ).fetchone()
        return _row_to_reset(row)

    def delete_expired(self, now: datetime | None = None) -> int:
        """Delete tokens past expiry or already used. Returns rows removed."""
        now = now or utcnow()
        with self.engine.begin() as conn:
            result = conn.execute(
                password_reset_tokens.delete().where(
                    (password_reset_tokens.c.expires_at <= to_db(now)) | (password_reset_tokens.c.used.is_(True))
                )
            )
        return result.rowcount


def _row_to_reset(row) -> PasswordReset:
    return PasswordReset(
        id=row.id,
        user_id=row.user_id,
        token_hash=row.token_hash,
        expires_at=from_db(row.expires_at),
        used=bool(row.used),
        created_at=from_db(row.created_at),
    )
