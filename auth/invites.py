"""
auth/invites.py -- Invite code issuance, validation and consumption.

An invite code grants a role at signup. It is bounded-use (max_uses) and
optionally time-limited (expires_at), and can be revoked at any time.

Consumption is a single conditional UPDATE:

    UPDATE invite_codes
       SET current_uses = current_uses + 1,
           is_active    = CASE WHEN current_uses + 1 >= max_uses THEN 0 ELSE 1 END
     WHERE code = :code AND is_active AND current_uses < max_uses
       AND (expires_at IS NULL OR expires_at > :now)

The database evaluates the WHERE clause and the increment under one write
lock, so N concurrent consumers of a single-use code yield exactly one
updated row. There is no read-then-write window to race through.

validate() never trusts an earlier answer: all three conditions (active, not
expired, under max uses) are re-read from the row on every call.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime

from sqlalchemy import case, or_
from sqlalchemy.engine import Engine

from auth.errors import CodeExhausted, InvalidCredential
from auth.models import InviteCode
from auth.roles import Role
from auth.store import from_db, invite_codes, to_db, utcnow

logger = logging.getLogger("clubgate.auth")

# 16 random bytes -> 32 hex chars, 128 bits of entropy.
_CODE_BYTES = 16


class InviteStore:
    """Repository and issuer for InviteCode records."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    # ------------------------------------------------------------------
    # Issue / query
    # ------------------------------------------------------------------

    def issue(
        self,
        created_by: str,
        role: Role,
        max_uses: int = 1,
        expires_at: datetime | None = None,
    ) -> InviteCode:
        """Persist a new active code with current_uses=0 and return it."""
        if max_uses < 1:
            raise ValueError("max_uses must be at least 1")
        invite = InviteCode(
            code=secrets.token_hex(_CODE_BYTES),
            role=Role(role),
            max_uses=max_uses,
            created_by=created_by,
            expires_at=expires_at,
            created_at=utcnow(),
        )
        with self.engine.begin() as conn:
            result = conn.execute(
                invite_codes.insert().values(
                    code=invite.code,
                    role=invite.role.value,
                    max_uses=invite.max_uses,
                    current_uses=0,
                    expires_at=to_db(invite.expires_at),
                    created_by=invite.created_by,
                    is_active=True,
                    created_at=to_db(invite.created_at),
                )
            )
        invite.id = result.inserted_primary_key[0]
        logger.info("Invite code issued by %s for role %s (max_uses=%d)", created_by, invite.role.value, max_uses)
        return invite

    def get(self, code: str) -> InviteCode | None:
        with self.engine.connect() as conn:
            row = conn.execute(invite_codes.select().where(invite_codes.c.code == code)).fetchone()
        return _row_to_invite(row) if row is not None else None

    def list_codes(self, created_by: str | None = None) -> list[InviteCode]:
        """Return codes newest first, optionally only those issued by created_by."""
        query = invite_codes.select().order_by(invite_codes.c.created_at.desc(), invite_codes.c.id.desc())
        if created_by is not None:
            query = query.where(invite_codes.c.created_by == created_by)
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_invite(r) for r in rows]

    # ------------------------------------------------------------------
    # Validate / consume / deactivate
    # ------------------------------------------------------------------

    def validate(self, code: str, now: datetime | None = None) -> InviteCode:
        """Return the code if it is usable right now.

        Raises CodeExhausted when max uses have been reached, InvalidCredential
        when the code is unknown, deactivated or expired.
        """
        return _check_usable(self.get(code), now or utcnow())

    def redeem(self, code: str, now: datetime | None = None) -> InviteCode:
        """Atomically use the code once and return its updated state.

        Raises the same typed errors as validate() when the conditional
        update matches no row.
        """
        now = now or utcnow()
        stmt = (
            invite_codes.update()
            .where(
                (invite_codes.c.code == code)
                & (invite_codes.c.is_active.is_(True))
                & (invite_codes.c.current_uses < invite_codes.c.max_uses)
                & or_(invite_codes.c.expires_at.is_(None), invite_codes.c.expires_at > to_db(now))
            )
            .values(
                current_uses=invite_codes.c.current_uses + 1,
                is_active=case((invite_codes.c.current_uses + 1 >= invite_codes.c.max_uses, False), else_=True),
            )
        )
        with self.engine.begin() as conn:
            result = conn.execute(stmt)
        invite = self.get(code)
        if result.rowcount != 1:
            # Nothing matched: work out which condition failed, for messaging.
            _check_usable(invite, now)
            # Every condition passed on re-read, so another writer changed the
            # row between our UPDATE and SELECT. Treat the attempt as invalid.
            raise InvalidCredential("Invite code is no longer valid.")
        if not invite.is_active:
            logger.info("Invite code for role %s reached max uses and was deactivated", invite.role.value)
        return invite

    def consume(self, code: str, now: datetime | None = None) -> bool:
        """Use the code once. True on success, False if it was not usable."""
        try:
            self.redeem(code, now)
        except (InvalidCredential, CodeExhausted):
            return False
        return True

    def deactivate(self, code: str) -> bool:
        """Revoke the code regardless of remaining uses. False if it does not exist."""
        with self.engine.begin() as conn:
            result = conn.execute(invite_codes.update().where(invite_codes.c.code == code).values(is_active=False))
        return result.rowcount > 0


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _check_usable(invite: InviteCode | None, now: datetime) -> InviteCode:
    if invite is None:
        raise InvalidCredential("Invalid invite code.")
    # Checked before is_active: reaching max uses also clears is_active, and
    # the caller should hear "exhausted" rather than a generic rejection.
    if invite.current_uses >= invite.max_uses:
        raise CodeExhausted()
    if not invite.is_active:
        raise InvalidCredential("Invite code has been deactivated.")
    if invite.expires_at is not None and invite.expires_at <= now:
        raise InvalidCredential("Invite code has expired.")
    return invite


def _row_to_invite(row) -> InviteCode:
    return InviteCode(
        id=row.id,
        code=row.code,
        role=Role(row.role),
        max_uses=row.max_uses,
        current_uses=row.current_uses,
        expires_at=from_db(row.expires_at),
        created_by=row.created_by,
        is_active=bool(row.is_active),
        created_at=from_db(row.created_at),
    )
