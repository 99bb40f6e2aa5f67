"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper.
UserStore and SessionStore are the repositories; InviteStore (auth/invites.py)
and PasswordResetStore (auth/resets.py) share this module's schema. The
_row_to_* functions are the mappers.
Route and dependency code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

Concurrency:
  Every mutation is one statement in its own transaction (engine.begin()).
  SQLite runs in WAL mode with a busy timeout so concurrent writers queue
  instead of failing; other SQLAlchemy backends bring their own row locking.

Timestamps:
  Expiry columns are DateTime holding naive UTC. Everything above this module
  deals in aware UTC datetimes; to_db/from_db convert at the boundary so
  comparisons in SQL are like-for-like.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    func,
    select,
)
from sqlalchemy.engine import Engine

from auth.models import Session, User
from auth.roles import Role

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

users = Table(
    "users",
    metadata,
    Column("id", String(32), primary_key=True),  # uuid4 hex
    Column("email", String(255), nullable=False, unique=True),
    Column("hashed_password", Text, nullable=False),
    Column("role", String(30), nullable=False, server_default=Role.MEMBER.value),
    Column("first_name", String(100)),
    Column("last_name", String(100)),
    Column("is_active", Boolean, nullable=False, server_default="1"),
    Column("created_at", String(32), nullable=False),
    Column("last_login", String(32)),
)

# token is indexed but deliberately not UNIQUE: the self-heal path in
# auth/dependencies.py may race with itself for one token, and duplicate rows
# for the same (user_id, token) are harmless -- delete_by_token removes all.
sessions = Table(
    "sessions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", String(32), nullable=False),
    Column("token", Text, nullable=False),
    Column("expires_at", DateTime, nullable=False),
    Column("created_at", DateTime, nullable=False),
    Index("ix_sessions_token", "token"),
    Index("ix_sessions_user_id", "user_id"),
)

invite_codes = Table(
    "invite_codes",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("code", String(64), nullable=False, unique=True),
    Column("role", String(30), nullable=False),
    Column("max_uses", Integer, nullable=False, server_default="1"),
    Column("current_uses", Integer, nullable=False, server_default="0"),
    Column("expires_at", DateTime),  # NULL = never expires
    Column("created_by", String(32), nullable=False),
    Column("is_active", Boolean, nullable=False, server_default="1"),
    Column("created_at", DateTime, nullable=False),
)

# Only the HMAC digest of a reset token is stored; see auth/tokens.py.
password_reset_tokens = Table(
    "password_reset_tokens",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("token_hash", String(64), nullable=False, unique=True),
    Column("user_id", String(32), nullable=False),
    Column("expires_at", DateTime, nullable=False),
    Column("used", Boolean, nullable=False, server_default="0"),
    Column("created_at", DateTime, nullable=False),
    Index("ix_password_reset_tokens_user_id", "user_id"),
)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def create_auth_engine(db_url: str) -> Engine:
    """Create the engine shared by every store.

    Creates missing tables. For SQLite, check_same_thread is off because
    FastAPI runs sync handlers on a thread pool, and the busy timeout lets
    concurrent writers wait for the write lock rather than erroring.
    """
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
        connect_args["timeout"] = 30
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    metadata.create_all(engine)
    return engine


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _now_iso() -> str:
    return utcnow().isoformat()


def to_db(value: datetime | None) -> datetime | None:
    """Aware datetime -> naive UTC for storage. Naive input is taken as UTC."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def from_db(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    return value.replace(tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User records.

    Usage:
        engine = create_auth_engine("sqlite:///clubgate_auth.db")
        store = UserStore(engine)
        user_id = store.create_user(User(email="a@b.org", role=Role.ADMIN, hashed_password=hash_password("pw")))
        user = store.get_by_email("a@b.org")
    """

    # Columns update_user() accepts. Anything else is a programming error.
    _MUTABLE_FIELDS = frozenset({"role", "is_active", "first_name", "last_name", "hashed_password"})

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def has_users(self) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(users)).scalar()
        return (result or 0) > 0

    def create_user(self, user: User) -> str:
        """Insert a new user and return its generated id.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        Callers translate that into a 409.
        """
        user_id = uuid.uuid4().hex
        with self.engine.begin() as conn:
            conn.execute(
                users.insert().values(
                    id=user_id,
                    email=user.email,
                    hashed_password=user.hashed_password,
                    role=Role(user.role).value,
                    first_name=user.first_name,
                    last_name=user.last_name,
                    is_active=user.is_active,
                    created_at=_now_iso(),
                )
            )
        return user_id

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by exact email (case-sensitive). Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(users.select().where(users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(users.select().where(users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_users(self) -> list[User]:
        """Return all users, oldest first. Admin-only operation."""
        with self.engine.connect() as conn:
            rows = conn.execute(users.select().order_by(users.c.created_at, users.c.email)).fetchall()
        return [_row_to_user(r) for r in rows]

    def update_user(self, user_id: str, **fields) -> bool:
        """Update mutable fields on an existing user.

        Accepted fields: role, is_active, first_name, last_name,
        hashed_password. Unknown keys raise ValueError rather than being
        silently dropped.

        Returns True if a row was updated, False if user_id was not found.
        """
        unknown = set(fields) - self._MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {sorted(unknown)!r}")
        if not fields:
            return False
        if "role" in fields:
            fields["role"] = Role(fields["role"]).value
        with self.engine.begin() as conn:
            result = conn.execute(users.update().where(users.c.id == user_id).values(**fields))
        return result.rowcount > 0

    def count_active_admins(self) -> int:
        """Used by PATCH /users/{id} to prevent deactivating or demoting the last admin."""
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count())
                .select_from(users)
                .where((users.c.role == Role.ADMIN.value) & (users.c.is_active.is_(True)))
            ).scalar()
        return result or 0

    def update_last_login(self, user_id: str) -> None:
        with self.engine.begin() as conn:
            conn.execute(users.update().where(users.c.id == user_id).values(last_login=_now_iso()))

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


class SessionStore:
    """Repository for Session rows -- the revocable half of authentication.

    find_valid() is the only read the request path performs. The expired-row
    sweep (delete_expired) races harmlessly with it: find_valid already
    filters on expires_at > now, so a row the sweep is about to delete is
    never returned either way.
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def create(self, user_id: str, token: str, expires_at: datetime) -> Session:
        created = utcnow()
        with self.engine.begin() as conn:
            result = conn.execute(
                sessions.insert().values(
                    user_id=user_id,
                    token=token,
                    expires_at=to_db(expires_at),
                    created_at=to_db(created),
                )
            )
        return Session(
            id=result.inserted_primary_key[0],
            user_id=user_id,
            token=token,
            expires_at=expires_at,
            created_at=created,
        )

    def find_valid(self, user_id: str, token: str, now: datetime | None = None) -> Session | None:
        """Return the session for exactly (user_id, token) if it has not expired."""
        now = now or utcnow()
        with self.engine.connect() as conn:
            row = conn.execute(
                sessions.select()
                .where(
                    (sessions.c.user_id == user_id)
                    & (sessions.c.token == token)
                    & (sessions.c.expires_at > to_db(now))
                )
                .limit(1)
            ).fetchone()
        return _row_to_session(row) if row is not None else None

    def delete_by_token(self, token: str) -> bool:
        with self.engine.begin() as conn:
            result = conn.execute(sessions.delete().where(sessions.c.token == token))
        return result.rowcount > 0

    def delete_expired(self, now: datetime | None = None) -> int:
        """Delete every session with expires_at <= now. Returns rows removed."""
        now = now or utcnow()
        with self.engine.begin() as conn:
            result = conn.execute(sessions.delete().where(sessions.c.expires_at <= to_db(now)))
        return result.rowcount

    def delete_for_user(self, user_id: str, keep_token: str | None = None) -> int:
        """Revoke all of a user's sessions, optionally sparing the caller's own."""
        condition = sessions.c.user_id == user_id
        if keep_token is not None:
            condition = condition & (sessions.c.token != keep_token)
        with self.engine.begin() as conn:
            result = conn.execute(sessions.delete().where(condition))
        return result.rowcount

    def count_for_user(self, user_id: str) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count()).select_from(sessions).where(sessions.c.user_id == user_id)
            ).scalar()
        return result or 0


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        hashed_password=row.hashed_password,
        role=Role(row.role),
        first_name=row.first_name,
        last_name=row.last_name,
        is_active=bool(row.is_active),
        created_at=row.created_at,
        last_login=row.last_login,
    )


def _row_to_session(row) -> Session:
    return Session(
        id=row.id,
        user_id=row.user_id,
        token=row.token,
        expires_at=from_db(row.expires_at),
        created_at=from_db(row.created_at),
    )
