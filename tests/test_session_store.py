"""Unit tests for auth/store.py -- UserStore and SessionStore.

Covers:
- find_valid() matches the exact (user_id, token) pair and never returns an
  expired session
- delete_by_token / delete_expired / delete_for_user (with keep_token)
- UserStore create/get/update, duplicate email, unknown update fields
- count_active_admins ignores inactive admins
"""

from datetime import timedelta

import pytest
from sqlalchemy.exc import IntegrityError

from auth.models import User
from auth.roles import Role
from auth.store import from_db, to_db, utcnow


class TestSessionStore:
    def test_create_and_find(self, session_store):
        expires = utcnow() + timedelta(hours=1)
        created = session_store.create("u1", "tok-a", expires)
        found = session_store.find_valid("u1", "tok-a")
        assert found is not None
        assert found.id == created.id
        assert found.user_id == "u1"
        assert found.expires_at.tzinfo is not None

    def test_find_requires_exact_pair(self, session_store):
        session_store.create("u1", "tok-a", utcnow() + timedelta(hours=1))
        assert session_store.find_valid("u2", "tok-a") is None
        assert session_store.find_valid("u1", "tok-b") is None

    def test_expired_session_never_returned(self, session_store):
        now = utcnow()
        session_store.create("u1", "tok-a", now + timedelta(seconds=30))
        assert session_store.find_valid("u1", "tok-a", now=now) is not None
        assert session_store.find_valid("u1", "tok-a", now=now + timedelta(seconds=30)) is None
        assert session_store.find_valid("u1", "tok-a", now=now + timedelta(minutes=5)) is None

    def test_delete_by_token(self, session_store):
        session_store.create("u1", "tok-a", utcnow() + timedelta(hours=1))
        assert session_store.delete_by_token("tok-a") is True
        assert session_store.find_valid("u1", "tok-a") is None
        assert session_store.delete_by_token("tok-a") is False

    def test_delete_expired_keeps_live_sessions(self, session_store):
        now = utcnow()
        session_store.create("u1", "old-1", now - timedelta(minutes=1))
        session_store.create("u1", "old-2", now - timedelta(days=2))
        session_store.create("u1", "live", now + timedelta(hours=1))
        assert session_store.delete_expired(now=now) == 2
        assert session_store.count_for_user("u1") == 1
        assert session_store.find_valid("u1", "live", now=now) is not None

    def test_delete_for_user_with_keep_token(self, session_store):
        expires = utcnow() + timedelta(hours=1)
        for token in ("t1", "t2", "t3"):
            session_store.create("u1", token, expires)
        session_store.create("u2", "other", expires)

        assert session_store.delete_for_user("u1", keep_token="t2") == 2
        assert session_store.find_valid("u1", "t2") is not None
        assert session_store.find_valid("u1", "t1") is None
        assert session_store.count_for_user("u2") == 1

        assert session_store.delete_for_user("u1") == 1
        assert session_store.count_for_user("u1") == 0


class TestTimestampConversion:
    def test_round_trip_is_utc_aware(self):
        now = utcnow()
        stored = to_db(now)
        assert stored.tzinfo is None
        assert from_db(stored) == now

    def test_none_passes_through(self):
        assert to_db(None) is None
        assert from_db(None) is None


class TestUserStore:
    def test_create_and_lookup(self, user_store):
        uid = user_store.create_user(
            User(email="a@test.org", role=Role.CAPTAIN, hashed_password="x", first_name="Ann")
        )
        assert len(uid) == 32
        by_email = user_store.get_by_email("a@test.org")
        by_id = user_store.get_by_id(uid)
        assert by_email == by_id
        assert by_id.role is Role.CAPTAIN
        assert by_id.is_active is True
        assert by_id.created_at
        assert by_id.last_login is None

    def test_has_users(self, user_store, make_user):
        assert user_store.has_users() is False
        make_user("a@test.org")
        assert user_store.has_users() is True

    def test_duplicate_email_raises(self, user_store, make_user):
        make_user("dup@test.org")
        with pytest.raises(IntegrityError):
            user_store.create_user(User(email="dup@test.org", role=Role.MEMBER, hashed_password="x"))

    def test_update_user(self, user_store, make_user):
        uid = make_user("a@test.org")
        assert user_store.update_user(uid, role=Role.PRESIDENT, first_name="Pat") is True
        user = user_store.get_by_id(uid)
        assert user.role is Role.PRESIDENT
        assert user.first_name == "Pat"

    def test_update_unknown_user_returns_false(self, user_store):
        assert user_store.update_user("0" * 32, first_name="Nobody") is False

    def test_update_rejects_unknown_fields(self, user_store, make_user):
        uid = make_user("a@test.org")
        with pytest.raises(ValueError):
            user_store.update_user(uid, email="b@test.org")

    def test_count_active_admins(self, user_store, make_user):
        make_user("a1@test.org", Role.ADMIN)
        make_user("a2@test.org", Role.ADMIN, is_active=False)
        make_user("c@test.org", Role.CAPTAIN)
        assert user_store.count_active_admins() == 1

    def test_update_last_login(self, user_store, make_user):
        uid = make_user("a@test.org")
        user_store.update_last_login(uid)
        assert user_store.get_by_id(uid).last_login is not None

    def test_list_users(self, user_store, make_user):
        make_user("a@test.org")
        make_user("b@test.org", Role.CAPTAIN)
        assert {u.email for u in user_store.list_users()} == {"a@test.org", "b@test.org"}
