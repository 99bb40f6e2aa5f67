"""Unit tests for auth/dependencies.py -- the per-request authentication state machine.

Covers:
- Bearer header parsing -> MissingCredential
- Invalid / expired token -> InvalidCredential
- Live session -> identity attached, no new session row
- Session self-heal: valid token with no session row creates one and succeeds
- Self-heal storage failure -> SessionUnavailable
- Inactive or deleted user -> UserInactiveOrMissing, even with a live session
"""

from datetime import timedelta
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from auth.dependencies import authenticate_token, extract_bearer_token
from auth.errors import (
    InvalidCredential,
    MissingCredential,
    SessionUnavailable,
    UserInactiveOrMissing,
)
from auth.roles import Role
from auth.store import SessionStore, utcnow
from auth.tokens import create_access_token


class TestExtractBearerToken:
    def test_valid_header(self):
        assert extract_bearer_token("Bearer abc.def.ghi") == "abc.def.ghi"

    def test_scheme_is_case_insensitive(self):
        assert extract_bearer_token("bearer abc") == "abc"

    @pytest.mark.parametrize("header", [None, "", "Bearer", "Bearer   ", "Basic dXNlcjpwYXNz", "abc"])
    def test_missing_or_malformed(self, header):
        with pytest.raises(MissingCredential) as exc_info:
            extract_bearer_token(header)
        assert exc_info.value.status_code == 401


class TestAuthenticateToken:
    def test_live_session(self, user_store, session_store, make_user):
        uid = make_user("m@test.org", Role.PRINTER_MANAGER)
        issued = create_access_token(uid)
        session_store.create(uid, issued.token, issued.expires_at)

        identity = authenticate_token(issued.token, user_store, session_store)

        assert identity.id == uid
        assert identity.email == "m@test.org"
        assert identity.role is Role.PRINTER_MANAGER
        assert session_store.count_for_user(uid) == 1

    def test_invalid_token(self, user_store, session_store):
        with pytest.raises(InvalidCredential):
            authenticate_token("not-a-token", user_store, session_store)

    def test_expired_token_never_heals(self, user_store, session_store, make_user):
        uid = make_user("m@test.org")
        issued = create_access_token(uid, expires_delta=timedelta(seconds=-5))
        with pytest.raises(InvalidCredential):
            authenticate_token(issued.token, user_store, session_store)
        assert session_store.count_for_user(uid) == 0

    def test_self_heal_recreates_missing_session(self, user_store, session_store, make_user):
        uid = make_user("m@test.org")
        issued = create_access_token(uid)
        assert session_store.find_valid(uid, issued.token) is None

        identity = authenticate_token(issued.token, user_store, session_store)

        assert identity.id == uid
        healed = session_store.find_valid(uid, issued.token)
        assert healed is not None
        assert healed.expires_at > utcnow() + timedelta(days=6)

    def test_self_heal_after_expired_session_row(self, user_store, session_store, make_user):
        uid = make_user("m@test.org")
        issued = create_access_token(uid)
        session_store.create(uid, issued.token, utcnow() - timedelta(minutes=1))

        authenticate_token(issued.token, user_store, session_store)

        assert session_store.find_valid(uid, issued.token) is not None

    def test_second_request_reuses_healed_session(self, user_store, session_store, make_user):
        uid = make_user("m@test.org")
        issued = create_access_token(uid)
        authenticate_token(issued.token, user_store, session_store)
        authenticate_token(issued.token, user_store, session_store)
        assert session_store.count_for_user(uid) == 1

    def test_self_heal_failure(self, user_store, make_user):
        uid = make_user("m@test.org")
        issued = create_access_token(uid)
        broken = MagicMock(spec=SessionStore)
        broken.find_valid.return_value = None
        broken.create.side_effect = OperationalError("INSERT INTO sessions", {}, Exception("disk I/O error"))

        with pytest.raises(SessionUnavailable) as exc_info:
            authenticate_token(issued.token, user_store, broken)
        assert exc_info.value.code == "session_unavailable"
        assert exc_info.value.status_code == 401

    def test_inactive_user_rejected_despite_live_session(self, user_store, session_store, make_user):
        uid = make_user("m@test.org")
        issued = create_access_token(uid)
        session_store.create(uid, issued.token, issued.expires_at)
        user_store.update_user(uid, is_active=False)

        with pytest.raises(UserInactiveOrMissing) as exc_info:
            authenticate_token(issued.token, user_store, session_store)
        assert exc_info.value.status_code == 403

    def test_unknown_user_rejected(self, user_store, session_store):
        issued = create_access_token("f" * 32)
        with pytest.raises(UserInactiveOrMissing):
            authenticate_token(issued.token, user_store, session_store)
