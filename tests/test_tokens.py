"""Unit tests for auth/tokens.py -- token codec and password hashing.

Covers:
- verify(create(u)) returns u's id until expiry
- expired, tampered, foreign-key and garbage tokens raise InvalidCredential
- two tokens for one user never collide (jti)
- bcrypt hash/verify, including malformed stored hashes
- passwords over 72 UTF-8 bytes are refused before bcrypt sees them
- reset token digests are keyed and deterministic
- authenticate_user() outcomes for unknown email, wrong password, inactive user
"""

from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

from auth.errors import InvalidCredential
from auth.roles import Role
from auth.tokens import (
    authenticate_user,
    create_access_token,
    generate_reset_token,
    hash_password,
    hash_reset_token,
    verify_access_token,
    verify_password,
)


class TestAccessToken:
    def test_round_trip_returns_user_id(self):
        issued = create_access_token("abc123")
        assert verify_access_token(issued.token) == "abc123"

    def test_expires_at_matches_requested_lifetime(self):
        before = datetime.now(timezone.utc)
        issued = create_access_token("abc123", expires_delta=timedelta(hours=1))
        assert issued.expires_at.tzinfo is not None
        assert timedelta(minutes=59) < issued.expires_at - before <= timedelta(hours=1, seconds=1)

    def test_default_lifetime_is_seven_days(self):
        issued = create_access_token("abc123")
        remaining = issued.expires_at - datetime.now(timezone.utc)
        assert timedelta(days=6, hours=23) < remaining <= timedelta(days=7)

    def test_expired_token_rejected(self):
        issued = create_access_token("abc123", expires_delta=timedelta(seconds=-10))
        with pytest.raises(InvalidCredential) as exc_info:
            verify_access_token(issued.token)
        assert exc_info.value.code == "invalid_credential"

    def test_tampered_signature_rejected(self):
        token = create_access_token("abc123").token
        head, body, sig = token.split(".")
        forged = ".".join([head, body, sig[::-1]])
        with pytest.raises(InvalidCredential):
            verify_access_token(forged)

    def test_token_signed_with_other_key_rejected(self):
        exp = datetime.now(timezone.utc) + timedelta(hours=1)
        foreign = jwt.encode({"sub": "abc123", "exp": exp}, "x" * 40, algorithm="HS256")
        with pytest.raises(InvalidCredential):
            verify_access_token(foreign)

    @pytest.mark.parametrize("garbage", ["", "not-a-token", "a.b.c"])
    def test_garbage_rejected(self, garbage):
        with pytest.raises(InvalidCredential):
            verify_access_token(garbage)

    def test_tokens_for_same_user_are_distinct(self):
        assert create_access_token("abc123").token != create_access_token("abc123").token


class TestPasswordHashing:
    def test_hash_and_verify(self):
        hashed = hash_password("correct horse")
        assert hashed != "correct horse"
        assert verify_password("correct horse", hashed)
        assert not verify_password("wrong horse", hashed)

    def test_same_password_hashes_differently(self):
        assert hash_password("pw12345678") != hash_password("pw12345678")

    def test_malformed_hash_is_a_mismatch(self):
        assert verify_password("anything", "not-a-bcrypt-hash") is False

    def test_limit_is_bytes_not_characters(self):
        # 37 two-byte characters: under 72 characters, over 72 bytes.
        with pytest.raises(ValueError):
            hash_password("\u00e9" * 37)

    def test_exactly_72_bytes_accepted(self):
        hashed = hash_password("\u00e9" * 36)
        assert verify_password("\u00e9" * 36, hashed)

    def test_surrounding_whitespace_is_significant(self):
        hashed = hash_password("  padded pass  ")
        assert verify_password("  padded pass  ", hashed)
        assert not verify_password("padded pass", hashed)


class TestResetTokenHelpers:
    def test_generated_tokens_are_hex_and_unique(self):
        tokens = {generate_reset_token() for _ in range(20)}
        assert len(tokens) == 20
        assert all(len(t) == 64 and int(t, 16) >= 0 for t in tokens)

    def test_digest_is_deterministic(self):
        raw = generate_reset_token()
        assert hash_reset_token(raw) == hash_reset_token(raw)
        assert hash_reset_token(raw) != hash_reset_token(generate_reset_token())
        assert len(hash_reset_token(raw)) == 64


class TestAuthenticateUser:
    def test_success(self, user_store, make_user):
        uid = make_user("ok@test.org", Role.CAPTAIN, password="goodpass123")
        user = authenticate_user(user_store, "ok@test.org", "goodpass123")
        assert user is not None
        assert user.id == uid
        assert user.role is Role.CAPTAIN

    def test_unknown_email(self, user_store):
        assert authenticate_user(user_store, "nobody@test.org", "whatever") is None

    def test_wrong_password(self, user_store, make_user):
        make_user("ok@test.org", password="goodpass123")
        assert authenticate_user(user_store, "ok@test.org", "badpass123") is None

    def test_inactive_user(self, user_store, make_user):
        make_user("gone@test.org", password="goodpass123", is_active=False)
        assert authenticate_user(user_store, "gone@test.org", "goodpass123") is None

    def test_email_is_case_sensitive(self, user_store, make_user):
        make_user("Case@test.org", password="goodpass123")
        assert authenticate_user(user_store, "case@test.org", "goodpass123") is None
