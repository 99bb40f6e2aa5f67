"""
auth/errors.py -- Typed rejection reasons for the auth layer.

Every expected failure in authentication, authorization and invite handling
is one of these. Each carries a stable machine-checkable `code` and the HTTP
status the API layer should answer with; api/main.py maps them to the shared
error envelope in a single exception handler. Anything that is NOT an
AuthError is an unexpected failure and goes to the generic 500 handler.

Layer rule: stdlib only.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for recoverable auth rejections."""

    code = "auth_error"
    status_code = 401
    default_message = "Authentication failed."

    def __init__(self, message: str | None = None, detail: str | None = None) -> None:
        self.message = message or self.default_message
        self.detail = detail
        super().__init__(self.message)


class MissingCredential(AuthError):
    code = "missing_credential"
    status_code = 401
    default_message = "Authentication required."


class InvalidCredential(AuthError):
    """Bad, malformed or expired token -- or an invite code failing a check."""

    code = "invalid_credential"
    status_code = 401
    default_message = "Invalid or expired credential."


class SessionUnavailable(AuthError):
    """The session row was missing and could not be recreated."""

    code = "session_unavailable"
    status_code = 401
    default_message = "Session could not be established."


class UserInactiveOrMissing(AuthError):
    code = "user_inactive_or_missing"
    status_code = 403
    default_message = "User not found or inactive."


class InsufficientPermission(AuthError):
    code = "insufficient_permission"
    status_code = 403
    default_message = "Insufficient permissions."


class InsufficientRole(AuthError):
    code = "insufficient_role"
    status_code = 403
    default_message = "Insufficient role level."


class CodeExhausted(AuthError):
    """Invite code reached max uses. Distinct from InvalidCredential for user messaging."""

    code = "code_exhausted"
    status_code = 403
    default_message = "This invite code has already been used the maximum number of times."


class InvalidResetToken(AuthError):
    """Reset token unknown, already used or expired. One answer for all three."""

    code = "invalid_reset_token"
    status_code = 400
    default_message = "Invalid or expired reset token."
