"""
auth/dependencies.py -- Request authentication state machine and FastAPI Depends() helpers.

Per request, terminal states are "identity attached" or "rejected":

  1. Extract the bearer token from Authorization      -> MissingCredential
  2. Verify signature + expiry (auth/tokens.py)      -> InvalidCredential
  3. Look up a live session for (user_id, token).
     None found: SESSION SELF-HEAL -- recreate the row for this exact
     (user_id, token) with a fresh expiry window.     -> SessionUnavailable
  4. Load the user; must exist and be active          -> UserInactiveOrMissing
  5. Attach Identity to request.state.identity

Session self-heal is deliberate. A token that verifies was issued by us, so a
missing session row (store reset, restored backup, sweep clock skew) is
treated as lost bookkeeping rather than revocation: availability wins over
session-of-record purity. Step 3 is the only write on the request path.
Deactivating a user is the hard revocation -- step 4 rejects regardless of
any session.

authenticate_token() is the framework-free core and is what unit tests call.
get_current_identity() and guarded() adapt it to FastAPI. All dependencies
here are sync functions, so FastAPI runs them on its worker thread pool and
the DB round-trips never block the event loop.

Layer rule: no imports from api/. fastapi is allowed here because this module
is part of the dependency injection wiring.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from fastapi import Depends, Request
from sqlalchemy.exc import SQLAlchemyError

from auth.errors import MissingCredential, SessionUnavailable, UserInactiveOrMissing
from auth.guards import Guard, check_all
from auth.models import Identity
from auth.store import SessionStore, UserStore, utcnow
from auth.tokens import verify_access_token
from core.config import get_settings

logger = logging.getLogger("clubgate.auth")


def extract_bearer_token(authorization: str | None) -> str:
    """Return the token from an "Authorization: Bearer <token>" header value."""
    if not authorization:
        raise MissingCredential()
    scheme, _, token = authorization.partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token:
        raise MissingCredential("Bearer token required.")
    return token


def authenticate_token(
    token: str,
    user_store: UserStore,
    session_store: SessionStore,
    now: datetime | None = None,
) -> Identity:
    """Run steps 2-4 of the state machine for an already-extracted token."""
    user_id = verify_access_token(token)
    now = now or utcnow()

    if session_store.find_valid(user_id, token, now) is None:
        _heal_session(session_store, user_id, token, now)

    user = user_store.get_by_id(user_id)
    if user is None or not user.is_active:
        raise UserInactiveOrMissing()
    return Identity.from_user(user)


def _heal_session(session_store: SessionStore, user_id: str, token: str, now: datetime) -> None:
    expires_at = now + timedelta(seconds=get_settings().token_expire_seconds)
    try:
        session_store.create(user_id, token, expires_at)
    except SQLAlchemyError as exc:
        logger.error("Session self-heal failed for user %s: %s", user_id, type(exc).__name__)
        raise SessionUnavailable() from exc
    logger.warning("Session row missing for user %s -- recreated from valid token", user_id)


# ---------------------------------------------------------------------------
# FastAPI dependencies
# ---------------------------------------------------------------------------


def get_bearer_token(request: Request) -> str:
    return extract_bearer_token(request.headers.get("Authorization"))


def get_current_identity(request: Request) -> Identity:
    """Require authentication. Raises an AuthError subclass if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(identity: Identity = Depends(get_current_identity)): ...
    """
    token = get_bearer_token(request)
    identity = authenticate_token(token, request.app.state.user_store, request.app.state.session_store)
    request.state.identity = identity
    return identity


def guarded(*guards: Guard) -> Callable[..., Identity]:
    """Build a dependency that authenticates, then applies guards in order.

    Use as a FastAPI dependency:
        @router.get("/admin-only")
        def route(identity: Identity = Depends(guarded(require_role(Role.ADMIN)))): ...
    """

    def dependency(identity: Identity = Depends(get_current_identity)) -> Identity:
        check_all(identity, guards)
        return identity

    return dependency
