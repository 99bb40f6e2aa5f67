"""
api/routes/v1/auth.py -- Authentication, signup, user and invite management endpoints.

Routes:
  POST   /api/v1/auth/login                    -- password login; issues token + session
  POST   /api/v1/auth/logout                   -- deletes the session for the presented token
  GET    /api/v1/auth/me                       -- current identity + permissions (requires auth)
  POST   /api/v1/auth/signup                   -- create an account with an invite code
  POST   /api/v1/auth/password-reset/request   -- issue a single-use reset token (generic answer)
  POST   /api/v1/auth/password-reset/confirm   -- set a new password with a reset token
  POST   /api/v1/auth/change-password          -- requires auth; revokes other sessions
  GET    /api/v1/auth/roles                    -- role catalogue (requires auth)
  GET    /api/v1/auth/users                    -- list users (admin)
  POST   /api/v1/auth/users                    -- create user with any role (admin)
  PATCH  /api/v1/auth/users/{id}               -- update role/is_active/names (admin)
  POST   /api/v1/auth/invite-codes             -- issue a code (manage_users, rank >= granted role)
  GET    /api/v1/auth/invite-codes             -- list codes (manage_users or manage_roles)
  DELETE /api/v1/auth/invite-codes/{code}      -- deactivate a code (captain rank + manage_users)

Security:
  POST /login, /signup and both password-reset routes are rate-limited per IP.
  authenticate_user() provides timing equalization -- use it, never inline.
  Login failures are one generic "bad_credentials" answer whether or not the
  email exists. Cache-Control: no-store on responses carrying a token.
  PATCH /users/{id} blocks self-deactivation and removing the last admin.

Threading:
  Handlers that hash passwords or touch the DB are plain `def`, so FastAPI
  runs them on its worker thread pool. bcrypt's deliberate slowness never
  stalls the event loop.
"""

from __future__ import annotations

import logging
from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError

from api.limiter import limiter
from api.models import (
    ChangePasswordRequest,
    IdentityResponse,
    InviteCodeResponse,
    InviteCreate,
    LoginRequest,
    LoginResponse,
    MeResponse,
    MessageResponse,
    PasswordResetConfirm,
    PasswordResetRequest,
    RoleInfo,
    SignupRequest,
    UserCreate,
    UserPatch,
    UserResponse,
)
from auth.dependencies import get_bearer_token, get_current_identity, guarded
from auth.errors import InvalidResetToken, MissingCredential
from auth.guards import (
    require_any_permission,
    require_minimum_rank,
    require_permission,
    require_role,
)
from auth.invites import InviteStore
from auth.models import Identity, User
from auth.resets import PasswordResetStore
from auth.roles import Permission, Role, all_roles
from auth.store import SessionStore, UserStore, utcnow
from auth.tokens import authenticate_user, create_access_token, hash_password, verify_password
from core.config import get_settings

logger = logging.getLogger("clubgate.api")
# Raw reset tokens go here and nowhere else; route it to a mailer or keep it quiet.
delivery_logger = logging.getLogger("clubgate.delivery")

_settings = get_settings()

# Auth policy:
# - POST   /auth/login, /auth/logout, /auth/signup:  public
# - POST   /auth/password-reset/*:                  public
# - GET    /auth/me, /auth/roles, POST /auth/change-password:  any authenticated identity
# - /auth/users*:                                     require_role(ADMIN)
# - POST   /auth/invite-codes:                        manage_users + rank >= requested role
# - GET    /auth/invite-codes:                        manage_users or manage_roles
# - DELETE /auth/invite-codes/{code}:                 rank >= captain + manage_users
router = APIRouter()

_admin_only = guarded(require_role(Role.ADMIN))
_invite_issuer = guarded(require_permission(Permission.MANAGE_USERS))
_invite_auditor = guarded(require_any_permission([Permission.MANAGE_USERS, Permission.MANAGE_ROLES]))
_invite_revoker = guarded(require_minimum_rank(Role.CAPTAIN), require_permission(Permission.MANAGE_USERS))

_EMAIL_TAKEN = "A user with that email already exists."


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@limiter.limit(_settings.login_rate_limit)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=LoginResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password; issue a token and its session.

    Uses authenticate_user() which includes timing equalization. Do NOT
    inline get_by_email() + verify_password() -- that re-introduces the
    timing side channel.
    """
    user_store: UserStore = request.app.state.user_store
    session_store: SessionStore = request.app.state.session_store

    user = authenticate_user(user_store, body.email, body.password)
    if user is None:
        # Same body for unknown email, wrong password and inactive account.
        return _no_store(401, {"error": {"code": "bad_credentials", "message": "Invalid email or password."}})

    issued = create_access_token(user.id)
    session_store.create(user.id, issued.token, issued.expires_at)
    user_store.update_last_login(user.id)
    logger.info("Login succeeded for user %s", user.id)

    body_out = LoginResponse(
        access_token=issued.token,
        expires_at=issued.expires_at,
        user=IdentityResponse.from_identity(Identity.from_user(user)),
    )
    return _no_store(200, body_out.model_dump(mode="json"))


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request) -> MessageResponse:
    """Delete the session for the presented bearer token.

    No-op without a token. The token itself stays cryptographically valid
    until its exp claim; clients must discard it.
    """
    try:
        token = get_bearer_token(request)
    except MissingCredential:
        return MessageResponse(message="Logged out.")
    request.app.state.session_store.delete_by_token(token)
    return MessageResponse(message="Logged out.")


@limiter.limit(_settings.signup_rate_limit)
@router.post("/auth/signup", response_model=UserResponse, status_code=201)
def signup(request: Request, body: SignupRequest) -> UserResponse:
    """Create an account using an invite code; the code decides the role.

    Order: cheap validation of the code -> email uniqueness -> bcrypt ->
    atomic redeem -> insert. The redeem is the authoritative check; the
    earlier validate() only saves a bcrypt round for codes that are already
    dead. Invite errors (InvalidCredential / CodeExhausted) propagate to the
    AuthError handler.
    """
    user_store: UserStore = request.app.state.user_store
    invite_store: InviteStore = request.app.state.invite_store

    invite_store.validate(body.invite_code)
    if user_store.get_by_email(body.email) is not None:
        raise _reject(409, "conflict", _EMAIL_TAKEN)

    hashed_pw = hash_password(body.password)
    invite = invite_store.redeem(body.invite_code)

    new_user = User(
        email=body.email,
        role=invite.role,
        hashed_password=hashed_pw,
        first_name=body.first_name,
        last_name=body.last_name,
    )
    try:
        user_id = user_store.create_user(new_user)
    except IntegrityError as exc:
        # Lost a race with a concurrent signup for the same email after the
        # code was redeemed. The use is spent; log it for the admin trail.
        logger.warning("Signup for an existing email consumed invite code %s...", body.invite_code[:6])
        raise _reject(409, "conflict", _EMAIL_TAKEN) from exc

    logger.info("User %s signed up with role %s", user_id, invite.role.value)
    return _user_to_response(user_store.get_by_id(user_id))


_RESET_SENT = "If an account with that email exists, a reset link has been sent."


@limiter.limit(_settings.reset_rate_limit)
@router.post("/auth/password-reset/request", response_model=MessageResponse)
def request_password_reset(request: Request, body: PasswordResetRequest) -> MessageResponse:
    """Issue a reset token for an active account and hand it to delivery.

    The answer is identical whether or not the email is registered.
    """
    user_store: UserStore = request.app.state.user_store
    reset_store: PasswordResetStore = request.app.state.reset_store

    user = user_store.get_by_email(body.email)
    if user is None or not user.is_active:
        return MessageResponse(message=_RESET_SENT)

    raw_token, reset = reset_store.issue(user.id, timedelta(seconds=_settings.password_reset_expire_seconds))
    if _settings.reset_delivery == "log":
        delivery_logger.info(
            "Password reset for %s: token=%s expires_at=%s", user.email, raw_token, reset.expires_at.isoformat()
        )
    return MessageResponse(message=_RESET_SENT)


@limiter.limit(_settings.reset_rate_limit)
@router.post("/auth/password-reset/confirm", response_model=MessageResponse)
def confirm_password_reset(request: Request, body: PasswordResetConfirm) -> MessageResponse:
    """Spend a reset token on a new password and revoke every session of that user.

    bcrypt runs before the token is redeemed, so a failure there leaves the
    token usable. Unknown, used and expired tokens all raise InvalidResetToken.
    """
    user_store: UserStore = request.app.state.user_store
    session_store: SessionStore = request.app.state.session_store
    reset_store: PasswordResetStore = request.app.state.reset_store

    hashed_pw = hash_password(body.new_password)
    reset = reset_store.redeem(body.token)
    user = user_store.get_by_id(reset.user_id)
    if user is None or not user.is_active:
        raise InvalidResetToken()

    user_store.update_user(user.id, hashed_password=hashed_pw)
    revoked = session_store.delete_for_user(user.id)
    logger.info("Password reset for user %s (%d sessions revoked)", user.id, revoked)
    return MessageResponse(message="Password has been reset.")


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=MeResponse)
def me(identity: Identity = Depends(get_current_identity)) -> MeResponse:
    return MeResponse.from_identity(identity)


@router.post("/auth/change-password", response_model=MessageResponse)
def change_password(
    request: Request,
    body: ChangePasswordRequest,
    identity: Identity = Depends(get_current_identity),
) -> MessageResponse:
    """Replace the caller's password and revoke every other session they hold."""
    user_store: UserStore = request.app.state.user_store
    session_store: SessionStore = request.app.state.session_store

    user = user_store.get_by_id(identity.id)
    if user is None or not verify_password(body.current_password, user.hashed_password):
        raise _reject(400, "bad_credentials", "Current password is incorrect.")

    user_store.update_user(identity.id, hashed_password=hash_password(body.new_password))
    revoked = session_store.delete_for_user(identity.id, keep_token=get_bearer_token(request))
    logger.info("Password changed for user %s (%d other sessions revoked)", identity.id, revoked)
    return MessageResponse(message="Password changed.")


@router.get("/auth/roles", response_model=list[RoleInfo])
def list_roles(identity: Identity = Depends(get_current_identity)) -> list[RoleInfo]:
    return [RoleInfo(**r) for r in all_roles()]


# ---------------------------------------------------------------------------
# User management (admin only)
# ---------------------------------------------------------------------------


@router.get("/auth/users", response_model=list[UserResponse])
def list_users(request: Request, identity: Identity = Depends(_admin_only)) -> list[UserResponse]:
    user_store: UserStore = request.app.state.user_store
    return [_user_to_response(u) for u in user_store.list_users()]


@router.post("/auth/users", response_model=UserResponse, status_code=201)
def create_user(
    request: Request,
    body: UserCreate,
    identity: Identity = Depends(_admin_only),
) -> UserResponse:
    """Create an account directly, with any role. Admin only."""
    user_store: UserStore = request.app.state.user_store

    new_user = User(
        email=body.email,
        role=body.role,
        hashed_password=hash_password(body.password),
        first_name=body.first_name,
        last_name=body.last_name,
    )
    try:
        user_id = user_store.create_user(new_user)
    except IntegrityError as exc:
        raise _reject(409, "conflict", _EMAIL_TAKEN) from exc

    logger.info("Admin %s created user %s with role %s", identity.id, user_id, body.role.value)
    return _user_to_response(user_store.get_by_id(user_id))


@router.patch("/auth/users/{user_id}", response_model=UserResponse)
def update_user(
    request: Request,
    user_id: str,
    body: UserPatch,
    identity: Identity = Depends(_admin_only),
) -> UserResponse:
    """Update a user's role, active flag or names. Admin only.

    Prevents:
      - Self-deactivation (admin accidentally locking themselves out).
      - Deactivating or demoting the last active admin.
    Deactivation also revokes every session the user holds.
    """
    user_store: UserStore = request.app.state.user_store
    session_store: SessionStore = request.app.state.session_store

    target = user_store.get_by_id(user_id)
    if target is None:
        raise _reject(404, "not_found", "User not found.")

    updates = body.model_dump(exclude_none=True)
    if not updates:
        raise _reject(400, "no_changes", "No fields to update.")

    deactivating = updates.get("is_active") is False and target.is_active
    demoting = "role" in updates and updates["role"] != Role.ADMIN
    if deactivating and target.id == identity.id:
        raise _reject(400, "self_deactivation", "You cannot deactivate your own account.")
    if target.role == Role.ADMIN and target.is_active and (deactivating or demoting):
        if user_store.count_active_admins() <= 1:
            raise _reject(400, "last_admin", "Cannot remove the last active admin account.")

    user_store.update_user(user_id, **updates)
    if deactivating:
        revoked = session_store.delete_for_user(user_id)
        logger.info("User %s deactivated by %s (%d sessions revoked)", user_id, identity.id, revoked)
    return _user_to_response(user_store.get_by_id(user_id))


# ---------------------------------------------------------------------------
# Invite codes
# ---------------------------------------------------------------------------


@router.post("/auth/invite-codes", response_model=InviteCodeResponse, status_code=201)
def create_invite_code(
    request: Request,
    body: InviteCreate,
    identity: Identity = Depends(_invite_issuer),
) -> InviteCodeResponse:
    """Issue an invite code. The caller may not grant a role ranked above their own."""
    require_minimum_rank(body.role).check(identity)

    invite_store: InviteStore = request.app.state.invite_store
    expires_at = None
    if body.expires_in_hours is not None:
        expires_at = utcnow() + timedelta(hours=body.expires_in_hours)
    invite = invite_store.issue(identity.id, body.role, max_uses=body.max_uses, expires_at=expires_at)
    return InviteCodeResponse.from_invite(invite)


@router.get("/auth/invite-codes", response_model=list[InviteCodeResponse])
def list_invite_codes(
    request: Request,
    mine: bool = False,
    identity: Identity = Depends(_invite_auditor),
) -> list[InviteCodeResponse]:
    invite_store: InviteStore = request.app.state.invite_store
    codes = invite_store.list_codes(created_by=identity.id if mine else None)
    return [InviteCodeResponse.from_invite(c) for c in codes]


@router.delete("/auth/invite-codes/{code}", status_code=204)
def deactivate_invite_code(
    request: Request,
    code: str,
    identity: Identity = Depends(_invite_revoker),
) -> Response:
    invite_store: InviteStore = request.app.state.invite_store
    if not invite_store.deactivate(code):
        raise _reject(404, "not_found", "Invite code not found.")
    logger.info("Invite code %s... deactivated by %s", code[:6], identity.id)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _user_to_response(user: User | None) -> UserResponse:
    if user is None:
        raise _reject(500, "internal_error", "User not found after write.")
    return UserResponse.from_user(user)


def _reject(status_code: int, code: str, message: str) -> HTTPException:
    """HTTPException whose detail api/main.py passes through as the error envelope."""
    return HTTPException(status_code=status_code, detail={"code": code, "message": message})


def _no_store(status_code: int, content: dict) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=content, headers={"Cache-Control": "no-store"})
