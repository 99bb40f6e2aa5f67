#!/usr/bin/env python3
"""
ClubGate -- operator command line.

Usage:
  python main.py create-admin --email admin@club.org --first-name Ada --last-name Lovelace
  python main.py issue-invite --created-by admin@club.org --role member --max-uses 10 --expires-in-hours 48
  python main.py issue-reset --email member@club.org
  python main.py sweep-sessions

Reads the database location and bcrypt cost from the same settings as the API
(DATABASE_URL, BCRYPT_ROUNDS, SECRET_KEY -- see core/config.py).
"""

import argparse
import getpass
import sys
from datetime import timedelta

from sqlalchemy.exc import IntegrityError

from auth.invites import InviteStore
from auth.models import User
from auth.resets import PasswordResetStore
from auth.roles import Role
from auth.store import SessionStore, UserStore, create_auth_engine, utcnow
from auth.tokens import PASSWORD_MAX_BYTES, hash_password
from core.config import get_settings


def _read_password() -> str:
    """Prompt twice without echo. Returns "" on mismatch or a bad length."""
    password = getpass.getpass("  Password: ")
    if len(password) < 8:
        print("  [!] Password must be at least 8 characters.")
        return ""
    if len(password.encode("utf-8")) > PASSWORD_MAX_BYTES:
        print(f"  [!] Password must be at most {PASSWORD_MAX_BYTES} bytes.")
        return ""
    if password != getpass.getpass("  Confirm:  "):
        print("  [!] Passwords don't match.")
        return ""
    return password


def create_admin(args: argparse.Namespace, users: UserStore) -> int:
    """Bootstrap an admin account. The API has no unauthenticated way to do this."""
    password = _read_password()
    if not password:
        return 1
    try:
        user_id = users.create_user(
            User(
                email=args.email,
                role=Role.ADMIN,
                hashed_password=hash_password(password),
                first_name=args.first_name,
                last_name=args.last_name,
            )
        )
    except IntegrityError:
        print(f"  [!] A user with email '{args.email}' already exists.")
        return 1
    print(f"  Admin created: {args.email} (id {user_id})")
    return 0


def issue_invite(args: argparse.Namespace, users: UserStore, invites: InviteStore) -> int:
    creator = users.get_by_email(args.created_by)
    if creator is None or not creator.is_active:
        print(f"  [!] No active user '{args.created_by}'.")
        return 1
    expires_at = None
    if args.expires_in_hours:
        expires_at = utcnow() + timedelta(hours=args.expires_in_hours)
    try:
        invite = invites.issue(creator.id, Role(args.role), max_uses=args.max_uses, expires_at=expires_at)
    except ValueError as exc:
        print(f"  [!] {exc}")
        return 1
    print(f"  Invite code: {invite.code}")
    print(f"  Role: {invite.role.value}  Max uses: {invite.max_uses}")
    print(f"  Expires: {invite.expires_at.isoformat() if invite.expires_at else 'never'}")
    return 0


def issue_reset(args: argparse.Namespace, users: UserStore, resets: PasswordResetStore) -> int:
    """Print a reset token for an operator to pass on out of band."""
    user = users.get_by_email(args.email)
    if user is None or not user.is_active:
        print(f"  [!] No active user '{args.email}'.")
        return 1
    ttl = timedelta(seconds=get_settings().password_reset_expire_seconds)
    raw_token, reset = resets.issue(user.id, ttl)
    print(f"  Reset token: {raw_token}")
    print(f"  Expires: {reset.expires_at.isoformat()}")
    return 0


def sweep_sessions(sessions: SessionStore, resets: PasswordResetStore) -> int:
    removed = sessions.delete_expired()
    spent = resets.delete_expired()
    print(f"  Removed {removed} expired session(s) and {spent} spent reset token(s).")
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="clubgate",
        description="ClubGate operator tasks: bootstrap admins, issue invite and reset tokens, sweep sessions.",
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    p_admin = sub.add_parser("create-admin", help="Create an admin account (prompts for password)")
    p_admin.add_argument("--email", required=True)
    p_admin.add_argument("--first-name", required=True)
    p_admin.add_argument("--last-name", required=True)

    p_invite = sub.add_parser("issue-invite", help="Issue an invite code")
    p_invite.add_argument("--created-by", required=True, metavar="EMAIL", help="Email of the issuing user")
    p_invite.add_argument("--role", choices=[r.value for r in Role], default=Role.MEMBER.value)
    p_invite.add_argument("--max-uses", type=int, default=1)
    p_invite.add_argument("--expires-in-hours", type=int, default=0, help="0 = never expires")

    p_reset = sub.add_parser("issue-reset", help="Issue a password reset token for a user")
    p_reset.add_argument("--email", required=True)

    sub.add_parser("sweep-sessions", help="Delete expired sessions and spent reset tokens now")

    args = parser.parse_args()
    if args.command is None:
        parser.print_help()
        return

    engine = create_auth_engine(get_settings().database_url)
    try:
        if args.command == "create-admin":
            status = create_admin(args, UserStore(engine))
        elif args.command == "issue-invite":
            status = issue_invite(args, UserStore(engine), InviteStore(engine))
        elif args.command == "issue-reset":
            status = issue_reset(args, UserStore(engine), PasswordResetStore(engine))
        else:
            status = sweep_sessions(SessionStore(engine), PasswordResetStore(engine))
    finally:
        engine.dispose()
    sys.exit(status)


if __name__ == "__main__":
    main()
