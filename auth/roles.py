"""
auth/roles.py -- Static role/permission registry.

Roles and permissions are closed str-Enums. The tables below are built once at
import time and exposed read-only (MappingProxyType of frozensets), so every
lookup is lock-free and thread-safe.

Permissions are additive per role: there is no inheritance walk, every
elevated role lists its full set. The only exception is the wildcard "*",
held by ADMIN alone, which grants every permission string -- including ones
never enumerated here.

Rank and permission breadth are independent. CAPTAIN (rank 4) holds the
administrative set (manage_users, manage_roles, ...) while PRESIDENT (rank 5)
holds a broad but non-administrative set and PROJECT_MANAGER (rank 4) a narrow
one. Do not derive one from the other.

"full_access" is an ordinary permission string here. Only Permission.ALL is
the wildcard.

Layer rule: stdlib only.
"""

from __future__ import annotations

from enum import Enum
from types import MappingProxyType


class Role(str, Enum):
    ADMIN = "admin"
    PRESIDENT = "president"
    CAPTAIN = "captain"
    PROJECT_MANAGER = "project_manager"
    PRINTER_MANAGER = "printer_manager"
    RECIPIENT_COORDINATOR = "recipient_coordinator"
    OUTREACH_COORDINATOR = "outreach_coordinator"
    MARKETING_COORDINATOR = "marketing_coordinator"
    ART_COORDINATOR = "art_coordinator"
    MEMBER = "member"


class Permission(str, Enum):
    ALL = "*"

    VIEW_OWN_PROFILE = "view_own_profile"
    UPDATE_OWN_PROFILE = "update_own_profile"
    VIEW_TEAMS = "view_teams"
    VIEW_EVENTS = "view_events"
    SUBMIT_APPLICATIONS = "submit_applications"
    SUBMIT_EVENT_ATTENDANCE = "submit_event_attendance"
    VIEW_OWN_APPLICATIONS = "view_own_applications"

    MANAGE_ART_REQUESTS = "manage_art_requests"
    VIEW_ART_SUBMISSIONS = "view_art_submissions"
    MANAGE_MARKETING_REQUESTS = "manage_marketing_requests"
    VIEW_MARKETING_SUBMISSIONS = "view_marketing_submissions"
    MANAGE_OUTREACH_EVENTS = "manage_outreach_events"
    VIEW_OUTREACH_DATA = "view_outreach_data"
    MANAGE_RECIPIENTS = "manage_recipients"
    VIEW_RECIPIENT_DATA = "view_recipient_data"

    MANAGE_PRINT_SUBMISSIONS = "manage_print_submissions"
    VIEW_ALL_PRINT_REQUESTS = "view_all_print_requests"
    APPROVE_PRINT_REQUESTS = "approve_print_requests"
    MANAGE_PRINTER_SETTINGS = "manage_printer_settings"

    MANAGE_PROJECTS = "manage_projects"
    VIEW_ALL_APPLICATIONS = "view_all_applications"
    ASSIGN_TEAM_MEMBERS = "assign_team_members"
    MANAGE_TEAM_ASSIGNMENTS = "manage_team_assignments"
    VIEW_PROJECT_REPORTS = "view_project_reports"

    MANAGE_ALL_TEAMS = "manage_all_teams"
    VIEW_ALL_REPORTS = "view_all_reports"
    MANAGE_SPECIAL_ROLES = "manage_special_roles"
    APPROVE_ROLE_APPLICATIONS = "approve_role_applications"
    MANAGE_ORGANIZATION_SETTINGS = "manage_organization_settings"

    FULL_ACCESS = "full_access"
    MANAGE_USERS = "manage_users"
    MANAGE_ROLES = "manage_roles"
    SYSTEM_ADMINISTRATION = "system_administration"
    VIEW_ALL_DATA = "view_all_data"
    MANAGE_ALL_SETTINGS = "manage_all_settings"


# ---------------------------------------------------------------------------
# Tables
# ---------------------------------------------------------------------------

_RANKS: dict[Role, int] = {
    Role.MEMBER: 1,
    Role.ART_COORDINATOR: 2,
    Role.MARKETING_COORDINATOR: 2,
    Role.OUTREACH_COORDINATOR: 2,
    Role.RECIPIENT_COORDINATOR: 2,
    Role.PRINTER_MANAGER: 3,
    Role.CAPTAIN: 4,
    Role.PROJECT_MANAGER: 4,
    Role.PRESIDENT: 5,
    Role.ADMIN: 6,
}

_MEMBER_BASE = (
    Permission.VIEW_OWN_PROFILE,
    Permission.UPDATE_OWN_PROFILE,
    Permission.VIEW_TEAMS,
    Permission.VIEW_EVENTS,
    Permission.SUBMIT_APPLICATIONS,
    Permission.SUBMIT_EVENT_ATTENDANCE,
    Permission.VIEW_OWN_APPLICATIONS,
)

_ADMINISTRATIVE = (
    Permission.FULL_ACCESS,
    Permission.MANAGE_USERS,
    Permission.MANAGE_ROLES,
    Permission.SYSTEM_ADMINISTRATION,
    Permission.VIEW_ALL_DATA,
    Permission.MANAGE_ALL_SETTINGS,
)

_PERMISSIONS: dict[Role, tuple[Permission, ...]] = {
    Role.MEMBER: _MEMBER_BASE,
    Role.ART_COORDINATOR: _MEMBER_BASE + (Permission.MANAGE_ART_REQUESTS, Permission.VIEW_ART_SUBMISSIONS),
    Role.MARKETING_COORDINATOR: _MEMBER_BASE
    + (Permission.MANAGE_MARKETING_REQUESTS, Permission.VIEW_MARKETING_SUBMISSIONS),
    Role.OUTREACH_COORDINATOR: _MEMBER_BASE + (Permission.MANAGE_OUTREACH_EVENTS, Permission.VIEW_OUTREACH_DATA),
    Role.RECIPIENT_COORDINATOR: _MEMBER_BASE + (Permission.MANAGE_RECIPIENTS, Permission.VIEW_RECIPIENT_DATA),
    Role.PRINTER_MANAGER: _MEMBER_BASE
    + (
        Permission.MANAGE_PRINT_SUBMISSIONS,
        Permission.VIEW_ALL_PRINT_REQUESTS,
        Permission.APPROVE_PRINT_REQUESTS,
        Permission.MANAGE_PRINTER_SETTINGS,
    ),
    Role.PROJECT_MANAGER: _MEMBER_BASE
    + (
        Permission.MANAGE_PROJECTS,
        Permission.VIEW_ALL_APPLICATIONS,
        Permission.ASSIGN_TEAM_MEMBERS,
        Permission.MANAGE_TEAM_ASSIGNMENTS,
        Permission.VIEW_PROJECT_REPORTS,
    ),
    Role.CAPTAIN: _ADMINISTRATIVE,
    Role.PRESIDENT: _MEMBER_BASE
    + (
        Permission.MANAGE_ALL_TEAMS,
        Permission.VIEW_ALL_APPLICATIONS,
        Permission.ASSIGN_TEAM_MEMBERS,
        Permission.MANAGE_TEAM_ASSIGNMENTS,
        Permission.VIEW_ALL_REPORTS,
        Permission.MANAGE_SPECIAL_ROLES,
        Permission.APPROVE_ROLE_APPLICATIONS,
        Permission.MANAGE_ORGANIZATION_SETTINGS,
    ),
    Role.ADMIN: (Permission.ALL,) + _ADMINISTRATIVE,
}

ROLE_RANKS = MappingProxyType(dict(_RANKS))
ROLE_PERMISSIONS = MappingProxyType({role: frozenset(p.value for p in perms) for role, perms in _PERMISSIONS.items()})

# Every role must appear in both tables; a missing entry would be a silent deny.
if not set(ROLE_RANKS) == set(Role) == set(ROLE_PERMISSIONS):
    raise RuntimeError("role tables out of sync")


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


def permissions_of(role: Role) -> frozenset[str]:
    """Return the permission strings held by role (ADMIN's includes "*")."""
    return ROLE_PERMISSIONS[Role(role)]


def rank_of(role: Role) -> int:
    return ROLE_RANKS[Role(role)]


def has_permission(role: Role, permission: Permission | str) -> bool:
    """True if role holds the wildcard, else exact membership of permission.

    Accepts raw strings so callers can check arbitrary permission names; an
    unknown string is simply not a member of any enumerated set.
    """
    granted = permissions_of(role)
    if Permission.ALL.value in granted:
        return True
    value = permission.value if isinstance(permission, Permission) else permission
    return value in granted


def has_minimum_rank(role: Role, required_role: Role) -> bool:
    return rank_of(role) >= rank_of(required_role)


def role_label(role: Role) -> str:
    """Display label, e.g. project_manager -> Project Manager."""
    return " ".join(word.capitalize() for word in Role(role).value.split("_"))


def all_roles() -> list[dict]:
    """Return the role catalogue for display, highest rank first.

    Ties keep declaration order (sorted() is stable).
    """
    return sorted(
        ({"value": role.value, "label": role_label(role), "level": rank_of(role)} for role in Role),
        key=lambda r: r["level"],
        reverse=True,
    )
