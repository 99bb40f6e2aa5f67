"""
auth/guards.py -- Composable authorization predicates.

A guard inspects an Identity and either returns None (allowed) or raises
InsufficientPermission / InsufficientRole. Guards hold no state beyond their
constructor arguments and never touch I/O, so they can be unit tested with a
bare Identity and chained in any order. check_all() evaluates a chain and the
first failing guard decides the rejection.

Guards only accept Permission / Role members. Constructing one from a
misspelled string raises ValueError at import time of the route module,
instead of silently denying every request at runtime.

The FastAPI wiring lives in auth/dependencies.py (guarded()); this module has
no web framework imports.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable

from auth.errors import InsufficientPermission, InsufficientRole
from auth.models import Identity
from auth.roles import Permission, Role, has_minimum_rank, has_permission, role_label


class Guard(ABC):
    """Base class. Subclasses implement check()."""

    @abstractmethod
    def check(self, identity: Identity) -> None:
        """Return None to allow; raise InsufficientPermission or InsufficientRole to deny."""


class RequirePermission(Guard):
    def __init__(self, permission: Permission) -> None:
        self.permission = Permission(permission)

    def check(self, identity: Identity) -> None:
        if not has_permission(identity.role, self.permission):
            raise InsufficientPermission(detail=f"required={self.permission.value} current={identity.role.value}")

    def __repr__(self) -> str:
        return f"require_permission({self.permission.value!r})"


class RequireAnyPermission(Guard):
    def __init__(self, permissions: Iterable[Permission]) -> None:
        self.permissions = tuple(Permission(p) for p in permissions)
        if not self.permissions:
            raise ValueError("require_any_permission needs at least one permission")

    def check(self, identity: Identity) -> None:
        if not any(has_permission(identity.role, p) for p in self.permissions):
            required = ",".join(p.value for p in self.permissions)
            raise InsufficientPermission(detail=f"required_any={required} current={identity.role.value}")


class RequireAnyRole(Guard):
    """Exact role match against a set. require_role(r) is the one-element case."""

    def __init__(self, roles: Iterable[Role]) -> None:
        self.roles = frozenset(Role(r) for r in roles)
        if not self.roles:
            raise ValueError("require_any_role needs at least one role")

    def check(self, identity: Identity) -> None:
        if identity.role not in self.roles:
            required = ",".join(sorted(r.value for r in self.roles))
            raise InsufficientRole(detail=f"required={required} current={identity.role.value}")


class RequireMinimumRank(Guard):
    def __init__(self, role: Role) -> None:
        self.role = Role(role)

    def check(self, identity: Identity) -> None:
        if not has_minimum_rank(identity.role, self.role):
            raise InsufficientRole(
                f"Requires {role_label(self.role)} or higher.",
                detail=f"required={self.role.value} current={identity.role.value}",
            )


# ---------------------------------------------------------------------------
# Constructors
# ---------------------------------------------------------------------------


def require_permission(permission: Permission) -> Guard:
    return RequirePermission(permission)


def require_any_permission(permissions: Iterable[Permission]) -> Guard:
    return RequireAnyPermission(permissions)


def require_role(role: Role) -> Guard:
    return RequireAnyRole([role])


def require_any_role(roles: Iterable[Role]) -> Guard:
    return RequireAnyRole(roles)


def require_minimum_rank(role: Role) -> Guard:
    return RequireMinimumRank(role)


def check_all(identity: Identity, guards: Iterable[Guard]) -> None:
    """Run guards in order; the first failure propagates."""
    for guard in guards:
        guard.check(identity)
