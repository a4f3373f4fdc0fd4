"""Role-based authorization as a single (role, resource, action) table."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from workforce_engine.collaborators import User, UserDirectory
from workforce_engine.exceptions import NotFoundError, PermissionDeniedError


class Role(str, Enum):
    """Roles known to the policy table."""

    ADMIN = "admin"
    HR = "hr"
    MANAGER = "manager"
    EMPLOYEE = "employee"


# (role, resource, action) -> allowed. Anything absent is denied.
POLICY: dict[tuple[str, str, str], bool] = {
    # attendance
    ("admin", "attendance", "mark"): True,
    ("hr", "attendance", "mark"): True,
    ("admin", "attendance", "edit"): True,
    ("hr", "attendance", "edit"): True,
    # leave
    ("admin", "leave_request", "approve"): True,
    ("hr", "leave_request", "approve"): True,
    ("manager", "leave_request", "approve"): True,
    ("admin", "leave_request", "cancel_any"): True,
    ("hr", "leave_request", "cancel_any"): True,
    ("admin", "leave_request", "reopen"): True,
    ("admin", "leave_balance", "allocate"): True,
    ("hr", "leave_balance", "allocate"): True,
    ("admin", "leave_type", "create"): True,
    ("hr", "leave_type", "create"): True,
    # payroll
    ("admin", "salary_record", "lock"): True,
    ("hr", "salary_record", "lock"): True,
    ("admin", "salary_record", "unlock"): True,
    ("admin", "salary_record", "override_lock"): True,
    ("admin", "salary_record", "clear"): True,
    # audit and master data
    ("admin", "audit", "rollback"): True,
    ("admin", "imported_record", "deduplicate"): True,
    ("admin", "imported_record", "edit"): True,
    ("hr", "imported_record", "edit"): True,
}


def is_allowed(role: str, resource: str, action: str) -> bool:
    """Look up the policy table."""
    if isinstance(role, Role):
        role = role.value
    return POLICY.get((role, resource, action), False)


@dataclass(frozen=True)
class LockOverride:
    """Explicit permission to write into a locked payroll period."""

    actor: str
    reason: str


class Authorizer:
    """Resolves actors through the user directory and checks the policy."""

    def __init__(self, directory: UserDirectory):
        self.directory = directory

    def resolve(self, actor: str) -> User:
        user = self.directory.get_user(actor)
        if user is None or not user.is_active:
            raise NotFoundError(f"Unknown or inactive user {actor!r}", user_id=actor)
        return user

    def can(self, actor: str, resource: str, action: str) -> bool:
        user = self.directory.get_user(actor)
        if user is None or not user.is_active:
            return False
        return is_allowed(user.role, resource, action)

    def require(self, actor: str, resource: str, action: str) -> User:
        """Return the actor's user record or raise PermissionDeniedError."""
        user = self.resolve(actor)
        if not is_allowed(user.role, resource, action):
            raise PermissionDeniedError(
                f"User {actor!r} ({user.role}) may not {action} {resource}",
                actor=actor,
                resource=resource,
                action=action,
            )
        return user
