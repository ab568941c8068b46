"""
Capability policy - who may do what, and over which complaints.

One declarative table keyed by (operation, role) replaces per-operation role
lists, so operations that share a policy cannot silently drift apart.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional

from citizenconnect.models.enums import UserRole
from citizenconnect.services.errors import Forbidden


@dataclass(frozen=True)
class Actor:
    """An already-authenticated caller, resolved upstream by the auth layer."""
    id: int
    role: UserRole
    name: str = ""
    department: Optional[str] = None
    ward: Optional[str] = None

    @classmethod
    def from_user(cls, user) -> "Actor":
        return cls(
            id=user.id,
            role=UserRole(user.role),
            name=user.name,
            department=user.department,
            ward=user.ward,
        )


class Operation(str, Enum):
    UPDATE_STATUS = "update_status"
    ASSIGN = "assign"
    REASSIGN = "reassign"
    UNASSIGN = "unassign"
    VIEW_ANALYTICS = "view_analytics"


class Scope(str, Enum):
    """How far a granted capability reaches."""
    GLOBAL = "global"          # any complaint
    DEPARTMENT = "department"  # complaints/employees of the actor's department
    WARD = "ward"              # complaints in the actor's ward


_ASSIGNMENT_POLICY = {
    UserRole.CITY_ADMIN: Scope.GLOBAL,
    UserRole.SUPER_ADMIN: Scope.GLOBAL,
    UserRole.DEPARTMENT_ADMIN: Scope.DEPARTMENT,
}

CAPABILITIES: Dict[Operation, Dict[UserRole, Scope]] = {
    Operation.UPDATE_STATUS: {
        UserRole.CITY_ADMIN: Scope.GLOBAL,
        UserRole.SUPER_ADMIN: Scope.GLOBAL,
        UserRole.MAYOR: Scope.GLOBAL,
        UserRole.DEPARTMENT_ADMIN: Scope.DEPARTMENT,
        UserRole.WARD_OFFICER: Scope.WARD,
    },
    Operation.ASSIGN: dict(_ASSIGNMENT_POLICY),
    Operation.REASSIGN: dict(_ASSIGNMENT_POLICY),
    Operation.UNASSIGN: dict(_ASSIGNMENT_POLICY),
    Operation.VIEW_ANALYTICS: {
        UserRole.CITY_ADMIN: Scope.GLOBAL,
        UserRole.SUPER_ADMIN: Scope.GLOBAL,
        UserRole.MAYOR: Scope.GLOBAL,
        UserRole.DEPARTMENT_ADMIN: Scope.DEPARTMENT,
        UserRole.DEPARTMENT_EMPLOYEE: Scope.DEPARTMENT,
        UserRole.WARD_OFFICER: Scope.WARD,
    },
}


def authorize(operation: Operation, actor: Actor) -> Scope:
    """Return the actor's scope for operation, or raise Forbidden."""
    scope = CAPABILITIES[operation].get(actor.role)
    if scope is None:
        raise Forbidden(f"Access denied - role {actor.role.value} may not {operation.value.replace('_', ' ')}")
    return scope


def check_scope(
    scope: Scope,
    actor: Actor,
    department: Optional[str] = None,
    ward: Optional[str] = None,
) -> None:
    """
    Enforce a scope rule against the target's department or ward.

    A DEPARTMENT-scoped actor without a department, or a target without one,
    never matches.
    """
    if scope == Scope.GLOBAL:
        return
    if scope == Scope.DEPARTMENT:
        if actor.department is None or department != actor.department:
            raise Forbidden("You can only act on complaints and employees in your department")
        return
    if scope == Scope.WARD:
        if actor.ward is None or ward != actor.ward:
            raise Forbidden("You can only act on complaints in your ward")
