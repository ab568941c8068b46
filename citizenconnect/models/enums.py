"""Enums for CitizenConnect - these define the valid values for statuses and roles."""
from enum import Enum


class ComplaintStatus(str, Enum):
    """The five lifecycle stages. Values are the literal strings the dashboard renders."""
    RAISED = "Raised"
    ACKNOWLEDGED = "Acknowledged"
    IN_PROGRESS = "InProgress"
    RESOLVED = "Resolved"
    CLOSED = "Closed"


class UserRole(str, Enum):
    """Citizen and official roles."""
    CITIZEN = "CITIZEN"
    DEPARTMENT_EMPLOYEE = "DEPARTMENT_EMPLOYEE"
    DEPARTMENT_ADMIN = "DEPARTMENT_ADMIN"
    WARD_OFFICER = "WARD_OFFICER"
    CITY_ADMIN = "CITY_ADMIN"
    SUPER_ADMIN = "SUPER_ADMIN"
    MAYOR = "MAYOR"


# Roles that can carry complaint work
EMPLOYEE_ROLES = (UserRole.DEPARTMENT_EMPLOYEE, UserRole.DEPARTMENT_ADMIN)

# Roles alerted about every new complaint
CITY_ADMIN_ROLES = (UserRole.CITY_ADMIN, UserRole.SUPER_ADMIN)

# Statuses that no longer count towards an employee's workload
FINISHED_STATUSES = (ComplaintStatus.RESOLVED, ComplaintStatus.CLOSED)


def enum_values(enum_cls):
    """Persist enum values (e.g. "InProgress") rather than member names."""
    return [member.value for member in enum_cls]
