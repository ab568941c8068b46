"""
Assignment resolver: which department owns a complaint and who works on it.

Auto-assignment picks the least-loaded eligible employee. Load is read live
and without locks, so two complaints created at the same moment may both
land on the same employee. That is accepted: this is load balancing, not an
allocation guarantee.
"""
import logging
from datetime import datetime
from typing import Callable, List, Optional, Tuple

from sqlalchemy import and_, func
from sqlalchemy.orm import Session

from citizenconnect.models.domain import Complaint, DomainCategory, User
from citizenconnect.models.enums import (
    EMPLOYEE_ROLES,
    FINISHED_STATUSES,
    ComplaintStatus,
)
from citizenconnect.schemas import EmployeeLoad
from citizenconnect.services.errors import NotFound, ValidationError
from citizenconnect.services.notifications import (
    COMPLAINT_ASSIGNED,
    COMPLAINT_STATUS_UPDATED,
    COMPLAINT_UNASSIGNED,
    NotificationService,
)
from citizenconnect.services.policy import Actor, Operation, Scope, authorize, check_scope
from citizenconnect.services.repository import append_status_update, atomic, lock_complaint
from citizenconnect.services.state_machine import timestamp_field_for
from citizenconnect.timeutils import utcnow

logger = logging.getLogger(__name__)


def _actor_label(actor: Actor) -> str:
    return actor.name or actor.role.value


def _check_both_departments(scope: Scope, actor: Actor, complaint: Complaint, employee: User) -> None:
    """The target employee, and the complaint once it has a department, must be in scope."""
    check_scope(scope, actor, department=employee.department)
    if complaint.department is not None:
        check_scope(scope, actor, department=complaint.department)


class AssignmentResolver:
    """Department resolution, auto-assignment and manual (re/un)assignment."""

    def __init__(
        self,
        db: Session,
        notifications: Optional[NotificationService] = None,
        clock: Callable[[], datetime] = utcnow,
        max_retries: int = 0,
    ):
        self.db = db
        self.notifications = notifications or NotificationService(db, clock=clock)
        self.clock = clock
        self.max_retries = max_retries

    # Resolution

    def resolve_department(self, domain: str, category: str) -> Optional[str]:
        """Exact (domain, category) lookup. An unmapped pair is not an error."""
        mapping = (
            self.db.query(DomainCategory)
            .filter(DomainCategory.domain == domain, DomainCategory.category == category)
            .first()
        )
        return mapping.department if mapping else None

    def workloads(self, department: Optional[str] = None) -> List[Tuple[User, int]]:
        """
        Eligible employees with their count of unfinished assigned complaints.

        Ordered least busy first; ties go to the lowest user id.
        """
        active = func.count(Complaint.id)
        query = (
            self.db.query(User, active.label("active"))
            .outerjoin(
                Complaint,
                and_(
                    Complaint.assigned_to_id == User.id,
                    Complaint.status.notin_(FINISHED_STATUSES),
                ),
            )
            .filter(User.role.in_(EMPLOYEE_ROLES))
        )
        if department is not None:
            query = query.filter(User.department == department)
        return query.group_by(User.id).order_by(active.asc(), User.id.asc()).all()

    def select_assignee(self, department: str) -> Optional[int]:
        """Least-loaded employee in the department, or None if it has nobody."""
        candidates = self.workloads(department)
        if not candidates:
            return None
        employee, load = candidates[0]
        logger.debug(f"Selected employee {employee.id} ({load} active) in {department}")
        return employee.id

    # Manual operations

    def assign(self, complaint_id: int, employee_id: int, actor: Actor) -> Complaint:
        """
        Assign a complaint to an employee.

        A Raised complaint is acknowledged by being assigned.
        """
        scope = authorize(Operation.ASSIGN, actor)

        def work():
            complaint = lock_complaint(self.db, complaint_id)
            employee = self._get_employee(employee_id)
            _check_both_departments(scope, actor, complaint, employee)

            department = complaint.department or employee.department
            if department is None:
                raise ValidationError(
                    "Cannot assign a complaint that has no department to an employee without one",
                    fields=["assignedToId"],
                )

            now = self.clock()
            previous_id = complaint.assigned_to_id
            if complaint.status == ComplaintStatus.RAISED:
                complaint.status = ComplaintStatus.ACKNOWLEDGED
                field = timestamp_field_for(ComplaintStatus.ACKNOWLEDGED)
                if getattr(complaint, field) is None:
                    setattr(complaint, field, now)

            complaint.department = department
            complaint.assigned_to_id = employee.id
            complaint.assigned_by_id = actor.id
            complaint.assigned_at = now
            complaint.updated_at = now
            append_status_update(
                self.db,
                complaint,
                complaint.status,
                f"Assigned to {employee.name} by {_actor_label(actor)}",
                actor.id,
                now,
            )
            return complaint, employee, previous_id

        complaint, employee, previous_id = atomic(self.db, work, "assign complaint", self.max_retries)
        logger.info(f"Complaint #{complaint.id} assigned to user {employee.id} by {actor.id}")

        self.notifications.notify(
            employee.id,
            f'You have been assigned a new complaint: "{complaint.title}"',
            complaint.id,
            COMPLAINT_ASSIGNED,
        )
        if previous_id is not None and previous_id != employee.id:
            self.notifications.notify(
                previous_id,
                f'Complaint "{complaint.title}" has been reassigned',
                complaint.id,
                COMPLAINT_UNASSIGNED,
            )
        self.notifications.notify(
            complaint.user_id,
            f"Your complaint has been assigned to {employee.name}",
            complaint.id,
            COMPLAINT_STATUS_UPDATED,
        )
        return complaint

    def reassign(self, complaint_id: int, new_employee_id: int, actor: Actor) -> Complaint:
        """Move a complaint to another employee. Status is left unchanged."""
        scope = authorize(Operation.REASSIGN, actor)

        def work():
            complaint = lock_complaint(self.db, complaint_id)
            employee = self._get_employee(new_employee_id)
            _check_both_departments(scope, actor, complaint, employee)
            if complaint.assigned_to_id == employee.id:
                raise ValidationError(
                    f"Complaint is already assigned to {employee.name}", fields=["newAssignedToId"]
                )

            previous = complaint.assigned_to
            now = self.clock()
            complaint.department = complaint.department or employee.department
            complaint.assigned_to_id = employee.id
            complaint.assigned_by_id = actor.id
            complaint.assigned_at = now
            complaint.updated_at = now
            append_status_update(
                self.db,
                complaint,
                complaint.status,
                f"Reassigned from {previous.name if previous else 'unassigned'} to {employee.name}",
                actor.id,
                now,
            )
            return complaint, employee, previous.id if previous else None

        complaint, employee, previous_id = atomic(self.db, work, "reassign complaint", self.max_retries)
        logger.info(f"Complaint #{complaint.id} reassigned from {previous_id} to {employee.id}")

        self.notifications.notify(
            employee.id,
            f'You have been assigned complaint: "{complaint.title}"',
            complaint.id,
            COMPLAINT_ASSIGNED,
        )
        if previous_id is not None and previous_id != employee.id:
            self.notifications.notify(
                previous_id,
                f'Complaint "{complaint.title}" has been reassigned',
                complaint.id,
                COMPLAINT_UNASSIGNED,
            )
        return complaint

    def unassign(self, complaint_id: int, actor: Actor) -> Complaint:
        """Clear a complaint's assignee. Status is left unchanged."""
        scope = authorize(Operation.UNASSIGN, actor)

        def work():
            complaint = lock_complaint(self.db, complaint_id)
            check_scope(scope, actor, department=complaint.department)
            if complaint.assigned_to_id is None:
                raise ValidationError("Complaint is not assigned to anyone")

            previous_id = complaint.assigned_to_id
            now = self.clock()
            complaint.assigned_to_id = None
            complaint.assigned_by_id = None
            complaint.assigned_at = None
            complaint.updated_at = now
            append_status_update(
                self.db,
                complaint,
                complaint.status,
                f"Unassigned by {_actor_label(actor)}",
                actor.id,
                now,
            )
            return complaint, previous_id

        complaint, previous_id = atomic(self.db, work, "unassign complaint", self.max_retries)
        logger.info(f"Complaint #{complaint.id} unassigned from user {previous_id}")

        self.notifications.notify(
            previous_id,
            f'Complaint "{complaint.title}" has been unassigned from you',
            complaint.id,
            COMPLAINT_UNASSIGNED,
        )
        return complaint

    # Read side

    def assignable_employees(self, actor: Actor, department: Optional[str] = None) -> List[EmployeeLoad]:
        """Employees the actor may assign to, with their current load."""
        scope = authorize(Operation.ASSIGN, actor)
        if scope == Scope.DEPARTMENT:
            department = actor.department
        return [
            EmployeeLoad(
                id=user.id,
                name=user.name,
                email=user.email,
                role=user.role,
                department=user.department,
                ward=user.ward,
                active_complaints=active,
            )
            for user, active in self.workloads(department)
        ]

    def assigned_to(self, user_id: int) -> List[Complaint]:
        return (
            self.db.query(Complaint)
            .filter(Complaint.assigned_to_id == user_id)
            .order_by(Complaint.assigned_at.desc(), Complaint.id.desc())
            .all()
        )

    def _get_employee(self, employee_id: int) -> User:
        employee = self.db.query(User).filter(User.id == employee_id).first()
        if employee is None:
            raise NotFound("Assigned user not found")
        if employee.role not in EMPLOYEE_ROLES:
            raise ValidationError(
                f"User {employee.id} is a {employee.role.value} and cannot be assigned complaints",
                fields=["assignedToId"],
            )
        return employee
