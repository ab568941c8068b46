"""
Complaint lifecycle orchestrator.

Coordinates the status machine, the assignment resolver and notification
fan-out:
1. Creation: validate → resolve department → auto-assign → persist → notify
2. Status changes: authorize → validate transition → record history → notify
3. Citizen edits and deletes while a complaint is still Raised

Each mutation commits as one transaction before any notification is sent.
"""
import logging
from datetime import datetime
from typing import Callable, List, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from citizenconnect.config import get_settings
from citizenconnect.models.domain import Complaint, Notification, User
from citizenconnect.models.enums import CITY_ADMIN_ROLES, ComplaintStatus
from citizenconnect.schemas import ComplaintResponse
from citizenconnect.services.assignment import AssignmentResolver
from citizenconnect.services.errors import Forbidden, NotFound, ValidationError
from citizenconnect.services.notifications import (
    COMPLAINT_ASSIGNED,
    COMPLAINT_STATUS_UPDATED,
    NEW_COMPLAINT,
    NEW_NOTIFICATION,
    STATUS_CHANGED,
    NotificationService,
    Publisher,
)
from citizenconnect.services.policy import Actor, Operation, authorize, check_scope
from citizenconnect.services.queries import ComplaintQuery
from citizenconnect.services.repository import append_status_update, atomic, get_complaint, lock_complaint
from citizenconnect.services.state_machine import ensure_transition, timestamp_field_for
from citizenconnect.timeutils import utcnow

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("title", "description", "domain", "category")
EDITABLE_FIELDS = ("title", "description", "domain", "category", "location", "media_url")

AUTO_ASSIGN_REMARKS = "Auto-assigned by system"


def _blank(value) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


class ComplaintLifecycle:
    """
    Orchestrates complaint creation and status changes.

    Usage:
        lifecycle = ComplaintLifecycle(db, publisher)
        complaint = lifecycle.create_complaint(citizen, title=..., ...)
        lifecycle.update_status(complaint.id, "InProgress", "Crew on site", actor)
    """

    def __init__(
        self,
        db: Session,
        publisher: Optional[Publisher] = None,
        clock: Callable[[], datetime] = utcnow,
        max_retries: Optional[int] = None,
    ):
        self.db = db
        self.clock = clock
        if max_retries is None:
            max_retries = get_settings().status_update_max_retries
        self.max_retries = max_retries
        self.notifications = NotificationService(db, publisher, clock)
        self.assignments = AssignmentResolver(db, self.notifications, clock, max_retries)

    # ===== Creation =====

    def create_complaint(
        self,
        citizen: Actor,
        title: Optional[str] = None,
        description: Optional[str] = None,
        domain: Optional[str] = None,
        category: Optional[str] = None,
        location: Optional[str] = None,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
        ward: Optional[str] = None,
        zone: Optional[str] = None,
        district: Optional[str] = None,
        media_url: Optional[str] = None,
    ) -> Complaint:
        """
        File a new complaint.

        If the (domain, category) pair maps to a department with at least one
        employee, the complaint starts Acknowledged and assigned to the least
        busy of them. Otherwise it starts Raised and unassigned, to be picked
        up by an admin.
        """
        values = {"title": title, "description": description, "domain": domain, "category": category}
        missing = [name for name in REQUIRED_FIELDS if _blank(values[name])]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}", fields=missing)
        if latitude is not None and not -90 <= latitude <= 90:
            raise ValidationError("Latitude must be between -90 and 90", fields=["latitude"])
        if longitude is not None and not -180 <= longitude <= 180:
            raise ValidationError("Longitude must be between -180 and 180", fields=["longitude"])

        department = self.assignments.resolve_department(domain, category)
        assignee_id = None
        if department is None:
            logger.warning(f"No department mapped for {domain}/{category}, complaint left unassigned")
        else:
            assignee_id = self.assignments.select_assignee(department)
            if assignee_id is None:
                logger.warning(f"No employee available in {department}, complaint left unassigned")

        def work():
            now = self.clock()
            complaint = Complaint(
                title=title.strip(),
                description=description.strip(),
                domain=domain,
                category=category,
                department=department,
                location=location,
                latitude=latitude,
                longitude=longitude,
                ward=ward,
                zone=zone,
                district=district,
                media_url=media_url,
                user_id=citizen.id,
                created_at=now,
                updated_at=now,
            )
            if assignee_id is not None:
                complaint.status = ComplaintStatus.ACKNOWLEDGED
                complaint.assigned_to_id = assignee_id
                complaint.assigned_at = now
                complaint.acknowledged_at = now
                append_status_update(self.db, complaint, ComplaintStatus.ACKNOWLEDGED, AUTO_ASSIGN_REMARKS, None, now)
            else:
                complaint.status = ComplaintStatus.RAISED
            self.db.add(complaint)
            return complaint

        complaint = atomic(self.db, work, "create complaint")
        logger.info(
            f"Complaint #{complaint.id} created by user {citizen.id} "
            f"({complaint.status.value}, department={department}, assignee={assignee_id})"
        )

        self._announce_new_complaint(complaint)
        if assignee_id is not None:
            self.notifications.notify(
                assignee_id,
                f'You have been auto-assigned a new complaint: "{complaint.title}"',
                complaint.id,
                COMPLAINT_ASSIGNED,
            )

        self.db.refresh(complaint)
        return complaint

    def _announce_new_complaint(self, complaint: Complaint) -> None:
        payload = {
            "message": f"New complaint raised: {complaint.title}",
            "complaint": ComplaintResponse.model_validate(complaint).to_payload(),
            "timestamp": self.clock().isoformat(),
        }
        for role in CITY_ADMIN_ROLES:
            self.notifications.broadcast_to_role(role, NEW_COMPLAINT, payload)

        admin_ids = [
            user_id for (user_id,) in self.db.query(User.id).filter(User.role.in_(CITY_ADMIN_ROLES)).all()
        ]
        self.notifications.notify_many(
            admin_ids,
            f'New complaint #{complaint.id} ("{complaint.title}") raised by a citizen.',
            complaint.id,
            NEW_NOTIFICATION,
        )

    # ===== Status changes =====

    def update_status(
        self,
        complaint_id: int,
        new_status: str,
        remarks: Optional[str],
        actor: Actor,
    ) -> Complaint:
        """
        Move a complaint to new_status.

        WILL REFUSE if:
        - the actor's role may not update statuses (Forbidden)
        - the complaint is outside the actor's department or ward (Forbidden)
        - the transition is not allowed from the current status (InvalidTransition)

        If another request changes the same complaint between our read and
        our write, the whole read-validate-write is retried against the
        committed state.
        """
        scope = authorize(Operation.UPDATE_STATUS, actor)

        def work():
            complaint = lock_complaint(self.db, complaint_id)
            check_scope(scope, actor, department=complaint.department, ward=complaint.ward)
            target = ensure_transition(complaint.status, new_status)

            now = self.clock()
            field = timestamp_field_for(target)
            if field is not None and getattr(complaint, field) is None:
                setattr(complaint, field, now)
            complaint.status = target
            complaint.updated_at = now
            entry = append_status_update(
                self.db,
                complaint,
                target,
                remarks or f"{target.value} updated by {actor.role.value}",
                actor.id,
                now,
            )
            return complaint, entry

        complaint, entry = atomic(self.db, work, "update complaint status", self.max_retries)
        logger.info(f"Complaint #{complaint.id} moved to {complaint.status.value} by user {actor.id}")

        self.notifications.notify(
            complaint.user_id,
            f'Your complaint status has been updated to "{complaint.status.value}"',
            complaint.id,
            COMPLAINT_STATUS_UPDATED,
        )
        self.notifications.broadcast_to_complaint(
            complaint.id,
            STATUS_CHANGED,
            {
                "complaintId": complaint.id,
                "newStatus": complaint.status.value,
                "remarks": entry.remarks,
                "updatedBy": actor.id,
                "timestamp": entry.updated_at.isoformat(),
            },
        )

        self.db.refresh(complaint)
        return complaint

    # ===== Reads =====

    def get_complaint(self, complaint_id: int, viewer: Optional[Actor] = None) -> Complaint:
        """
        Load one complaint.

        With a viewer, a complaint outside their scope (another citizen's,
        another department's) is reported as not found.
        """
        if viewer is None:
            return get_complaint(self.db, complaint_id)
        spec = ComplaintQuery.for_actor(viewer)
        complaint = spec.apply(self.db.query(Complaint)).filter(Complaint.id == complaint_id).first()
        if complaint is None:
            raise NotFound("Complaint not found")
        return complaint

    def list_complaints(self, spec: ComplaintQuery) -> List[Complaint]:
        """Complaints matching spec, newest first."""
        query = spec.apply(self.db.query(Complaint))
        return query.order_by(Complaint.created_at.desc(), Complaint.id.desc()).all()

    # ===== Citizen edits =====

    def edit_complaint(self, complaint_id: int, citizen: Actor, **changes) -> Complaint:
        """
        Let the creator amend a complaint nobody has picked up yet.

        Only fields in EDITABLE_FIELDS are applied; None means unchanged.
        A new domain or category re-resolves the department.
        """
        unknown = sorted(set(changes) - set(EDITABLE_FIELDS))
        if unknown:
            raise ValidationError(f"Fields cannot be edited: {', '.join(unknown)}", fields=unknown)
        changes = {name: value for name, value in changes.items() if value is not None}
        blank = [name for name in REQUIRED_FIELDS if name in changes and _blank(changes[name])]
        if blank:
            raise ValidationError(f"Fields cannot be blank: {', '.join(blank)}", fields=blank)

        def work():
            complaint = lock_complaint(self.db, complaint_id)
            self._check_editable(complaint, citizen, "edit")
            for name, value in changes.items():
                setattr(complaint, name, value.strip() if name in ("title", "description") else value)
            if "domain" in changes or "category" in changes:
                complaint.department = self.assignments.resolve_department(complaint.domain, complaint.category)
            complaint.updated_at = self.clock()
            return complaint

        complaint = atomic(self.db, work, "edit complaint", self.max_retries)
        logger.info(f"Complaint #{complaint.id} edited by its creator ({', '.join(sorted(changes)) or 'no changes'})")
        self.db.refresh(complaint)
        return complaint

    def delete_complaint(self, complaint_id: int, citizen: Actor) -> None:
        """
        Delete a complaint that never left Raised. Its notifications survive, detached.

        A complaint sent back to Raised keeps its audit trail and cannot be deleted.
        """

        def work():
            complaint = lock_complaint(self.db, complaint_id)
            self._check_editable(complaint, citizen, "delete")
            if complaint.acknowledged_at is not None or complaint.status_updates:
                raise Forbidden("Cannot delete complaint - it already has a status history")
            self.db.execute(
                update(Notification)
                .where(Notification.complaint_id == complaint.id)
                .values(complaint_id=None)
                .execution_options(synchronize_session="fetch")
            )
            self.db.delete(complaint)

        atomic(self.db, work, "delete complaint", self.max_retries)
        logger.info(f"Complaint #{complaint_id} deleted by user {citizen.id}")

    @staticmethod
    def _check_editable(complaint: Complaint, citizen: Actor, verb: str) -> None:
        if complaint.user_id != citizen.id:
            raise Forbidden(f"You can only {verb} your own complaints")
        if complaint.status != ComplaintStatus.RAISED:
            raise Forbidden(f"Cannot {verb} complaint - already under review by admin")
