"""Typed complaint filters, resolved once per request."""
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Optional, Tuple

from sqlalchemy import or_
from sqlalchemy.orm import Query

from citizenconnect.models.domain import Complaint
from citizenconnect.models.enums import FINISHED_STATUSES, ComplaintStatus, UserRole
from citizenconnect.services.policy import Actor


@dataclass(frozen=True)
class ComplaintQuery:
    """
    Named optional filters over complaints.

    Role scoping is folded in by for_actor() so callers never assemble
    where-clauses by hand.
    """
    domain: Optional[str] = None
    category: Optional[str] = None
    status: Optional[ComplaintStatus] = None
    statuses: Optional[Tuple[ComplaintStatus, ...]] = None
    department: Optional[str] = None
    ward: Optional[str] = None
    user_id: Optional[int] = None
    assigned_to_id: Optional[int] = None
    created_from: Optional[datetime] = None
    created_to: Optional[datetime] = None
    closed_from: Optional[datetime] = None
    closed_to: Optional[datetime] = None
    text: Optional[str] = None

    @classmethod
    def for_actor(cls, actor: Actor, **filters) -> "ComplaintQuery":
        """
        Build a query restricted to what the actor may see.

        - CITIZEN: own complaints only
        - DEPARTMENT_ADMIN / DEPARTMENT_EMPLOYEE: their department
        - WARD_OFFICER: their ward
        - CITY_ADMIN, SUPER_ADMIN, MAYOR: everything
        """
        spec = cls(**filters)
        if actor.role == UserRole.CITIZEN:
            return replace(spec, user_id=actor.id)
        if actor.role in (UserRole.DEPARTMENT_ADMIN, UserRole.DEPARTMENT_EMPLOYEE):
            return replace(spec, department=actor.department or "")
        if actor.role == UserRole.WARD_OFFICER:
            return replace(spec, ward=actor.ward or "")
        return spec

    @classmethod
    def archive(cls, actor: Actor, year: Optional[int] = None, **filters) -> "ComplaintQuery":
        """Resolved and Closed complaints the actor may see, optionally closed within one year."""
        if year is not None:
            filters["closed_from"] = datetime(year, 1, 1)
            filters["closed_to"] = datetime(year, 12, 31, 23, 59, 59, 999999)
        return cls.for_actor(actor, statuses=FINISHED_STATUSES, **filters)

    def apply(self, query: Query) -> Query:
        if self.domain is not None:
            query = query.filter(Complaint.domain == self.domain)
        if self.category is not None:
            query = query.filter(Complaint.category == self.category)
        if self.status is not None:
            query = query.filter(Complaint.status == self.status)
        if self.statuses is not None:
            query = query.filter(Complaint.status.in_(self.statuses))
        if self.department is not None:
            query = query.filter(Complaint.department == self.department)
        if self.ward is not None:
            query = query.filter(Complaint.ward == self.ward)
        if self.user_id is not None:
            query = query.filter(Complaint.user_id == self.user_id)
        if self.assigned_to_id is not None:
            query = query.filter(Complaint.assigned_to_id == self.assigned_to_id)
        if self.created_from is not None:
            query = query.filter(Complaint.created_at >= self.created_from)
        if self.created_to is not None:
            query = query.filter(Complaint.created_at <= self.created_to)
        if self.closed_from is not None:
            query = query.filter(Complaint.closed_at >= self.closed_from)
        if self.closed_to is not None:
            query = query.filter(Complaint.closed_at <= self.closed_to)
        if self.text is not None:
            pattern = f"%{self.text}%"
            query = query.filter(
                or_(
                    Complaint.title.ilike(pattern),
                    Complaint.description.ilike(pattern),
                    Complaint.location.ilike(pattern),
                )
            )
        return query
