"""
Read-only aggregates for dashboards.

Every aggregate takes a ComplaintQuery that the caller has already scoped to
the actor (see ComplaintQuery.for_actor), so nothing here repeats role logic.
"""
import logging
from collections import OrderedDict
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from dateutil.relativedelta import relativedelta
from sqlalchemy import func
from sqlalchemy.orm import Session

from citizenconnect.models.audit import StatusUpdate
from citizenconnect.models.domain import Complaint, User
from citizenconnect.models.enums import EMPLOYEE_ROLES, FINISHED_STATUSES, ComplaintStatus
from citizenconnect.schemas import (
    BreakdownItem,
    ComplaintTrend,
    DashboardOverview,
    DashboardStats,
    EmployeePerformance,
    RecentChange,
    StatusBreakdown,
    StatusHistory,
    TimelineActor,
    TimelineEntry,
    TrendPoint,
    UserSummary,
)
from citizenconnect.services.errors import ValidationError
from citizenconnect.services.policy import Actor
from citizenconnect.services.queries import ComplaintQuery
from citizenconnect.services.repository import get_complaint
from citizenconnect.services.state_machine import status_display_name
from citizenconnect.timeutils import format_duration, format_hours, minutes_between, time_ago, utcnow

logger = logging.getLogger(__name__)

BREAKDOWN_FIELDS = {
    "domain": Complaint.domain,
    "category": Complaint.category,
    "department": Complaint.department,
}

# How far back each trend period looks; calendar months clamp to month end
TREND_WINDOWS = {
    "week": timedelta(days=7),
    "month": relativedelta(months=1),
    "year": relativedelta(years=1),
}

UNASSIGNED_DEPARTMENT = "Unassigned"


def average_resolution_hours(complaints: List[Complaint]) -> int:
    """Mean creation-to-resolution time in whole hours, 0 with nothing resolved."""
    resolved = [c for c in complaints if c.resolved_at is not None]
    if not resolved:
        return 0
    total_seconds = sum((c.resolved_at - c.created_at).total_seconds() for c in resolved)
    return int(total_seconds // len(resolved) // 3600)


def _timeline_actor(user: Optional[User]) -> Optional[TimelineActor]:
    if user is None:
        return None
    return TimelineActor(name=user.name, role=user.role)


class AnalyticsService:
    """Dashboard statistics, breakdowns, trends and status timelines."""

    def __init__(self, db: Session, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.clock = clock

    def _complaints(self, spec: ComplaintQuery):
        return spec.apply(self.db.query(Complaint))

    def dashboard_stats(self, spec: ComplaintQuery, now: Optional[datetime] = None) -> DashboardStats:
        now = now or self.clock()
        counts: Dict[ComplaintStatus, int] = dict(
            spec.apply(self.db.query(Complaint.status, func.count(Complaint.id)))
            .group_by(Complaint.status)
            .all()
        )
        total = sum(counts.values())
        closed = counts.get(ComplaintStatus.CLOSED, 0)

        today = now.replace(hour=0, minute=0, second=0, microsecond=0)
        week_start = now - timedelta(days=7)
        month_start = today.replace(day=1)

        def created_since(start: datetime) -> int:
            return self._complaints(spec).filter(Complaint.created_at >= start).count()

        finished = (
            self._complaints(spec)
            .filter(Complaint.status.in_(FINISHED_STATUSES), Complaint.resolved_at.isnot(None))
            .all()
        )
        average = average_resolution_hours(finished)

        return DashboardStats(
            overview=DashboardOverview(
                total=total,
                active=total - closed,
                closed=closed,
                today_new=created_since(today),
                this_week=created_since(week_start),
                this_month=created_since(month_start),
            ),
            status_breakdown=StatusBreakdown(
                raised=counts.get(ComplaintStatus.RAISED, 0),
                acknowledged=counts.get(ComplaintStatus.ACKNOWLEDGED, 0),
                in_progress=counts.get(ComplaintStatus.IN_PROGRESS, 0),
                resolved=counts.get(ComplaintStatus.RESOLVED, 0),
                closed=closed,
            ),
            average_resolution_time_hours=average,
            average_resolution_time_formatted=format_hours(average),
        )

    def breakdown(self, spec: ComplaintQuery, field: str) -> List[BreakdownItem]:
        """Complaint counts grouped by domain, category or department, largest first."""
        column = BREAKDOWN_FIELDS.get(field)
        if column is None:
            raise ValidationError(
                f"Cannot break down by {field}. Must be one of: {', '.join(BREAKDOWN_FIELDS)}",
                fields=["field"],
            )
        count = func.count(Complaint.id)
        rows = (
            spec.apply(self.db.query(column, count))
            .group_by(column)
            .order_by(count.desc(), column.asc())
            .all()
        )
        items = []
        for key, n in rows:
            if key is None and field == "department":
                key = UNASSIGNED_DEPARTMENT
            items.append(BreakdownItem(key=key, count=n))
        return items

    def trend(self, spec: ComplaintQuery, period: str = "month", now: Optional[datetime] = None) -> ComplaintTrend:
        """
        Complaints created per day (week, month) or per month (year).

        Buckets with no complaints are omitted.
        """
        window = TREND_WINDOWS.get(period)
        if window is None:
            raise ValidationError(
                f"Unknown period {period}. Must be one of: {', '.join(TREND_WINDOWS)}", fields=["period"]
            )
        now = now or self.clock()
        start = now - window
        bucket_format = "%Y-%m" if period == "year" else "%Y-%m-%d"

        rows = (
            spec.apply(self.db.query(Complaint.created_at, Complaint.status))
            .filter(Complaint.created_at >= start)
            .order_by(Complaint.created_at.asc())
            .all()
        )
        buckets: "OrderedDict[str, List[int]]" = OrderedDict()
        for created_at, status in rows:
            bucket = buckets.setdefault(created_at.strftime(bucket_format), [0, 0])
            bucket[0] += 1
            if status in FINISHED_STATUSES:
                bucket[1] += 1

        return ComplaintTrend(
            period=period,
            trend=[
                TrendPoint(date=date, total=total, resolved=resolved, pending=total - resolved)
                for date, (total, resolved) in buckets.items()
            ],
        )

    def employee_performance(self, department: Optional[str] = None) -> List[EmployeePerformance]:
        """Per-employee workload and resolution figures, best resolution rate first."""
        query = self.db.query(User).filter(User.role.in_(EMPLOYEE_ROLES))
        if department is not None:
            query = query.filter(User.department == department)

        results = []
        for employee in query.order_by(User.id.asc()).all():
            complaints = employee.assigned_complaints
            assigned = len(complaints)
            resolved = sum(1 for c in complaints if c.status in FINISHED_STATUSES)
            results.append(
                EmployeePerformance(
                    employee_id=employee.id,
                    name=employee.name,
                    email=employee.email,
                    department=employee.department,
                    role=employee.role,
                    assigned_complaints=assigned,
                    resolved_complaints=resolved,
                    active_complaints=assigned - resolved,
                    resolution_rate=round(resolved / assigned * 100, 2) if assigned else 0.0,
                    avg_resolution_time_hours=average_resolution_hours(complaints),
                )
            )
        results.sort(key=lambda p: p.resolution_rate, reverse=True)
        return results

    def status_history(self, complaint_id: int) -> StatusHistory:
        """
        Ordered timeline of a complaint.

        Each entry reports how long the complaint stayed in that status, which
        is the dwell time recorded on the following entry. The latest entry
        is still running and reports "Current".
        """
        complaint = get_complaint(self.db, complaint_id)
        updates = complaint.status_updates

        timeline = []
        for index, update in enumerate(updates):
            following = updates[index + 1] if index + 1 < len(updates) else None
            spent = following.time_spent_in_previous_status if following is not None else None
            timeline.append(
                TimelineEntry(
                    id=update.id,
                    status=update.status,
                    status_display_name=status_display_name(update.status),
                    remarks=update.remarks,
                    updated_by=_timeline_actor(update.updated_by),
                    updated_at=update.updated_at,
                    time_spent_in_minutes=spent,
                    time_spent_formatted=format_duration(spent) if spent is not None else "Current",
                )
            )

        if complaint.closed_at is not None:
            total = format_duration(minutes_between(complaint.created_at, complaint.closed_at))
        else:
            total = "In Progress"

        return StatusHistory(
            complaint_id=complaint.id,
            title=complaint.title,
            current_status=complaint.status,
            created_by=UserSummary.model_validate(complaint.user),
            created_at=complaint.created_at,
            total_resolution_time=total,
            timeline=timeline,
        )

    def recent_status_changes(self, actor: Actor, limit: int = 20, now: Optional[datetime] = None) -> List[RecentChange]:
        """Latest history rows across the complaints the actor can see."""
        now = now or self.clock()
        spec = ComplaintQuery.for_actor(actor)
        updates = (
            spec.apply(self.db.query(StatusUpdate).join(StatusUpdate.complaint))
            .order_by(StatusUpdate.updated_at.desc(), StatusUpdate.id.desc())
            .limit(limit)
            .all()
        )
        return [
            RecentChange(
                id=update.id,
                complaint_id=update.complaint.id,
                complaint_title=update.complaint.title,
                domain=update.complaint.domain,
                category=update.complaint.category,
                status=update.status,
                status_display_name=status_display_name(update.status),
                remarks=update.remarks,
                updated_by=_timeline_actor(update.updated_by),
                updated_at=update.updated_at,
                time_ago=time_ago(update.updated_at, now),
            )
            for update in updates
        ]
