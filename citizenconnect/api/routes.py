"""API routes for complaints, assignments, notifications, feedback, archive and analytics."""
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from citizenconnect.api.deps import get_current_actor, get_publisher
from citizenconnect.database import get_db
from citizenconnect.models.domain import DomainCategory
from citizenconnect.models.enums import ComplaintStatus
from citizenconnect.schemas import (
    ArchivedComplaint,
    ArchivePage,
    ArchiveStatistics,
    AssignRequest,
    BreakdownItem,
    CategoryMapping,
    ComplaintCreate,
    ComplaintDetailResponse,
    ComplaintEdit,
    ComplaintList,
    ComplaintResponse,
    ComplaintTrend,
    DashboardStats,
    DepartmentRating,
    DomainCatalog,
    EmployeeLoad,
    EmployeePerformance,
    ErrorResponse,
    FeedbackCreate,
    FeedbackList,
    FeedbackResponse,
    FeedbackUpdate,
    NotificationList,
    NotificationResponse,
    RatingSummary,
    ReassignRequest,
    RecentChange,
    StatusChange,
    StatusHistory,
)
from citizenconnect.services.analytics import AnalyticsService
from citizenconnect.services.archive import DEFAULT_PAGE_SIZE, ArchiveService
from citizenconnect.services.assignment import AssignmentResolver
from citizenconnect.services.errors import Forbidden
from citizenconnect.services.feedback import FeedbackService
from citizenconnect.services.lifecycle import ComplaintLifecycle
from citizenconnect.services.notifications import NotificationService, Publisher
from citizenconnect.services.policy import Actor, Operation, Scope, authorize
from citizenconnect.services.queries import ComplaintQuery

router = APIRouter(
    responses={
        400: {"model": ErrorResponse, "description": "Invalid input or illegal status transition"},
        403: {"model": ErrorResponse, "description": "Role or scope does not permit the operation"},
        404: {"model": ErrorResponse, "description": "Not found"},
    }
)


# Complaint endpoints
@router.post("/complaints", response_model=ComplaintDetailResponse, status_code=status.HTTP_201_CREATED, tags=["complaints"])
def create_complaint(
    complaint_data: ComplaintCreate,
    actor: Actor = Depends(get_current_actor),
    publisher: Publisher = Depends(get_publisher),
    db: Session = Depends(get_db),
):
    """
    File a complaint.
    Side effect: may auto-assign it to the least busy employee of its department.
    """
    lifecycle = ComplaintLifecycle(db, publisher)
    return lifecycle.create_complaint(actor, **complaint_data.model_dump())


@router.get("/complaints", response_model=ComplaintList, tags=["complaints"])
def list_complaints(
    domain: Optional[str] = None,
    category: Optional[str] = None,
    complaint_status: Optional[ComplaintStatus] = Query(None, alias="status"),
    assigned_to_id: Optional[int] = Query(None, alias="assignedToId"),
    created_from: Optional[datetime] = Query(None, alias="from"),
    created_to: Optional[datetime] = Query(None, alias="to"),
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    """List the complaints visible to the caller, newest first."""
    spec = ComplaintQuery.for_actor(
        actor,
        domain=domain,
        category=category,
        status=complaint_status,
        assigned_to_id=assigned_to_id,
        created_from=created_from,
        created_to=created_to,
    )
    complaints = ComplaintLifecycle(db).list_complaints(spec)
    return {"count": len(complaints), "complaints": complaints}


@router.get("/complaints/{complaint_id}", response_model=ComplaintDetailResponse, tags=["complaints"])
def get_complaint(complaint_id: int, actor: Actor = Depends(get_current_actor), db: Session = Depends(get_db)):
    """Get a complaint with its history, progress and legal next statuses."""
    return ComplaintLifecycle(db).get_complaint(complaint_id, actor)


@router.put("/complaints/{complaint_id}", response_model=ComplaintDetailResponse, tags=["complaints"])
def edit_complaint(
    complaint_id: int,
    changes: ComplaintEdit,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    """Edit your own complaint. Only allowed while it is still Raised."""
    return ComplaintLifecycle(db).edit_complaint(complaint_id, actor, **changes.model_dump(exclude_unset=True))


@router.delete("/complaints/{complaint_id}", tags=["complaints"])
def delete_complaint(complaint_id: int, actor: Actor = Depends(get_current_actor), db: Session = Depends(get_db)):
    """Delete your own complaint. Only allowed while it is still Raised."""
    ComplaintLifecycle(db).delete_complaint(complaint_id, actor)
    return {"success": True, "message": "Complaint deleted successfully"}


@router.put("/complaints/{complaint_id}/status", response_model=ComplaintDetailResponse, tags=["complaints"])
def update_complaint_status(
    complaint_id: int,
    change: StatusChange,
    actor: Actor = Depends(get_current_actor),
    publisher: Publisher = Depends(get_publisher),
    db: Session = Depends(get_db),
):
    """
    Move a complaint to a new status.

    WILL REFUSE if:
    - the caller's role may not update statuses, or the complaint is outside their scope (403)
    - the transition is not allowed from the current status (400, with allowed next statuses)
    """
    lifecycle = ComplaintLifecycle(db, publisher)
    return lifecycle.update_status(complaint_id, change.new_status, change.remarks, actor)


@router.get("/complaints/{complaint_id}/history", response_model=StatusHistory, tags=["complaints"])
def get_status_history(complaint_id: int, actor: Actor = Depends(get_current_actor), db: Session = Depends(get_db)):
    """Status timeline with time spent in each status."""
    ComplaintLifecycle(db).get_complaint(complaint_id, actor)
    return AnalyticsService(db).status_history(complaint_id)


# Assignment endpoints
@router.put("/assignments/{complaint_id}/assign", response_model=ComplaintDetailResponse, tags=["assignments"])
def assign_complaint(
    complaint_id: int,
    request: AssignRequest,
    actor: Actor = Depends(get_current_actor),
    publisher: Publisher = Depends(get_publisher),
    db: Session = Depends(get_db),
):
    """
    Assign a complaint to an employee.
    Side effect: a Raised complaint becomes Acknowledged.
    """
    resolver = AssignmentResolver(db, NotificationService(db, publisher))
    return resolver.assign(complaint_id, request.assigned_to_id, actor)


@router.put("/assignments/{complaint_id}/reassign", response_model=ComplaintDetailResponse, tags=["assignments"])
def reassign_complaint(
    complaint_id: int,
    request: ReassignRequest,
    actor: Actor = Depends(get_current_actor),
    publisher: Publisher = Depends(get_publisher),
    db: Session = Depends(get_db),
):
    """Move a complaint to another employee. Status is unchanged."""
    resolver = AssignmentResolver(db, NotificationService(db, publisher))
    return resolver.reassign(complaint_id, request.new_assigned_to_id, actor)


@router.put("/assignments/{complaint_id}/unassign", response_model=ComplaintDetailResponse, tags=["assignments"])
def unassign_complaint(
    complaint_id: int,
    actor: Actor = Depends(get_current_actor),
    publisher: Publisher = Depends(get_publisher),
    db: Session = Depends(get_db),
):
    """Clear a complaint's assignee. Status is unchanged."""
    resolver = AssignmentResolver(db, NotificationService(db, publisher))
    return resolver.unassign(complaint_id, actor)


@router.get("/assignments/my-assigned", response_model=List[ComplaintResponse], tags=["assignments"])
def my_assigned_complaints(actor: Actor = Depends(get_current_actor), db: Session = Depends(get_db)):
    """Complaints assigned to the caller, most recently assigned first."""
    return AssignmentResolver(db).assigned_to(actor.id)


@router.get("/assignments/employees", response_model=List[EmployeeLoad], tags=["assignments"])
def assignable_employees(
    department: Optional[str] = None,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    """Employees the caller may assign to, least busy first."""
    return AssignmentResolver(db).assignable_employees(actor, department)


# Notification endpoints
@router.get("/notifications", response_model=NotificationList, tags=["notifications"])
def list_notifications(actor: Actor = Depends(get_current_actor), db: Session = Depends(get_db)):
    notifications, unread = NotificationService(db).list_for_user(actor.id)
    return {"count": len(notifications), "unread_count": unread, "notifications": notifications}


@router.put("/notifications/read-all", tags=["notifications"])
def mark_all_notifications_read(actor: Actor = Depends(get_current_actor), db: Session = Depends(get_db)):
    updated = NotificationService(db).mark_all_read(actor.id)
    return {"success": True, "updated": updated}


@router.put("/notifications/{notification_id}/read", response_model=NotificationResponse, tags=["notifications"])
def mark_notification_read(
    notification_id: int,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    return NotificationService(db).mark_read(notification_id, actor.id)


# Domain lookup
@router.get("/domains", response_model=DomainCatalog, tags=["domains"])
def list_domains(db: Session = Depends(get_db)):
    """Categories grouped by domain, with the department that handles each."""
    catalog = {}
    rows = db.query(DomainCategory).order_by(DomainCategory.domain, DomainCategory.category).all()
    for row in rows:
        catalog.setdefault(row.domain, []).append(CategoryMapping(category=row.category, department=row.department))
    return catalog


# Analytics endpoints
def _analytics_spec(actor: Actor) -> ComplaintQuery:
    authorize(Operation.VIEW_ANALYTICS, actor)
    return ComplaintQuery.for_actor(actor)


@router.get("/analytics/dashboard", response_model=DashboardStats, tags=["analytics"])
def dashboard_stats(actor: Actor = Depends(get_current_actor), db: Session = Depends(get_db)):
    return AnalyticsService(db).dashboard_stats(_analytics_spec(actor))


@router.get("/analytics/breakdown/{field}", response_model=List[BreakdownItem], tags=["analytics"])
def complaint_breakdown(field: str, actor: Actor = Depends(get_current_actor), db: Session = Depends(get_db)):
    """Complaint counts by domain, category or department."""
    return AnalyticsService(db).breakdown(_analytics_spec(actor), field)


@router.get("/analytics/trend", response_model=ComplaintTrend, tags=["analytics"])
def complaint_trend(
    period: str = "month",
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    return AnalyticsService(db).trend(_analytics_spec(actor), period)


@router.get("/analytics/employees", response_model=List[EmployeePerformance], tags=["analytics"])
def employee_performance(
    department: Optional[str] = None,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    scope = authorize(Operation.VIEW_ANALYTICS, actor)
    if scope == Scope.WARD:
        raise Forbidden("Employee performance is not available to ward officers")
    if scope == Scope.DEPARTMENT:
        department = actor.department
    return AnalyticsService(db).employee_performance(department)


@router.get("/analytics/recent", response_model=List[RecentChange], tags=["analytics"])
def recent_status_changes(
    limit: int = Query(20, ge=1, le=100),
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    """Latest status changes across the complaints the caller can see."""
    return AnalyticsService(db).recent_status_changes(actor, limit)


# Feedback endpoints
@router.post(
    "/feedback/complaint/{complaint_id}",
    response_model=FeedbackResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["feedback"],
)
def submit_feedback(
    complaint_id: int,
    request: FeedbackCreate,
    actor: Actor = Depends(get_current_actor),
    publisher: Publisher = Depends(get_publisher),
    db: Session = Depends(get_db),
):
    """
    Rate your own Resolved or Closed complaint, once.
    Side effect: the assignee gets a live feedback-received push.
    """
    service = FeedbackService(db, NotificationService(db, publisher))
    return service.submit(complaint_id, actor, **request.model_dump())


@router.put("/feedback/complaint/{complaint_id}", response_model=FeedbackResponse, tags=["feedback"])
def update_feedback(
    complaint_id: int,
    request: FeedbackUpdate,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    return FeedbackService(db).update(complaint_id, actor, **request.model_dump(exclude_unset=True))


@router.delete("/feedback/complaint/{complaint_id}", tags=["feedback"])
def delete_feedback(complaint_id: int, actor: Actor = Depends(get_current_actor), db: Session = Depends(get_db)):
    FeedbackService(db).delete(complaint_id, actor)
    return {"success": True, "message": "Feedback deleted successfully"}


@router.get("/feedback/complaint/{complaint_id}", response_model=FeedbackResponse, tags=["feedback"])
def get_feedback(complaint_id: int, actor: Actor = Depends(get_current_actor), db: Session = Depends(get_db)):
    """Feedback on a complaint the caller can see."""
    ComplaintLifecycle(db).get_complaint(complaint_id, actor)
    return FeedbackService(db).for_complaint(complaint_id)


@router.get("/feedback/ratings/average", response_model=RatingSummary, tags=["feedback"])
def average_ratings(
    department: Optional[str] = None,
    category: Optional[str] = None,
    domain: Optional[str] = None,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    """Mean rating, star distribution and satisfaction rate, optionally filtered."""
    spec = ComplaintQuery(department=department, category=category, domain=domain)
    return FeedbackService(db).average_ratings(spec)


@router.get("/feedback/ratings/top-departments", response_model=List[DepartmentRating], tags=["feedback"])
def top_rated_departments(actor: Actor = Depends(get_current_actor), db: Session = Depends(get_db)):
    return FeedbackService(db).top_rated_departments()


@router.get("/feedback", response_model=FeedbackList, tags=["feedback"])
def list_feedback(actor: Actor = Depends(get_current_actor), db: Session = Depends(get_db)):
    """All feedback on complaints within the caller's analytics scope."""
    feedbacks = FeedbackService(db).list_all(actor)
    return {"count": len(feedbacks), "feedbacks": feedbacks}


# Archive endpoints
@router.get("/archive/complaints", response_model=ArchivePage, tags=["archive"])
def archived_complaints(
    page: int = 1,
    limit: int = DEFAULT_PAGE_SIZE,
    domain: Optional[str] = None,
    category: Optional[str] = None,
    department: Optional[str] = None,
    year: Optional[int] = None,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    """Resolved and Closed complaints the caller can see, most recently closed first."""
    spec = ComplaintQuery.archive(actor, year=year, domain=domain, category=category, department=department)
    return ArchiveService(db).archived(spec, page, limit)


@router.get("/archive/statistics", response_model=ArchiveStatistics, tags=["archive"])
def archive_statistics(actor: Actor = Depends(get_current_actor), db: Session = Depends(get_db)):
    return ArchiveService(db).statistics(ComplaintQuery.archive(actor))


@router.get("/archive/search", response_model=ArchivePage, tags=["archive"])
def search_archive(
    query: Optional[str] = None,
    page: int = 1,
    limit: int = DEFAULT_PAGE_SIZE,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    """Search archived titles, descriptions and locations."""
    return ArchiveService(db).search(ComplaintQuery.archive(actor), query, page, limit)


@router.get("/archive/top-resolved", response_model=List[ArchivedComplaint], tags=["archive"])
def top_resolved_complaints(
    limit: int = Query(10, ge=1, le=100),
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    """Best-rated Closed complaints."""
    return ArchiveService(db).top_resolved(ComplaintQuery.archive(actor), limit)
