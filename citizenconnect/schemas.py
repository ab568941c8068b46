"""Pydantic schemas for request/response validation.

Field names are snake_case in Python and camelCase on the wire; the
camelCase names are what the dashboard renders, so they must not drift.
"""
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field
from pydantic.alias_generators import to_camel

from citizenconnect.models.enums import ComplaintStatus, UserRole
from citizenconnect.services.state_machine import next_possible_statuses, progress_percentage


class CamelModel(BaseModel):
    model_config = ConfigDict(
        from_attributes=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    def to_payload(self) -> dict:
        """JSON-ready dict with wire names, for socket payloads."""
        return self.model_dump(by_alias=True, mode="json")


# User schemas
class UserSummary(CamelModel):
    id: int
    name: str
    email: str
    role: UserRole
    department: Optional[str] = None
    ward: Optional[str] = None


class EmployeeLoad(UserSummary):
    active_complaints: int


# Status history schemas
class StatusUpdateResponse(CamelModel):
    id: int
    complaint_id: int
    status: ComplaintStatus
    remarks: Optional[str] = None
    updated_by_id: Optional[int] = None
    updated_by: Optional[UserSummary] = None
    updated_at: datetime
    time_spent_in_previous_status: Optional[int] = None


# Complaint schemas
class ComplaintCreate(CamelModel):
    # Required fields are validated by the lifecycle service so the error
    # lists every missing field in one response.
    title: Optional[str] = None
    description: Optional[str] = None
    domain: Optional[str] = None
    category: Optional[str] = None
    location: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    ward: Optional[str] = None
    zone: Optional[str] = None
    district: Optional[str] = None
    media_url: Optional[str] = None


class ComplaintEdit(CamelModel):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, min_length=1)
    domain: Optional[str] = None
    category: Optional[str] = None
    location: Optional[str] = None
    media_url: Optional[str] = None


class ComplaintResponse(CamelModel):
    id: int
    title: str
    description: str
    domain: str
    category: str
    department: Optional[str] = None
    status: ComplaintStatus
    location: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    ward: Optional[str] = None
    zone: Optional[str] = None
    district: Optional[str] = None
    media_url: Optional[str] = None
    user_id: int
    assigned_to_id: Optional[int] = None
    assigned_by_id: Optional[int] = None
    created_at: datetime
    updated_at: datetime
    assigned_at: Optional[datetime] = None
    acknowledged_at: Optional[datetime] = None
    in_progress_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    user: Optional[UserSummary] = None
    assigned_to: Optional[UserSummary] = None


class ComplaintDetailResponse(ComplaintResponse):
    assigned_by: Optional[UserSummary] = None
    status_updates: List[StatusUpdateResponse] = []

    @computed_field(alias="progressPercentage")
    @property
    def progress_percentage(self) -> int:
        return progress_percentage(self.status)

    @computed_field(alias="nextPossibleStatuses")
    @property
    def next_possible_statuses(self) -> List[ComplaintStatus]:
        return next_possible_statuses(self.status)


class ComplaintList(CamelModel):
    count: int
    complaints: List[ComplaintResponse]


class StatusChange(CamelModel):
    new_status: str
    remarks: Optional[str] = Field(None, max_length=1000)


class AssignRequest(CamelModel):
    assigned_to_id: int


class ReassignRequest(CamelModel):
    new_assigned_to_id: int


# Notification schemas
class NotificationResponse(CamelModel):
    id: int
    user_id: int
    complaint_id: Optional[int] = None
    message: str
    is_read: bool
    created_at: datetime


class NotificationList(CamelModel):
    count: int
    unread_count: int
    notifications: List[NotificationResponse]


# Domain lookup
class CategoryMapping(CamelModel):
    category: str
    department: str


DomainCatalog = Dict[str, List[CategoryMapping]]


# Analytics schemas
class StatusBreakdown(CamelModel):
    raised: int = 0
    acknowledged: int = 0
    in_progress: int = 0
    resolved: int = 0
    closed: int = 0


class DashboardOverview(CamelModel):
    total: int
    active: int
    closed: int
    today_new: int
    this_week: int
    this_month: int


class DashboardStats(CamelModel):
    overview: DashboardOverview
    status_breakdown: StatusBreakdown
    average_resolution_time_hours: int
    average_resolution_time_formatted: str


class BreakdownItem(CamelModel):
    key: Optional[str]
    count: int


class TrendPoint(CamelModel):
    date: str
    total: int
    resolved: int
    pending: int


class ComplaintTrend(CamelModel):
    period: str
    trend: List[TrendPoint]


class EmployeePerformance(CamelModel):
    employee_id: int
    name: str
    email: str
    department: Optional[str] = None
    role: UserRole
    assigned_complaints: int
    resolved_complaints: int
    active_complaints: int
    resolution_rate: float
    avg_resolution_time_hours: int


class TimelineActor(CamelModel):
    name: str
    role: UserRole


class TimelineEntry(CamelModel):
    id: int
    status: ComplaintStatus
    status_display_name: str
    remarks: Optional[str] = None
    updated_by: Optional[TimelineActor] = None
    updated_at: datetime
    time_spent_in_minutes: Optional[int] = None
    time_spent_formatted: str


class StatusHistory(CamelModel):
    complaint_id: int
    title: str
    current_status: ComplaintStatus
    created_by: UserSummary
    created_at: datetime
    total_resolution_time: str
    timeline: List[TimelineEntry]


class RecentChange(CamelModel):
    id: int
    complaint_id: int
    complaint_title: str
    domain: str
    category: str
    status: ComplaintStatus
    status_display_name: str
    remarks: Optional[str] = None
    updated_by: Optional[TimelineActor] = None
    updated_at: datetime
    time_ago: str


# Feedback schemas
class FeedbackCreate(CamelModel):
    # Rating is range-checked by the feedback service so the error uses the
    # shared envelope.
    rating: Optional[int] = None
    comment: Optional[str] = Field(None, max_length=2000)
    was_resolved: Optional[bool] = None


class FeedbackUpdate(CamelModel):
    rating: Optional[int] = None
    comment: Optional[str] = Field(None, max_length=2000)
    was_resolved: Optional[bool] = None


class FeedbackResponse(CamelModel):
    id: int
    complaint_id: int
    user_id: int
    rating: int
    comment: Optional[str] = None
    was_resolved: bool
    created_at: datetime
    updated_at: datetime
    user: Optional[UserSummary] = None


class FeedbackList(CamelModel):
    count: int
    feedbacks: List[FeedbackResponse]


class RatingSummary(CamelModel):
    average_rating: float
    total_feedbacks: int
    rating_distribution: Dict[int, int]
    satisfaction_rate: float


class DepartmentRating(CamelModel):
    department: str
    average_rating: float
    total_feedbacks: int


# Archive schemas
class ArchivedComplaint(ComplaintResponse):
    resolution_time_hours: Optional[int] = None
    resolution_time_formatted: str
    feedback: Optional[FeedbackResponse] = None


class Pagination(CamelModel):
    current_page: int
    total_pages: int
    total_count: int
    limit: int


class ArchivePage(CamelModel):
    complaints: List[ArchivedComplaint]
    pagination: Pagination


class YearCount(CamelModel):
    year: int
    count: int


class ArchiveStatistics(CamelModel):
    total_archived: int
    yearly_breakdown: List[YearCount]
    average_resolution_time_hours: int
    average_resolution_time_formatted: str


class ErrorResponse(BaseModel):
    """Body of every service-layer failure."""
    success: bool = False
    error: str
    message: str
