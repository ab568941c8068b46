"""Read-only views over finished (Resolved or Closed) complaints."""
import logging
import math
from collections import Counter
from dataclasses import replace
from typing import List, Optional

from sqlalchemy.orm import Session, joinedload

from citizenconnect.models.domain import Complaint, Feedback
from citizenconnect.models.enums import ComplaintStatus
from citizenconnect.schemas import (
    ArchivedComplaint,
    ArchivePage,
    ArchiveStatistics,
    ComplaintResponse,
    FeedbackResponse,
    Pagination,
    YearCount,
)
from citizenconnect.services.analytics import average_resolution_hours
from citizenconnect.services.errors import ValidationError
from citizenconnect.services.queries import ComplaintQuery
from citizenconnect.timeutils import format_hours

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


def resolution_hours(complaint: Complaint) -> Optional[int]:
    if complaint.resolved_at is None:
        return None
    return int((complaint.resolved_at - complaint.created_at).total_seconds() // 3600)


def to_archived(complaint: Complaint) -> ArchivedComplaint:
    hours = resolution_hours(complaint)
    return ArchivedComplaint(
        **ComplaintResponse.model_validate(complaint).model_dump(),
        resolution_time_hours=hours,
        resolution_time_formatted="N/A" if hours is None else format_hours(hours),
        feedback=FeedbackResponse.model_validate(complaint.feedback) if complaint.feedback else None,
    )


def _check_paging(page: int, limit: int) -> None:
    if page < 1:
        raise ValidationError("Page must be 1 or greater", fields=["page"])
    if not 1 <= limit <= MAX_PAGE_SIZE:
        raise ValidationError(f"Limit must be between 1 and {MAX_PAGE_SIZE}", fields=["limit"])


class ArchiveService:
    """Finished complaints, newest closure first."""

    def __init__(self, db: Session):
        self.db = db

    def _query(self, spec: ComplaintQuery):
        return spec.apply(
            self.db.query(Complaint).options(
                joinedload(Complaint.user), joinedload(Complaint.assigned_to), joinedload(Complaint.feedback)
            )
        )

    def archived(self, spec: ComplaintQuery, page: int = 1, limit: int = DEFAULT_PAGE_SIZE) -> ArchivePage:
        """One page of archived complaints; build the filter with ComplaintQuery.archive()."""
        _check_paging(page, limit)
        total = spec.apply(self.db.query(Complaint)).count()
        complaints = (
            self._query(spec)
            .order_by(
                Complaint.closed_at.desc().nullslast(), Complaint.resolved_at.desc(), Complaint.id.desc()
            )
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return ArchivePage(
            complaints=[to_archived(c) for c in complaints],
            pagination=Pagination(
                current_page=page,
                total_pages=math.ceil(total / limit),
                total_count=total,
                limit=limit,
            ),
        )

    def search(
        self, spec: ComplaintQuery, text: Optional[str], page: int = 1, limit: int = DEFAULT_PAGE_SIZE
    ) -> ArchivePage:
        """Archived complaints whose title, description or location contains text."""
        if text is None or not text.strip():
            raise ValidationError("Search query is required", fields=["query"])
        logger.debug(f"Archive search for {text.strip()!r}")
        return self.archived(replace(spec, text=text.strip()), page, limit)

    def statistics(self, spec: ComplaintQuery) -> ArchiveStatistics:
        """
        Totals for the archive.

        Years come from closed_at, falling back to resolved_at for complaints
        that were never closed.
        """
        complaints = spec.apply(self.db.query(Complaint)).all()
        years = Counter((c.closed_at or c.resolved_at).year for c in complaints if c.closed_at or c.resolved_at)
        average = average_resolution_hours(complaints)
        return ArchiveStatistics(
            total_archived=len(complaints),
            yearly_breakdown=[YearCount(year=year, count=years[year]) for year in sorted(years, reverse=True)],
            average_resolution_time_hours=average,
            average_resolution_time_formatted=format_hours(average),
        )

    def top_resolved(self, spec: ComplaintQuery, limit: int = 10) -> List[ArchivedComplaint]:
        """Closed complaints with feedback, best rated first."""
        complaints = (
            self._query(replace(spec, statuses=(ComplaintStatus.CLOSED,)))
            .join(Feedback, Feedback.complaint_id == Complaint.id)
            .order_by(Feedback.rating.desc(), Complaint.closed_at.desc(), Complaint.id.desc())
            .limit(limit)
            .all()
        )
        return [to_archived(c) for c in complaints]
