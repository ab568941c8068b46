"""
Citizen feedback on finished complaints.

This module is responsible for:
1. Letting the creator rate a Resolved or Closed complaint, once
2. Updating and withdrawing that rating
3. Rating aggregates for dashboards

The assignee gets a live "feedback-received" push; nothing is persisted for it.
"""
import logging
from datetime import datetime
from typing import Callable, List, Optional

from sqlalchemy.orm import Session

from citizenconnect.models.domain import Complaint, Feedback
from citizenconnect.models.enums import FINISHED_STATUSES
from citizenconnect.schemas import DepartmentRating, FeedbackResponse, RatingSummary
from citizenconnect.services.analytics import UNASSIGNED_DEPARTMENT
from citizenconnect.services.errors import Forbidden, NotFound, ValidationError
from citizenconnect.services.notifications import FEEDBACK_RECEIVED, NotificationService
from citizenconnect.services.policy import Actor, Operation, authorize
from citizenconnect.services.queries import ComplaintQuery
from citizenconnect.services.repository import atomic, get_complaint
from citizenconnect.timeutils import utcnow

logger = logging.getLogger(__name__)

MIN_RATING = 1
MAX_RATING = 5


def _check_rating(rating) -> int:
    # bool is an int subclass; True is not a rating
    if isinstance(rating, bool) or not isinstance(rating, int) or not MIN_RATING <= rating <= MAX_RATING:
        raise ValidationError(
            f"Rating is required and must be between {MIN_RATING} and {MAX_RATING}", fields=["rating"]
        )
    return rating


class FeedbackService:
    """Ratings left by citizens on their own finished complaints."""

    def __init__(
        self,
        db: Session,
        notifications: Optional[NotificationService] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.notifications = notifications or NotificationService(db, clock=clock)
        self.clock = clock

    def submit(
        self,
        complaint_id: int,
        citizen: Actor,
        rating: Optional[int],
        comment: Optional[str] = None,
        was_resolved: Optional[bool] = None,
    ) -> Feedback:
        """
        Rate a complaint.

        WILL REFUSE if:
        - the rating is missing or outside 1-5 (ValidationError)
        - the caller did not file the complaint (Forbidden)
        - the complaint is not Resolved or Closed, or already rated (ValidationError)
        """
        rating = _check_rating(rating)

        def work():
            complaint = get_complaint(self.db, complaint_id)
            if complaint.user_id != citizen.id:
                raise Forbidden("You can only give feedback for your own complaints")
            if complaint.status not in FINISHED_STATUSES:
                raise ValidationError(
                    "Feedback can only be submitted for Resolved or Closed complaints "
                    f"(current status: {complaint.status.value})"
                )
            if complaint.feedback is not None:
                raise ValidationError("Feedback already submitted for this complaint. Update it instead.")

            now = self.clock()
            feedback = Feedback(
                complaint_id=complaint.id,
                user_id=citizen.id,
                rating=rating,
                comment=comment,
                was_resolved=True if was_resolved is None else was_resolved,
                created_at=now,
                updated_at=now,
            )
            self.db.add(feedback)
            return feedback

        feedback = atomic(self.db, work, "submit feedback")
        self.db.refresh(feedback)
        logger.info(f"Feedback submitted: {rating} stars for complaint #{complaint_id}")

        assignee_id = feedback.complaint.assigned_to_id
        if assignee_id is not None:
            self.notifications.push_to_user(
                assignee_id,
                FEEDBACK_RECEIVED,
                {
                    "message": f"New feedback received: {rating} stars",
                    "feedback": FeedbackResponse.model_validate(feedback).to_payload(),
                    "timestamp": self.clock().isoformat(),
                },
            )
        return feedback

    def update(
        self,
        complaint_id: int,
        citizen: Actor,
        rating: Optional[int] = None,
        comment: Optional[str] = None,
        was_resolved: Optional[bool] = None,
    ) -> Feedback:
        """Change a rating. Fields left as None are unchanged."""
        if rating is not None:
            _check_rating(rating)

        def work():
            feedback = self._own_feedback(complaint_id, citizen, "update")
            if rating is not None:
                feedback.rating = rating
            if comment is not None:
                feedback.comment = comment
            if was_resolved is not None:
                feedback.was_resolved = was_resolved
            feedback.updated_at = self.clock()
            return feedback

        feedback = atomic(self.db, work, "update feedback")
        self.db.refresh(feedback)
        logger.info(f"Feedback for complaint #{complaint_id} updated")
        return feedback

    def delete(self, complaint_id: int, citizen: Actor) -> None:
        def work():
            self.db.delete(self._own_feedback(complaint_id, citizen, "delete"))

        atomic(self.db, work, "delete feedback")
        logger.info(f"Feedback for complaint #{complaint_id} deleted by user {citizen.id}")

    def for_complaint(self, complaint_id: int) -> Feedback:
        feedback = self.db.query(Feedback).filter(Feedback.complaint_id == complaint_id).first()
        if feedback is None:
            raise NotFound("No feedback found for this complaint")
        return feedback

    def list_all(self, actor: Actor) -> List[Feedback]:
        """Every rating on complaints the actor can see, newest first."""
        authorize(Operation.VIEW_ANALYTICS, actor)
        spec = ComplaintQuery.for_actor(actor)
        return (
            spec.apply(self.db.query(Feedback).join(Feedback.complaint))
            .order_by(Feedback.created_at.desc(), Feedback.id.desc())
            .all()
        )

    # Aggregates

    def average_ratings(self, spec: ComplaintQuery) -> RatingSummary:
        """Mean rating, distribution and satisfaction over the filtered complaints."""
        ratings = (
            spec.apply(self.db.query(Feedback.rating, Feedback.was_resolved).join(Feedback.complaint)).all()
        )
        distribution = {stars: 0 for stars in range(MIN_RATING, MAX_RATING + 1)}
        if not ratings:
            return RatingSummary(
                average_rating=0.0, total_feedbacks=0, rating_distribution=distribution, satisfaction_rate=0.0
            )

        for rating, _ in ratings:
            distribution[rating] += 1
        total = len(ratings)
        resolved = sum(1 for _, was_resolved in ratings if was_resolved)
        return RatingSummary(
            average_rating=round(sum(r for r, _ in ratings) / total, 2),
            total_feedbacks=total,
            rating_distribution=distribution,
            satisfaction_rate=round(resolved / total * 100, 2),
        )

    def top_rated_departments(self) -> List[DepartmentRating]:
        """Departments by mean rating, best first."""
        rows = (
            self.db.query(Complaint.department, Feedback.rating)
            .select_from(Feedback)
            .join(Feedback.complaint)
            .all()
        )
        totals = {}
        for department, rating in rows:
            entry = totals.setdefault(department or UNASSIGNED_DEPARTMENT, [0, 0])
            entry[0] += rating
            entry[1] += 1
        results = [
            DepartmentRating(department=department, average_rating=round(total / count, 2), total_feedbacks=count)
            for department, (total, count) in totals.items()
        ]
        results.sort(key=lambda d: (-d.average_rating, d.department))
        return results

    def _own_feedback(self, complaint_id: int, citizen: Actor, verb: str) -> Feedback:
        feedback = self.for_complaint(complaint_id)
        if feedback.user_id != citizen.id:
            raise Forbidden(f"You can only {verb} your own feedback")
        return feedback
