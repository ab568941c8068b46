"""
Notification fan-out: durable per-user notifications plus live channel pushes.

This module is responsible for:
1. Persisting a Notification row before anything is pushed
2. Publishing events to per-user, per-role and per-complaint channels
3. The poll side: listing and marking notifications read

Delivery is best effort. A recipient that is offline, or a publisher that
fails, never fails the operation that triggered the notification.
"""
import logging
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol, Tuple

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from citizenconnect.models.domain import Notification
from citizenconnect.models.enums import UserRole
from citizenconnect.schemas import NotificationResponse
from citizenconnect.services.errors import NotFound
from citizenconnect.timeutils import utcnow

logger = logging.getLogger(__name__)


# Event names pushed to clients
NEW_NOTIFICATION = "new-notification"
NEW_COMPLAINT = "new-complaint"
COMPLAINT_ASSIGNED = "complaint-assigned"
COMPLAINT_UNASSIGNED = "complaint-unassigned"
COMPLAINT_STATUS_UPDATED = "complaint-status-updated"
STATUS_CHANGED = "status-changed"
FEEDBACK_RECEIVED = "feedback-received"


def user_channel(user_id: int) -> str:
    return f"user:{user_id}"


def role_channel(role: UserRole) -> str:
    return f"role:{UserRole(role).value}"


def complaint_channel(complaint_id: int) -> str:
    return f"complaint:{complaint_id}"


class Publisher(Protocol):
    """Channel-addressed push primitive implemented by the real-time layer."""

    def publish(self, channel: str, event: str, payload: Dict[str, Any]) -> None:
        ...


class NullPublisher:
    """Publisher with no subscribers at all (scripts, seeding, background jobs)."""

    def publish(self, channel: str, event: str, payload: Dict[str, Any]) -> None:
        logger.debug(f"No real-time layer attached, dropping '{event}' for {channel}")


class NotificationService:
    """Persists notifications and pushes them to live subscribers."""

    def __init__(
        self,
        db: Session,
        publisher: Optional[Publisher] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.publisher = publisher or NullPublisher()
        self.clock = clock

    def notify(
        self,
        user_id: int,
        message: str,
        complaint_id: Optional[int] = None,
        event_name: str = NEW_NOTIFICATION,
    ) -> Optional[Notification]:
        """
        Persist a notification, then push it to the user's channel.

        The row is committed before the push so a client that reconnects
        later can still poll for it. Returns None if the row could not be
        stored; the caller's own transaction has already committed by then.
        """
        notification = Notification(
            user_id=user_id,
            complaint_id=complaint_id,
            message=message,
            is_read=False,
            created_at=self.clock(),
        )
        try:
            self.db.add(notification)
            self.db.commit()
            self.db.refresh(notification)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Could not store notification for user {user_id}: {e}")
            return None

        payload = {"notification": NotificationResponse.model_validate(notification).to_payload()}
        self._deliver(user_channel(user_id), event_name, payload)
        logger.info(f"Notification {notification.id} created and sent to user {user_id}")
        return notification

    def notify_many(
        self,
        user_ids: Iterable[int],
        message: str,
        complaint_id: Optional[int] = None,
        event_name: str = NEW_NOTIFICATION,
    ) -> List[Notification]:
        created = []
        for user_id in user_ids:
            notification = self.notify(user_id, message, complaint_id, event_name)
            if notification is not None:
                created.append(notification)
        return created

    def push_to_user(self, user_id: int, event: str, payload: Dict[str, Any]) -> None:
        """Live push to one user without storing a notification."""
        self._deliver(user_channel(user_id), event, payload)

    def broadcast_to_role(self, role: UserRole, event: str, payload: Dict[str, Any]) -> None:
        """Live push to everyone holding a role. Nothing is persisted."""
        self._deliver(role_channel(role), event, payload)

    def broadcast_to_complaint(self, complaint_id: int, event: str, payload: Dict[str, Any]) -> None:
        """Live push to clients watching one complaint. Nothing is persisted."""
        self._deliver(complaint_channel(complaint_id), event, payload)

    def _deliver(self, channel: str, event: str, payload: Dict[str, Any]) -> None:
        try:
            self.publisher.publish(channel, event, payload)
        except Exception as e:
            # Real-time push is best effort; the persisted state is the record.
            logger.warning(f"Failed to publish '{event}' to {channel}: {e}")

    # Poll side

    def list_for_user(self, user_id: int) -> Tuple[List[Notification], int]:
        """All of a user's notifications, unread first then newest first, plus the unread count."""
        notifications = (
            self.db.query(Notification)
            .filter(Notification.user_id == user_id)
            .order_by(Notification.is_read.asc(), Notification.created_at.desc(), Notification.id.desc())
            .all()
        )
        unread = sum(1 for n in notifications if not n.is_read)
        return notifications, unread

    def mark_read(self, notification_id: int, user_id: int) -> Notification:
        notification = self.db.query(Notification).filter(Notification.id == notification_id).first()
        # Someone else's notification is reported as missing, not forbidden
        if notification is None or notification.user_id != user_id:
            raise NotFound("Notification not found")
        notification.is_read = True
        self.db.commit()
        self.db.refresh(notification)
        return notification

    def mark_all_read(self, user_id: int) -> int:
        result = self.db.execute(
            update(Notification)
            .where(Notification.user_id == user_id, Notification.is_read.is_(False))
            .values(is_read=True)
        )
        self.db.commit()
        return result.rowcount
