"""
Data-access contracts shared by the lifecycle and assignment services.

Every complaint mutation runs through atomic(): the complaint row and its
StatusUpdate are written in one transaction, or not at all.
"""
import logging
from datetime import datetime
from typing import Callable, Optional, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from citizenconnect.models.audit import StatusUpdate
from citizenconnect.models.domain import Complaint
from citizenconnect.models.enums import ComplaintStatus
from citizenconnect.services.errors import CitizenConnectError, InternalError, NotFound
from citizenconnect.timeutils import minutes_between

logger = logging.getLogger(__name__)

T = TypeVar("T")


def get_complaint(db: Session, complaint_id: int) -> Complaint:
    complaint = db.query(Complaint).filter(Complaint.id == complaint_id).first()
    if complaint is None:
        raise NotFound("Complaint not found")
    return complaint


def lock_complaint(db: Session, complaint_id: int) -> Complaint:
    """
    Load a complaint for modification.

    Takes a row lock where the database supports it (PostgreSQL) and always
    refreshes the identity map, so a retried attempt sees the latest commit.
    """
    complaint = (
        db.query(Complaint)
        .filter(Complaint.id == complaint_id)
        .populate_existing()
        .with_for_update()
        .first()
    )
    if complaint is None:
        raise NotFound("Complaint not found")
    return complaint


def last_status_update(db: Session, complaint_id: int) -> Optional[StatusUpdate]:
    return (
        db.query(StatusUpdate)
        .filter(StatusUpdate.complaint_id == complaint_id)
        .order_by(StatusUpdate.updated_at.desc(), StatusUpdate.id.desc())
        .first()
    )


def append_status_update(
    db: Session,
    complaint: Complaint,
    status: ComplaintStatus,
    remarks: str,
    updated_by_id: Optional[int],
    now: datetime,
) -> StatusUpdate:
    """
    Append one history row, recording how long the complaint sat since the previous row.

    The first row of a complaint has no dwell time.
    """
    time_spent = None
    if complaint.id is not None:
        previous = last_status_update(db, complaint.id)
        if previous is not None:
            time_spent = max(0, minutes_between(previous.updated_at, now))

    entry = StatusUpdate(
        status=status,
        remarks=remarks,
        updated_by_id=updated_by_id,
        updated_at=now,
        time_spent_in_previous_status=time_spent,
    )
    complaint.status_updates.append(entry)
    return entry


def atomic(db: Session, work: Callable[[], T], description: str, retries: int = 0) -> T:
    """
    Run work() and commit it as one unit.

    A StaleDataError means another request changed the complaint between our
    read and our write; the whole read-validate-write is rolled back and run
    again so validation sees the committed state. Domain errors roll back and
    propagate untouched. Any other database failure becomes InternalError.
    """
    attempt = 0
    while True:
        try:
            result = work()
            db.commit()
            return result
        except StaleDataError:
            db.rollback()
            attempt += 1
            if attempt > retries:
                logger.error(f"Gave up trying to {description} after {attempt} concurrent conflicts")
                raise InternalError(f"Could not {description}: the complaint was modified concurrently")
            logger.info(f"Concurrent modification while trying to {description}, retrying ({attempt}/{retries})")
        except CitizenConnectError:
            db.rollback()
            raise
        except SQLAlchemyError as e:
            db.rollback()
            logger.exception(f"Database error while trying to {description}, transaction rolled back")
            raise InternalError(f"Failed to {description}") from e
