"""
Status history model - the append-only audit trail of a complaint.

Rows are written exactly once per status change or assignment change and
are never edited or deleted by the service layer.
"""
from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, Enum as SQLEnum
from sqlalchemy.orm import relationship

from citizenconnect.database import Base
from citizenconnect.models.enums import ComplaintStatus, enum_values
from citizenconnect.timeutils import utcnow


class StatusUpdate(Base):
    """
    Immutable status history entry.

    Invariants:
    - Once written, never edited or deleted
    - Rows for one complaint are totally ordered by (updated_at, id)
    - time_spent_in_previous_status is null only for a complaint's first row
    """
    __tablename__ = "status_updates"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    complaint_id = Column(Integer, ForeignKey("complaints.id"), nullable=False, index=True)
    status = Column(SQLEnum(ComplaintStatus, values_callable=enum_values), nullable=False)
    remarks = Column(String, nullable=True)
    updated_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)  # Null for system actions
    updated_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    time_spent_in_previous_status = Column(Integer, nullable=True)  # Minutes

    complaint = relationship("Complaint", back_populates="status_updates")
    updated_by = relationship("User")
