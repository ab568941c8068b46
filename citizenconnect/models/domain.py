"""Domain models - users, the domain/category lookup, complaints, notifications and feedback."""
from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum as SQLEnum,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from citizenconnect.database import Base
from citizenconnect.models.audit import StatusUpdate
from citizenconnect.models.enums import ComplaintStatus, UserRole, enum_values
from citizenconnect.timeutils import utcnow


class User(Base):
    """
    A citizen or an official.

    department is meaningful for employee/admin roles, ward for ward officers.
    Referenced by complaints, never owned by them.
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    name = Column(String, nullable=False)
    email = Column(String, nullable=False, unique=True, index=True)
    role = Column(
        SQLEnum(UserRole, values_callable=enum_values), nullable=False, default=UserRole.CITIZEN, index=True
    )
    department = Column(String, nullable=True, index=True)
    ward = Column(String, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    complaints = relationship("Complaint", foreign_keys="Complaint.user_id", back_populates="user")
    assigned_complaints = relationship(
        "Complaint", foreign_keys="Complaint.assigned_to_id", back_populates="assigned_to"
    )
    notifications = relationship("Notification", back_populates="user")


class DomainCategory(Base):
    """Static lookup (domain, category) -> department. Read-only at runtime."""
    __tablename__ = "domain_categories"
    __table_args__ = (
        UniqueConstraint("domain", "category", name="domain_category_unique"),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    domain = Column(String, nullable=False, index=True)
    category = Column(String, nullable=False)
    department = Column(String, nullable=False)


class Complaint(Base):
    """
    A citizen-filed issue moving through Raised → Acknowledged → InProgress → Resolved → Closed.

    Invariants enforced in the service layer:
    - status only changes through the status machine or an assignment
    - lifecycle timestamps are set once, on first entry to their status
    - assigned_to_id is only set once a department is known
    - version is bumped on every UPDATE; a writer holding a stale row fails
    """
    __tablename__ = "complaints"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=False)
    domain = Column(String, nullable=False, index=True)
    category = Column(String, nullable=False, index=True)
    department = Column(String, nullable=True, index=True)  # Derived from domain/category
    status = Column(
        SQLEnum(ComplaintStatus, values_callable=enum_values),
        nullable=False,
        default=ComplaintStatus.RAISED,
        index=True,
    )

    # Location
    location = Column(String, nullable=True)  # Free-text address
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    ward = Column(String, nullable=True, index=True)
    zone = Column(String, nullable=True)
    district = Column(String, nullable=True)

    media_url = Column(String, nullable=True)  # Reference only, uploads live elsewhere

    # People
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    assigned_to_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    assigned_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)

    # Timestamps
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
    assigned_at = Column(DateTime, nullable=True)
    acknowledged_at = Column(DateTime, nullable=True)
    in_progress_at = Column(DateTime, nullable=True)
    resolved_at = Column(DateTime, nullable=True)
    closed_at = Column(DateTime, nullable=True)

    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    # Relationships
    user = relationship("User", foreign_keys=[user_id], back_populates="complaints")
    assigned_to = relationship("User", foreign_keys=[assigned_to_id], back_populates="assigned_complaints")
    assigned_by = relationship("User", foreign_keys=[assigned_by_id])
    status_updates = relationship(
        StatusUpdate,
        back_populates="complaint",
        order_by=[StatusUpdate.updated_at, StatusUpdate.id],
    )
    notifications = relationship("Notification", back_populates="complaint")
    feedback = relationship("Feedback", back_populates="complaint", uselist=False)


class Notification(Base):
    """
    A per-user message, optionally tied to a complaint.

    Only is_read is ever mutated.
    """
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    complaint_id = Column(Integer, ForeignKey("complaints.id"), nullable=True, index=True)
    message = Column(String, nullable=False)
    is_read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)

    user = relationship("User", back_populates="notifications")
    complaint = relationship("Complaint", back_populates="notifications")


class Feedback(Base):
    """
    A citizen's rating of how their complaint was handled.

    At most one per complaint, written by the complaint's creator once it is
    Resolved or Closed.
    """
    __tablename__ = "feedbacks"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    complaint_id = Column(Integer, ForeignKey("complaints.id"), nullable=False, unique=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    rating = Column(Integer, nullable=False)  # 1-5
    comment = Column(Text, nullable=True)
    was_resolved = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    complaint = relationship("Complaint", back_populates="feedback")
    user = relationship("User")
