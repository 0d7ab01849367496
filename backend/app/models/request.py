"""One-to-one Request ORM model."""
import uuid
import enum
from sqlalchemy import Column, String, Text, Date, Time, DateTime, Integer, Float, JSON, Enum as SAEnum
from sqlalchemy.sql import func
from app.database import Base


class RequestStatus(str, enum.Enum):
    draft = "draft"
    open = "open"
    active = "active"
    completed = "completed"
    archived = "archived"
    cancelled = "cancelled"


class Request(Base):
    __tablename__ = "requests"

    request_id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    owner_id = Column(String(36), nullable=False, index=True)
    topic = Column(String(200), nullable=True)
    description = Column(Text, nullable=True)
    subject = Column(String(100), nullable=True)
    payment_amount = Column(Float, nullable=True)
    preferred_date = Column(Date, nullable=True)
    preferred_time = Column(Time, nullable=True)
    duration_minutes = Column(Integer, nullable=True)
    status = Column(SAEnum(RequestStatus), nullable=False, default=RequestStatus.draft, index=True)

    # Ordered response ids; response_count is maintained by atomic increment
    responses = Column(JSON, nullable=False, default=list)
    response_count = Column(Integer, nullable=False, default=0)

    accepted_by = Column(String(36), nullable=True)
    accepted_at = Column(DateTime(timezone=True), nullable=True)
    meeting_ref = Column(String(36), nullable=True)

    published_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    completed_by = Column(String(36), nullable=True)
    archived_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    cancel_reason = Column(String(500), nullable=True)

    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
