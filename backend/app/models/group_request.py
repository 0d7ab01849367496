"""GroupRequest ORM model.

votes / teachers / participants / paid_participants are JSON lists that the
lifecycle treats as sets. vote_count and participant_count are a cache of
the reconciliation output, never read back as a source of truth.
"""
import uuid
import enum
from sqlalchemy import Column, String, Text, DateTime, Integer, Float, JSON, Enum as SAEnum
from sqlalchemy.sql import func
from app.database import Base


class GroupRequestStatus(str, enum.Enum):
    pending = "pending"
    voting_open = "voting_open"
    accepted = "accepted"
    funding = "funding"
    paid = "paid"
    payment_complete = "payment_complete"
    in_progress = "in_progress"
    completed = "completed"
    cancelled = "cancelled"


class RefundStatus(str, enum.Enum):
    pending = "pending"


class GroupRequest(Base):
    __tablename__ = "group_requests"

    request_id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    creator_id = Column(String(36), nullable=False, index=True)
    group_id = Column(String(36), nullable=False, index=True)
    title = Column(String(100), nullable=False)
    description = Column(Text, nullable=False)
    category = Column(String(100), nullable=True)
    rate = Column(Float, nullable=False, default=0.0)
    status = Column(SAEnum(GroupRequestStatus), nullable=False, default=GroupRequestStatus.pending, index=True)

    votes = Column(JSON, nullable=False, default=list)
    teachers = Column(JSON, nullable=False, default=list)
    participants = Column(JSON, nullable=False, default=list)
    paid_participants = Column(JSON, nullable=False, default=list)
    selected_teacher = Column(String(36), nullable=True)
    min_participants = Column(Integer, nullable=False, default=3)

    vote_count = Column(Integer, nullable=False, default=0)
    participant_count = Column(Integer, nullable=False, default=1)
    total_paid = Column(Float, nullable=False, default=0.0)

    payment_deadline = Column(DateTime(timezone=True), nullable=True, index=True)
    meeting_ref = Column(String(36), nullable=True)
    refund_status = Column(SAEnum(RefundStatus), nullable=True)
    cancellation_reason = Column(String(500), nullable=True)

    voting_opened_at = Column(DateTime(timezone=True), nullable=True)
    accepted_at = Column(DateTime(timezone=True), nullable=True)
    funding_started_at = Column(DateTime(timezone=True), nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    funding_expired_at = Column(DateTime(timezone=True), nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    refund_initiated_at = Column(DateTime(timezone=True), nullable=True)

    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
