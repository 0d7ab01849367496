"""Meeting ORM model — one per request, created by the provisioner."""
import uuid
import enum
from sqlalchemy import Column, String, DateTime, Integer, JSON, Enum as SAEnum
from sqlalchemy.sql import func
from app.database import Base


class RequestType(str, enum.Enum):
    one_to_one = "one-to-one"
    group = "group"


class MeetingStatus(str, enum.Enum):
    scheduled = "scheduled"
    active = "active"
    completed = "completed"


class Meeting(Base):
    __tablename__ = "meetings"

    meeting_id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    request_id = Column(String(36), nullable=False, unique=True)
    request_type = Column(SAEnum(RequestType, values_callable=lambda e: [m.value for m in e]), nullable=False)
    room_id = Column(String(200), nullable=False)
    join_url = Column(String(500), nullable=False)
    # [{"user_id": ..., "role": ..., "joined_at": ...}], ordered
    participants = Column(JSON, nullable=False, default=list)
    status = Column(SAEnum(MeetingStatus), nullable=False, default=MeetingStatus.scheduled)
    scheduled_start_utc = Column(DateTime(timezone=True), nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    ended_at = Column(DateTime(timezone=True), nullable=True)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
