"""Pydantic schemas for Meetings."""
from datetime import datetime
from typing import Optional
from pydantic import BaseModel

from app.models.meeting import MeetingStatus, RequestType


class MeetingParticipantOut(BaseModel):
    user_id: str
    role: str  # learner, teacher, creator, participant
    joined_at: Optional[datetime] = None


class MeetingOut(BaseModel):
    meeting_id: str
    request_id: str
    request_type: RequestType
    room_id: str
    join_url: str
    participants: list[MeetingParticipantOut] = []
    status: MeetingStatus
    scheduled_start_utc: Optional[datetime] = None
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    version: int = 1
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class MeetingInfoOut(BaseModel):
    meeting_id: str
    room_id: str
    join_url: str
    created: bool = True

    model_config = {"from_attributes": True}


class MeetingJoin(BaseModel):
    user_id: str
