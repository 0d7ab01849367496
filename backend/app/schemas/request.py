"""Pydantic schemas for one-to-one Requests and Responses."""
from datetime import date, datetime, time
from typing import Optional
from pydantic import BaseModel

from app.models.request import RequestStatus
from app.models.response import ResponseStatus
from app.schemas.meeting import MeetingInfoOut


class RequestCreate(BaseModel):
    owner_id: str
    topic: Optional[str] = None
    description: Optional[str] = None
    subject: Optional[str] = None
    payment_amount: Optional[float] = None
    preferred_date: Optional[date] = None
    preferred_time: Optional[time] = None
    duration_minutes: Optional[int] = None
    publish: bool = False  # create as draft unless set


class RequestUpdate(BaseModel):
    actor_id: str
    topic: Optional[str] = None
    description: Optional[str] = None
    subject: Optional[str] = None
    payment_amount: Optional[float] = None
    preferred_date: Optional[date] = None
    preferred_time: Optional[time] = None
    duration_minutes: Optional[int] = None


class RequestAction(BaseModel):
    actor_id: str
    reason: Optional[str] = None


class RequestOut(BaseModel):
    request_id: str
    owner_id: str
    topic: Optional[str] = None
    description: Optional[str] = None
    subject: Optional[str] = None
    payment_amount: Optional[float] = None
    preferred_date: Optional[date] = None
    preferred_time: Optional[time] = None
    duration_minutes: Optional[int] = None
    status: RequestStatus
    responses: list[str] = []
    response_count: int = 0
    accepted_by: Optional[str] = None
    accepted_at: Optional[datetime] = None
    meeting_ref: Optional[str] = None
    published_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    completed_by: Optional[str] = None
    archived_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancel_reason: Optional[str] = None
    version: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class ResponseCreate(BaseModel):
    responder_id: str
    decision: str  # accepted, declined, not_interested
    message: Optional[str] = None


class ResponseOut(BaseModel):
    response_id: str
    request_id: str
    responder_id: str
    status: ResponseStatus
    message: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class RespondResult(BaseModel):
    request: RequestOut
    response: ResponseOut
    meeting: Optional[MeetingInfoOut] = None
