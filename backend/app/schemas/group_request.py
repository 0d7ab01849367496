"""Pydantic schemas for GroupRequests.

Field rules (title/description length, rate, min_participants) are checked
by the lifecycle so every problem is reported in one ValidationError.
"""
from datetime import datetime
from typing import Optional
from pydantic import BaseModel

from app.models.group_request import GroupRequestStatus, RefundStatus


class GroupRequestCreate(BaseModel):
    creator_id: str
    group_id: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    rate: Optional[float] = 0.0
    min_participants: Optional[int] = None


class GroupRequestUpdate(BaseModel):
    actor_id: str
    title: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    rate: Optional[float] = None
    min_participants: Optional[int] = None


class GroupActor(BaseModel):
    actor_id: str


class GroupCancel(BaseModel):
    actor_id: str
    reason: Optional[str] = None


class SelectTeacher(BaseModel):
    actor_id: str
    teacher_id: str
    deadline_hours: float = 24.0


class GroupRequestOut(BaseModel):
    request_id: str
    creator_id: str
    group_id: str
    title: str
    description: str
    category: Optional[str] = None
    rate: float
    status: GroupRequestStatus
    votes: list[str] = []
    teachers: list[str] = []
    participants: list[str] = []
    paid_participants: list[str] = []
    selected_teacher: Optional[str] = None
    min_participants: int
    vote_count: int
    participant_count: int
    total_paid: float
    payment_deadline: Optional[datetime] = None
    meeting_ref: Optional[str] = None
    refund_status: Optional[RefundStatus] = None
    cancellation_reason: Optional[str] = None
    voting_opened_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None
    funding_started_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    funding_expired_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    refund_initiated_at: Optional[datetime] = None
    version: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class VotingProgressOut(BaseModel):
    votes: int
    threshold: int
    remaining: int
    reached: bool


class ReconciliationOut(BaseModel):
    effective_participants: list[str]
    expected_payers: list[str]
    paid_count: int
    pending_payers: list[str]
    participant_count: int
    voting_progress: VotingProgressOut


class GroupRequestView(BaseModel):
    request: GroupRequestOut
    reconciliation: ReconciliationOut
    available_actions: list[str] = []
    terminal: bool = False
