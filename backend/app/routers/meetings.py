"""Meeting API routes: lookups and joining."""
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query

from app.dependencies import get_provisioner, get_store
from app.schemas.meeting import MeetingJoin, MeetingOut
from app.services.meeting_provisioner import JitsiMeetingProvisioner
from app.store.sql import SqlRecordStore

router = APIRouter()


@router.get("/", response_model=list[MeetingOut])
def list_meetings(request_id: Optional[str] = Query(None), store: SqlRecordStore = Depends(get_store)):
    if request_id is not None:
        return store.find("meetings", request_id=request_id)
    return store.find("meetings")


@router.get("/{meeting_id}", response_model=MeetingOut)
def get_meeting(meeting_id: str, store: SqlRecordStore = Depends(get_store)):
    meeting = store.get("meetings", meeting_id)
    if not meeting:
        raise HTTPException(status_code=404, detail="Meeting not found")
    return meeting


@router.post("/{meeting_id}/join", response_model=MeetingOut)
def join_meeting(
    meeting_id: str,
    payload: MeetingJoin,
    provisioner: JitsiMeetingProvisioner = Depends(get_provisioner),
):
    """Record a roster member joining; the first join starts the meeting."""
    return provisioner.join(meeting_id, payload.user_id)
