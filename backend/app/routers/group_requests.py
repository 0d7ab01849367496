"""Group request API routes — delegates to group_request_service."""
from typing import Optional
from fastapi import APIRouter, Depends, Query, status

from app.dependencies import get_directory, get_provisioner, get_store
from app.models.group_request import GroupRequestStatus
from app.schemas.group_request import (
    GroupActor,
    GroupCancel,
    GroupRequestCreate,
    GroupRequestOut,
    GroupRequestUpdate,
    GroupRequestView,
    ReconciliationOut,
    SelectTeacher,
)
from app.services import group_request_service
from app.services.directory import SqlDirectory
from app.services.meeting_provisioner import JitsiMeetingProvisioner
from app.store.sql import SqlRecordStore

router = APIRouter()


@router.post("/", response_model=GroupRequestOut, status_code=status.HTTP_201_CREATED)
def create_group_request(
    payload: GroupRequestCreate,
    store: SqlRecordStore = Depends(get_store),
    directory: SqlDirectory = Depends(get_directory),
):
    fields = payload.model_dump(exclude={"creator_id"})
    return group_request_service.create_group_request(store, payload.creator_id, fields, directory=directory)


@router.get("/", response_model=list[GroupRequestOut])
def list_group_requests(
    group_id: Optional[str] = Query(None),
    status_filter: Optional[GroupRequestStatus] = Query(None, alias="status"),
    creator_id: Optional[str] = Query(None),
    store: SqlRecordStore = Depends(get_store),
):
    return group_request_service.list_group_requests(store, group_id, status_filter, creator_id)


@router.get("/{request_id}", response_model=GroupRequestView)
def get_group_request(request_id: str, store: SqlRecordStore = Depends(get_store)):
    """Group request with counts recomputed from its member sets."""
    view = group_request_service.get_group_request_view(store, request_id)
    return GroupRequestView(
        request=GroupRequestOut.model_validate(view["record"]),
        reconciliation=ReconciliationOut(**view["reconciliation"].as_dict()),
        available_actions=view["available_actions"],
        terminal=view["terminal"],
    )


@router.patch("/{request_id}", response_model=GroupRequestOut)
def update_group_request(request_id: str, payload: GroupRequestUpdate, store: SqlRecordStore = Depends(get_store)):
    """Edit a pending request (creator only)."""
    fields = payload.model_dump(exclude_unset=True, exclude={"actor_id"})
    return group_request_service.update_group_request(store, request_id, payload.actor_id, fields)


@router.post("/{request_id}/vote", response_model=GroupRequestOut)
def vote(request_id: str, payload: GroupActor, store: SqlRecordStore = Depends(get_store)):
    return group_request_service.vote(store, request_id, payload.actor_id)


@router.post("/{request_id}/unvote", response_model=GroupRequestOut)
def unvote(request_id: str, payload: GroupActor, store: SqlRecordStore = Depends(get_store)):
    return group_request_service.unvote(store, request_id, payload.actor_id)


@router.post("/{request_id}/join", response_model=GroupRequestOut)
def join(request_id: str, payload: GroupActor, store: SqlRecordStore = Depends(get_store)):
    return group_request_service.join(store, request_id, payload.actor_id)


@router.post("/{request_id}/leave", response_model=GroupRequestOut)
def leave(request_id: str, payload: GroupActor, store: SqlRecordStore = Depends(get_store)):
    return group_request_service.leave(store, request_id, payload.actor_id)


@router.post("/{request_id}/teach", response_model=GroupRequestOut)
def apply_to_teach(request_id: str, payload: GroupActor, store: SqlRecordStore = Depends(get_store)):
    return group_request_service.apply_to_teach(store, request_id, payload.actor_id)


@router.post("/{request_id}/withdraw-teaching", response_model=GroupRequestOut)
def withdraw_teaching(request_id: str, payload: GroupActor, store: SqlRecordStore = Depends(get_store)):
    return group_request_service.withdraw_teaching(store, request_id, payload.actor_id)


@router.post("/{request_id}/select-teacher", response_model=GroupRequestOut)
def select_teacher(request_id: str, payload: SelectTeacher, store: SqlRecordStore = Depends(get_store)):
    """Creator picks the teacher and opens the payment window."""
    return group_request_service.select_teacher(
        store, request_id, payload.actor_id, payload.teacher_id, payload.deadline_hours
    )


@router.post("/{request_id}/pay", response_model=GroupRequestOut)
def pay(
    request_id: str,
    payload: GroupActor,
    store: SqlRecordStore = Depends(get_store),
    provisioner: JitsiMeetingProvisioner = Depends(get_provisioner),
):
    """Record a payment of the request's rate. Payments are not charged."""
    return group_request_service.pay(store, provisioner, request_id, payload.actor_id)


@router.post("/{request_id}/start", response_model=GroupRequestOut)
def mark_started(request_id: str, payload: GroupActor, store: SqlRecordStore = Depends(get_store)):
    return group_request_service.mark_started(store, request_id, payload.actor_id)


@router.post("/{request_id}/complete", response_model=GroupRequestOut)
def complete(
    request_id: str,
    payload: GroupActor,
    store: SqlRecordStore = Depends(get_store),
    provisioner: JitsiMeetingProvisioner = Depends(get_provisioner),
):
    return group_request_service.complete(store, provisioner, request_id, payload.actor_id)


@router.post("/{request_id}/cancel", response_model=GroupRequestOut)
def cancel(
    request_id: str,
    payload: GroupCancel,
    store: SqlRecordStore = Depends(get_store),
    provisioner: JitsiMeetingProvisioner = Depends(get_provisioner),
):
    return group_request_service.cancel(store, provisioner, request_id, payload.actor_id, payload.reason)
