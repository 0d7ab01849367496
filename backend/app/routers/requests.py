"""One-to-one request API routes — delegates to request_service."""
from typing import Optional
from fastapi import APIRouter, Depends, Query, status

from app.dependencies import get_directory, get_provisioner, get_store
from app.models.request import RequestStatus
from app.models.response import ResponseStatus
from app.schemas.request import (
    RequestAction,
    RequestCreate,
    RequestOut,
    RequestUpdate,
    RespondResult,
    ResponseCreate,
    ResponseOut,
)
from app.services import request_service
from app.services.directory import SqlDirectory
from app.services.meeting_provisioner import JitsiMeetingProvisioner
from app.store.sql import SqlRecordStore

router = APIRouter()


@router.post("/", response_model=RequestOut, status_code=status.HTTP_201_CREATED)
def create_request(payload: RequestCreate, store: SqlRecordStore = Depends(get_store)):
    """Create a draft request, optionally publishing it immediately."""
    fields = payload.model_dump(exclude_unset=True, exclude={"owner_id", "publish"})
    return request_service.create_request(store, payload.owner_id, fields, publish_now=payload.publish)


@router.get("/", response_model=list[RequestOut])
def list_open_requests(
    viewer_id: Optional[str] = Query(None, description="Hide this user's own and hidden requests"),
    store: SqlRecordStore = Depends(get_store),
):
    """Open requests available to respond to."""
    return request_service.list_open_requests(store, viewer_id)


@router.get("/mine", response_model=list[RequestOut])
def list_my_requests(
    owner_id: str = Query(...),
    status_filter: Optional[RequestStatus] = Query(None, alias="status"),
    store: SqlRecordStore = Depends(get_store),
):
    return request_service.list_owner_requests(store, owner_id, status_filter)


@router.get("/responses", response_model=list[ResponseOut])
def list_my_responses(
    responder_id: str = Query(...),
    status_filter: Optional[ResponseStatus] = Query(None, alias="status"),
    store: SqlRecordStore = Depends(get_store),
):
    """Responses a user has given, across requests."""
    return request_service.list_responder_responses(store, responder_id, status_filter)


@router.get("/{request_id}", response_model=RequestOut)
def get_request(request_id: str, store: SqlRecordStore = Depends(get_store)):
    return request_service.get_request(store, request_id)


@router.patch("/{request_id}", response_model=RequestOut)
def update_request(request_id: str, payload: RequestUpdate, store: SqlRecordStore = Depends(get_store)):
    """Edit a draft (owner only)."""
    fields = payload.model_dump(exclude_unset=True, exclude={"actor_id"})
    return request_service.update_request(store, request_id, payload.actor_id, fields)


@router.post("/{request_id}/publish", response_model=RequestOut)
def publish_request(request_id: str, payload: RequestAction, store: SqlRecordStore = Depends(get_store)):
    return request_service.publish(store, request_id, payload.actor_id)


@router.post("/{request_id}/responses", response_model=RespondResult, status_code=status.HTTP_201_CREATED)
def respond(
    request_id: str,
    payload: ResponseCreate,
    store: SqlRecordStore = Depends(get_store),
    provisioner: JitsiMeetingProvisioner = Depends(get_provisioner),
    directory: SqlDirectory = Depends(get_directory),
):
    """Accept, decline or mark not interested. Accepting provisions the meeting."""
    request, response, meeting = request_service.respond(
        store,
        provisioner,
        request_id,
        payload.responder_id,
        payload.decision,
        message=payload.message,
        directory=directory,
    )
    return {"request": request, "response": response, "meeting": meeting}


@router.get("/{request_id}/responses", response_model=list[ResponseOut])
def list_responses(request_id: str, store: SqlRecordStore = Depends(get_store)):
    return request_service.list_responses(store, request_id)


@router.post("/{request_id}/complete", response_model=RequestOut)
def complete_request(
    request_id: str,
    payload: RequestAction,
    store: SqlRecordStore = Depends(get_store),
    provisioner: JitsiMeetingProvisioner = Depends(get_provisioner),
):
    return request_service.complete(store, provisioner, request_id, payload.actor_id)


@router.post("/{request_id}/archive", response_model=RequestOut)
def archive_request(request_id: str, payload: RequestAction, store: SqlRecordStore = Depends(get_store)):
    return request_service.archive(store, request_id, payload.actor_id)


@router.post("/{request_id}/cancel", response_model=RequestOut)
def cancel_request(
    request_id: str,
    payload: RequestAction,
    store: SqlRecordStore = Depends(get_store),
    provisioner: JitsiMeetingProvisioner = Depends(get_provisioner),
):
    return request_service.cancel(store, provisioner, request_id, payload.actor_id, payload.reason)


@router.delete("/{request_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_request(
    request_id: str,
    actor_id: str = Query(..., description="ID of the user deleting the request"),
    store: SqlRecordStore = Depends(get_store),
):
    request_service.delete(store, request_id, actor_id)
