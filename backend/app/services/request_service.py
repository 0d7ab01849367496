"""One-to-one request service.

Responsibilities:
- Drafting, editing and publishing (owner only, required-field validation)
- Responses, with accepted responses routed through the atomic claim
- Meeting provisioning inside the claim's transaction, so a provisioning
  failure leaves the request open
- Completion, archival, cancellation and deletion
- Listings, hiding requests a viewer marked not_interested
"""
import logging
from datetime import datetime
from typing import Any, Mapping, Optional

import pytz

from app.config import settings
from app.errors import ConcurrentUpdateError, LifecycleError, ValidationError
from app.lifecycle import one_to_one
from app.lifecycle.decision import END_MEETING
from app.lifecycle.transitions import ONE_TO_ONE
from app.models.meeting import RequestType
from app.models.request import RequestStatus
from app.models.response import ResponseStatus
from app.services.directory import Directory
from app.services.ledger import record_mutation
from app.services.meeting_provisioner import MeetingProvisioner
from app.services import response_gateway
from app.services.transition_runner import load, run_transition
from app.store.base import RecordStore
from app.timeutil import utcnow

logger = logging.getLogger(__name__)


def get_request(store: RecordStore, request_id: str):
    return load(store, "requests", request_id)


def create_request(
    store: RecordStore,
    owner_id: str,
    fields: Mapping[str, Any],
    publish_now: bool = False,
    now: Optional[datetime] = None,
):
    """Create a draft request; with publish_now the draft is published right away."""
    cleaned = one_to_one.clean_fields(fields)
    if publish_now:
        problems = one_to_one.publish_problems(cleaned, settings.MIN_PAYMENT_AMOUNT)
        if problems:
            raise ValidationError(
                f"Missing required fields: {', '.join(problems)}",
                missing_fields=problems,
                min_payment_amount=settings.MIN_PAYMENT_AMOUNT,
            )

    with store.atomic():
        request = store.create("requests", {"owner_id": owner_id, "status": RequestStatus.draft, **cleaned})
        request_id = request.request_id
        record_mutation(store, request_id, ONE_TO_ONE, owner_id, "create", None, RequestStatus.draft.value)
    logger.info("Created draft request %s for owner %s", request_id, owner_id)

    if publish_now:
        return publish(store, request_id, owner_id, now=now)
    return load(store, "requests", request_id)


def update_request(store: RecordStore, request_id: str, actor_id: str, fields: Mapping[str, Any]):
    request, _ = run_transition(
        store, "requests", ONE_TO_ONE, request_id, actor_id,
        lambda r: one_to_one.decide_update(r, actor_id, fields),
    )
    return request


def publish(store: RecordStore, request_id: str, actor_id: str, now: Optional[datetime] = None):
    now = now or utcnow()
    request, _ = run_transition(
        store, "requests", ONE_TO_ONE, request_id, actor_id,
        lambda r: one_to_one.decide_publish(r, actor_id, now, settings.MIN_PAYMENT_AMOUNT),
    )
    return request


def _scheduled_start_utc(directory: Optional[Directory], request) -> Optional[datetime]:
    """Owner's preferred date/time, interpreted in the owner's timezone."""
    if request.preferred_date is None or request.preferred_time is None:
        return None
    tz_name = directory.timezone(request.owner_id) if directory else "UTC"
    try:
        tz = pytz.timezone(tz_name)
    except pytz.UnknownTimeZoneError:
        logger.warning("Unknown timezone %r for user %s, using UTC", tz_name, request.owner_id)
        tz = pytz.utc
    local = tz.localize(datetime.combine(request.preferred_date, request.preferred_time))
    return local.astimezone(pytz.utc)


def one_to_one_roster(request) -> list[dict[str, Any]]:
    return [
        {"user_id": request.owner_id, "role": "learner", "joined_at": None},
        {"user_id": request.accepted_by, "role": "teacher", "joined_at": None},
    ]


def respond(
    store: RecordStore,
    provisioner: MeetingProvisioner,
    request_id: str,
    responder_id: str,
    decision: Any,
    message: Optional[str] = None,
    directory: Optional[Directory] = None,
    now: Optional[datetime] = None,
):
    """Record a response. Returns (request, response, meeting_info or None).

    An accepted response claims the request, provisions the meeting and
    stores its reference in one transaction; if provisioning fails the
    claim is rolled back and ProvisioningError reaches the caller.
    """
    parsed = one_to_one.parse_decision(decision)
    if parsed != ResponseStatus.accepted:
        request, response = response_gateway.record_response(store, request_id, responder_id, parsed, message)
        return request, response, None

    now = now or utcnow()
    with store.atomic():
        _, response = response_gateway.try_claim(store, request_id, responder_id, message, now)
        request = load(store, "requests", request_id)
        meeting = provisioner.provision(
            request_id,
            RequestType.one_to_one,
            one_to_one_roster(request),
            _scheduled_start_utc(directory, request),
        )
        store.conditional_update(
            "requests", request_id, {"meeting_ref": meeting.meeting_id}, expected={"meeting_ref": None}
        )
        response_id = response.response_id

    logger.info("Request %s is active: accepted by %s, meeting %s", request_id, responder_id, meeting.meeting_id)
    return load(store, "requests", request_id), store.get("responses", response_id), meeting


def _end_meeting(provisioner: MeetingProvisioner, request) -> None:
    if not request.meeting_ref:
        return
    try:
        provisioner.mark_ended(request.meeting_ref)
    except LifecycleError as exc:
        logger.error("Failed to end meeting %s for request %s: %s", request.meeting_ref, request.request_id, exc)


def complete(
    store: RecordStore,
    provisioner: MeetingProvisioner,
    request_id: str,
    actor_id: str,
    now: Optional[datetime] = None,
):
    now = now or utcnow()
    request, decision = run_transition(
        store, "requests", ONE_TO_ONE, request_id, actor_id,
        lambda r: one_to_one.decide_complete(r, actor_id, now),
    )
    if decision is not None and decision.has_effect(END_MEETING):
        _end_meeting(provisioner, request)
    return request


def archive(store: RecordStore, request_id: str, actor_id: str, now: Optional[datetime] = None):
    now = now or utcnow()
    request, _ = run_transition(
        store, "requests", ONE_TO_ONE, request_id, actor_id,
        lambda r: one_to_one.decide_archive(r, actor_id, now),
    )
    return request


def cancel(
    store: RecordStore,
    provisioner: MeetingProvisioner,
    request_id: str,
    actor_id: str,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
):
    now = now or utcnow()
    request, decision = run_transition(
        store, "requests", ONE_TO_ONE, request_id, actor_id,
        lambda r: one_to_one.decide_cancel(r, actor_id, reason, now),
    )
    if decision is not None and decision.has_effect(END_MEETING):
        _end_meeting(provisioner, request)
    return request


def delete(store: RecordStore, request_id: str, actor_id: str) -> None:
    """Delete a draft, or a published request nobody has responded to yet."""
    request = load(store, "requests", request_id)
    has_responses = bool(store.find("responses", request_id=request_id))
    one_to_one.check_delete(request, actor_id, has_responses)
    status = RequestStatus(request.status).value
    with store.atomic():
        # Guard against a response landing between the check and the delete
        if not store.conditional_update(
            "requests", request_id, {}, expected={"status": request.status, "version": request.version}
        ):
            raise ConcurrentUpdateError("The request changed while deleting it; refresh and retry", record_id=request_id)
        store.delete("requests", request_id)
        record_mutation(store, request_id, ONE_TO_ONE, actor_id, "delete", status, None)
    logger.info("Deleted request %s (was %s)", request_id, status)


# ── read paths ──────────────────────────────────────────────────────
def list_open_requests(store: RecordStore, viewer_id: Optional[str] = None) -> list:
    """Open requests, minus the viewer's own and the ones they hid."""
    requests = store.find("requests", status=RequestStatus.open)
    if viewer_id is None:
        return requests
    hidden = {h.request_id for h in store.find("hidden_requests", user_id=viewer_id)}
    return [r for r in requests if r.owner_id != viewer_id and r.request_id not in hidden]


def list_owner_requests(store: RecordStore, owner_id: str, status: Optional[RequestStatus] = None) -> list:
    if status is not None:
        return store.find("requests", owner_id=owner_id, status=RequestStatus(status))
    return store.find("requests", owner_id=owner_id)


def list_responses(store: RecordStore, request_id: str) -> list:
    load(store, "requests", request_id)
    return store.find("responses", request_id=request_id)


def list_responder_responses(store: RecordStore, responder_id: str, status: Optional[ResponseStatus] = None) -> list:
    if status is not None:
        return store.find("responses", responder_id=responder_id, status=ResponseStatus(status))
    return store.find("responses", responder_id=responder_id)
