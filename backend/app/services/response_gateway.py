"""Response Gateway — records responses and performs the atomic claim.

At most one accepted Response may ever exist for a one-to-one request.
try_claim enforces that with a single conditional write keyed on
``status == open`` and the version it read, and inserts the accepted
Response in the same transaction. The unique (request_id, responder_id)
constraint backs the one-response-per-responder rule.
"""
import logging
import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy.exc import IntegrityError

from app.config import settings
from app.errors import (
    AlreadyClaimedError,
    AlreadyRespondedError,
    ConcurrentUpdateError,
    RequestNoLongerOpenError,
)
from app.lifecycle.decision import HIDE_FOR_RESPONDER, Decision
from app.lifecycle.one_to_one import check_response, decide_claim, decide_record_response
from app.lifecycle.transitions import ONE_TO_ONE
from app.models.request import RequestStatus
from app.models.response import ResponseStatus
from app.services.ledger import record_decision
from app.services.transition_runner import load, run_transition
from app.store.base import RecordStore
from app.timeutil import utcnow

logger = logging.getLogger(__name__)


def find_response(store: RecordStore, request_id: str, responder_id: str):
    found = store.find("responses", request_id=request_id, responder_id=responder_id)
    return found[0] if found else None


def accepted_response(store: RecordStore, request_id: str):
    found = store.find("responses", request_id=request_id, status=ResponseStatus.accepted)
    return found[0] if found else None


def _insert_response(
    store: RecordStore,
    response_id: str,
    request_id: str,
    responder_id: str,
    status: ResponseStatus,
    message: Optional[str],
):
    try:
        return store.create(
            "responses",
            {
                "response_id": response_id,
                "request_id": request_id,
                "responder_id": responder_id,
                "status": status,
                "message": message,
            },
        )
    except IntegrityError:
        raise AlreadyRespondedError(
            "You have already responded to this request",
            request_id=request_id,
            responder_id=responder_id,
        ) from None


def _ensure_no_prior_response(store: RecordStore, request_id: str, responder_id: str) -> None:
    if find_response(store, request_id, responder_id) is not None:
        raise AlreadyRespondedError(
            "You have already responded to this request",
            request_id=request_id,
            responder_id=responder_id,
        )


def _closed_error(store: RecordStore, request: Any):
    status = RequestStatus(request.status)
    if status == RequestStatus.active or accepted_response(store, request.request_id) is not None:
        return AlreadyClaimedError(
            "Someone else already accepted this request",
            request_id=request.request_id,
            accepted_by=request.accepted_by,
        )
    return RequestNoLongerOpenError(
        f"Request is no longer open (status '{status.value}')",
        status=status.value,
    )


def record_response(
    store: RecordStore,
    request_id: str,
    responder_id: str,
    decision: Any,
    message: Optional[str] = None,
):
    """Record a declined / not_interested response. Returns (request, response)."""
    response_id = str(uuid.uuid4())

    def decide(request):
        parsed = check_response(request, responder_id, decision)
        _ensure_no_prior_response(store, request_id, responder_id)
        return decide_record_response(request, response_id, parsed)

    def within(request, applied: Decision) -> None:
        _insert_response(
            store, response_id, request_id, responder_id,
            ResponseStatus(applied.detail["decision"]), message,
        )
        store.atomic_increment("requests", request_id, "response_count", 1)
        if applied.has_effect(HIDE_FOR_RESPONDER):
            store.create("hidden_requests", {"user_id": responder_id, "request_id": request_id})

    request, _ = run_transition(store, "requests", ONE_TO_ONE, request_id, responder_id, decide, within=within)
    return request, store.get("responses", response_id)


def try_claim(
    store: RecordStore,
    request_id: str,
    responder_id: str,
    message: Optional[str] = None,
    now: Optional[datetime] = None,
    max_attempts: Optional[int] = None,
):
    """Claim an open request for `responder_id`. Call inside store.atomic().

    Returns (decision, accepted response). A writer that loses because the
    status moved gets AlreadyClaimedError; a version-only loss (a
    concurrent decline) is re-read and retried.
    """
    now = now or utcnow()
    attempts = max_attempts or settings.CAS_MAX_ATTEMPTS
    for attempt in range(1, attempts + 1):
        request = load(store, "requests", request_id)
        if RequestStatus(request.status) != RequestStatus.open:
            raise _closed_error(store, request)
        check_response(request, responder_id, ResponseStatus.accepted)
        _ensure_no_prior_response(store, request_id, responder_id)

        response_id = str(uuid.uuid4())
        decision = decide_claim(request, responder_id, response_id, now)
        won = store.conditional_update(
            "requests",
            request_id,
            decision.patch,
            expected={"status": RequestStatus.open, "version": request.version},
        )
        if not won:
            logger.warning(
                "Claim on request %s by %s lost compare-and-set (attempt %d/%d)",
                request_id, responder_id, attempt, attempts,
            )
            continue

        response = _insert_response(store, response_id, request_id, responder_id, ResponseStatus.accepted, message)
        store.atomic_increment("requests", request_id, "response_count", 1)
        record_decision(store, request_id, ONE_TO_ONE, responder_id, decision)
        logger.info("Request %s claimed by %s", request_id, responder_id)
        return decision, response

    raise ConcurrentUpdateError(
        "The request kept changing while accepting it; refresh and retry",
        record_id=request_id,
    )
