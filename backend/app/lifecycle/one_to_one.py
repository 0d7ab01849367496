"""One-to-one lifecycle decisions: draft → open → active → completed → archived.

Pure functions. Each takes the current record (ORM row or document) plus
the event arguments and returns a Decision, or raises a lifecycle error.
Nothing here reads or writes the store.
"""
from datetime import date, datetime, time
from typing import Any, Mapping, Optional

from app.errors import (
    InvalidTransitionError,
    PermissionDeniedError,
    RequestNoLongerOpenError,
    ValidationError,
)
from app.lifecycle.decision import END_MEETING, HIDE_FOR_RESPONDER, Decision, status_value
from app.lifecycle.transitions import ONE_TO_ONE, require_transition
from app.models.request import RequestStatus
from app.models.response import ResponseStatus

EDITABLE_FIELDS = (
    "topic",
    "description",
    "subject",
    "payment_amount",
    "preferred_date",
    "preferred_time",
    "duration_minutes",
)
REQUIRED_TO_PUBLISH = ("topic", "subject", "payment_amount", "preferred_date")


def _get(record: Any, name: str) -> Any:
    if isinstance(record, Mapping):
        return record.get(name)
    return getattr(record, name, None)


def _status(record: Any) -> RequestStatus:
    return RequestStatus(_get(record, "status"))


def _require_owner(record: Any, actor_id: str, action: str) -> None:
    if actor_id != _get(record, "owner_id"):
        raise PermissionDeniedError(f"Only the request owner may {action} this request")


def _blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def publish_problems(fields: Mapping[str, Any], min_payment: float) -> list[str]:
    """Return the fields that keep a request from being published."""
    problems = [name for name in REQUIRED_TO_PUBLISH if _blank(fields.get(name))]
    amount = fields.get("payment_amount")
    if "payment_amount" not in problems:
        try:
            if float(amount) < min_payment:
                problems.append("payment_amount")
        except (TypeError, ValueError):
            problems.append("payment_amount")
    return problems


def clean_fields(fields: Mapping[str, Any]) -> dict[str, Any]:
    """Reject unknown fields and coerce the typed ones."""
    unknown = sorted(set(fields) - set(EDITABLE_FIELDS))
    if unknown:
        raise ValidationError(f"Unknown request fields: {', '.join(unknown)}", missing_fields=unknown)

    cleaned: dict[str, Any] = {}
    for name, value in fields.items():
        if isinstance(value, str) and name not in ("preferred_date", "preferred_time"):
            value = value.strip()
        cleaned[name] = value

    if cleaned.get("payment_amount") is not None:
        try:
            cleaned["payment_amount"] = float(cleaned["payment_amount"])
        except (TypeError, ValueError):
            raise ValidationError("payment_amount must be a number", missing_fields=["payment_amount"])
    if isinstance(cleaned.get("preferred_date"), str):
        try:
            cleaned["preferred_date"] = date.fromisoformat(cleaned["preferred_date"])
        except ValueError:
            raise ValidationError("preferred_date must be an ISO date", missing_fields=["preferred_date"])
    if isinstance(cleaned.get("preferred_time"), str):
        try:
            cleaned["preferred_time"] = time.fromisoformat(cleaned["preferred_time"])
        except ValueError:
            raise ValidationError("preferred_time must be an ISO time", missing_fields=["preferred_time"])
    return cleaned


def decide_update(request: Any, actor_id: str, fields: Mapping[str, Any]) -> Decision:
    require_transition(ONE_TO_ONE, _status(request), "update")
    _require_owner(request, actor_id, "edit")
    return Decision(
        event="update",
        before_status=RequestStatus.draft.value,
        target_status=RequestStatus.draft.value,
        patch=clean_fields(fields),
    )


def decide_publish(request: Any, actor_id: str, now: datetime, min_payment: float) -> Decision:
    """draft → open, once every required field is present and valid."""
    require_transition(ONE_TO_ONE, _status(request), "publish")
    _require_owner(request, actor_id, "publish")

    current = {name: _get(request, name) for name in REQUIRED_TO_PUBLISH}
    problems = publish_problems(current, min_payment)
    if problems:
        raise ValidationError(
            f"Missing required fields: {', '.join(problems)}",
            missing_fields=problems,
            min_payment_amount=min_payment,
        )
    return Decision(
        event="publish",
        before_status=RequestStatus.draft.value,
        target_status=RequestStatus.open.value,
        patch={"status": RequestStatus.open, "published_at": now},
    )


def parse_decision(decision: Any) -> ResponseStatus:
    try:
        return ResponseStatus(decision)
    except ValueError:
        allowed = ", ".join(s.value for s in ResponseStatus)
        raise ValidationError(f"decision must be one of: {allowed}", missing_fields=["decision"])


def check_response(request: Any, responder_id: str, decision: Any) -> ResponseStatus:
    """Validate a respond event; returns the parsed decision."""
    parsed = parse_decision(decision)
    status = _status(request)
    if status != RequestStatus.open:
        raise RequestNoLongerOpenError(
            f"Request is no longer open (status '{status.value}')",
            status=status.value,
        )
    if responder_id == _get(request, "owner_id"):
        raise PermissionDeniedError("You cannot respond to your own request")
    return parsed


def decide_record_response(request: Any, response_id: str, decision: ResponseStatus) -> Decision:
    """declined / not_interested: append the response, status unchanged."""
    require_transition(ONE_TO_ONE, _status(request), "respond")
    effects = [HIDE_FOR_RESPONDER] if decision == ResponseStatus.not_interested else []
    return Decision(
        event="respond",
        before_status=RequestStatus.open.value,
        target_status=RequestStatus.open.value,
        patch={"responses": list(_get(request, "responses") or []) + [response_id]},
        effects=effects,
        detail={"response_id": response_id, "decision": decision.value},
    )


def decide_claim(request: Any, responder_id: str, response_id: str, now: datetime) -> Decision:
    """open → active for the single winning accepter."""
    require_transition(ONE_TO_ONE, _status(request), "claim")
    return Decision(
        event="claim",
        before_status=RequestStatus.open.value,
        target_status=RequestStatus.active.value,
        patch={
            "status": RequestStatus.active,
            "accepted_by": responder_id,
            "accepted_at": now,
            "responses": list(_get(request, "responses") or []) + [response_id],
        },
        detail={"response_id": response_id, "accepted_by": responder_id},
    )


def decide_complete(request: Any, actor_id: str, now: datetime) -> Decision:
    require_transition(ONE_TO_ONE, _status(request), "complete")
    if actor_id not in (_get(request, "owner_id"), _get(request, "accepted_by")):
        raise PermissionDeniedError("Only the owner or the accepted teacher may complete this request")
    return Decision(
        event="complete",
        before_status=RequestStatus.active.value,
        target_status=RequestStatus.completed.value,
        patch={"status": RequestStatus.completed, "completed_at": now, "completed_by": actor_id},
        effects=[END_MEETING],
    )


def decide_archive(request: Any, actor_id: str, now: datetime) -> Decision:
    require_transition(ONE_TO_ONE, _status(request), "archive")
    _require_owner(request, actor_id, "archive")
    return Decision(
        event="archive",
        before_status=RequestStatus.completed.value,
        target_status=RequestStatus.archived.value,
        patch={"status": RequestStatus.archived, "archived_at": now},
    )


def decide_cancel(request: Any, actor_id: str, reason: Optional[str], now: datetime) -> Decision:
    status = _status(request)
    require_transition(ONE_TO_ONE, status, "cancel")
    _require_owner(request, actor_id, "cancel")
    effects = [END_MEETING] if _get(request, "meeting_ref") else []
    return Decision(
        event="cancel",
        before_status=status.value,
        target_status=RequestStatus.cancelled.value,
        patch={"status": RequestStatus.cancelled, "cancelled_at": now, "cancel_reason": reason},
        effects=effects,
        detail={"reason": reason},
    )


def check_delete(request: Any, actor_id: str, has_responses: bool) -> None:
    """Deletion is allowed while draft, or while open before anyone has responded."""
    _require_owner(request, actor_id, "delete")
    status = _status(request)
    if status == RequestStatus.draft:
        return
    if status == RequestStatus.open and not has_responses:
        return
    if status == RequestStatus.open:
        detail = "A request with responses cannot be deleted; cancel it instead"
    else:
        detail = f"A request that is '{status_value(status)}' cannot be deleted"
    raise InvalidTransitionError(detail, event="delete", status=status.value, flow=ONE_TO_ONE)
