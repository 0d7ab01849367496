"""Group request lifecycle decisions.

pending → voting_open → accepted → funding → paid → in_progress → completed,
with cancelled reachable from every non-terminal status.

Pure functions: every decision recomputes derived sets through
reconciliation and returns the full patch (including the cached counts),
so the orchestrator only has to apply it with compare-and-set.
"""
from datetime import datetime, timedelta
from typing import Any, Mapping, Optional

from app.errors import (
    DuplicateActionError,
    InvalidTransitionError,
    PermissionDeniedError,
    ValidationError,
)
from app.lifecycle.decision import (
    END_MEETING,
    INCREMENT_TOTAL_PAID,
    INITIATE_REFUND,
    PROVISION_MEETING,
    Decision,
)
from app.lifecycle.reconciliation import cached_counts, effective_participants, reconcile
from app.lifecycle.transitions import GROUP, require_transition
from app.models.group_request import GroupRequestStatus, RefundStatus
from app.timeutil import ensure_utc

TITLE_MIN, TITLE_MAX = 5, 100
DESCRIPTION_MIN, DESCRIPTION_MAX = 20, 1000
EDITABLE_FIELDS = ("title", "description", "category", "rate", "min_participants")


def _get(record: Any, name: str) -> Any:
    if isinstance(record, Mapping):
        return record.get(name)
    return getattr(record, name, None)


def _status(record: Any) -> GroupRequestStatus:
    return GroupRequestStatus(_get(record, "status"))


def _list(record: Any, name: str) -> list[str]:
    return list(_get(record, name) or [])


def _with(values: list[str], item: str) -> list[str]:
    return values if item in values else values + [item]


def _without(values: list[str], item: str) -> list[str]:
    return [v for v in values if v != item]


def _counts_after(record: Any, **overrides: Any) -> dict[str, int]:
    """Cached counts for the record as it will look once `overrides` are applied."""
    projected = {
        "creator_id": _get(record, "creator_id"),
        "votes": _list(record, "votes"),
        "participants": _list(record, "participants"),
        "paid_participants": _list(record, "paid_participants"),
    }
    projected.update(overrides)
    return cached_counts(reconcile(projected))


def _require_creator(record: Any, actor_id: str, action: str) -> None:
    if actor_id != _get(record, "creator_id"):
        raise PermissionDeniedError(f"Only the request creator may {action}")


# ── creation ────────────────────────────────────────────────────────
def validate_new_group_request(fields: Mapping[str, Any], default_min_participants: int) -> dict[str, Any]:
    """Validate and normalise creation fields; raises ValidationError listing every problem."""
    title = (fields.get("title") or "").strip()
    description = (fields.get("description") or "").strip()
    group_id = fields.get("group_id")
    problems: dict[str, str] = {}

    if not title:
        problems["title"] = "Title is required"
    elif not TITLE_MIN <= len(title) <= TITLE_MAX:
        problems["title"] = f"Title must be {TITLE_MIN}-{TITLE_MAX} characters long"

    if not description:
        problems["description"] = "Description is required"
    elif not DESCRIPTION_MIN <= len(description) <= DESCRIPTION_MAX:
        problems["description"] = f"Description must be {DESCRIPTION_MIN}-{DESCRIPTION_MAX} characters long"

    if not group_id:
        problems["group_id"] = "Please select a group"

    rate = fields.get("rate", 0.0)
    try:
        rate = float(rate if rate is not None else 0.0)
        if rate < 0:
            problems["rate"] = "Rate cannot be negative"
    except (TypeError, ValueError):
        problems["rate"] = "Rate must be a number"

    min_participants = fields.get("min_participants")
    if min_participants is None:
        min_participants = default_min_participants
    if not isinstance(min_participants, int) or min_participants < 1:
        problems["min_participants"] = "min_participants must be a positive integer"

    if problems:
        raise ValidationError(
            "; ".join(problems.values()),
            missing_fields=sorted(problems),
            errors=problems,
        )
    return {
        "title": title,
        "description": description,
        "group_id": group_id,
        "category": (fields.get("category") or None),
        "rate": rate,
        "min_participants": min_participants,
    }


def decide_update(
    record: Any, actor_id: str, fields: Mapping[str, Any], default_min_participants: int
) -> Decision:
    """Creator edits a pending request; the merged fields are validated as on creation."""
    status = _status(record)
    require_transition(GROUP, status, "update")
    _require_creator(record, actor_id, "edit this request")
    unknown = sorted(set(fields) - set(EDITABLE_FIELDS))
    if unknown:
        raise ValidationError(f"Fields cannot be edited: {', '.join(unknown)}", missing_fields=unknown)

    merged = {name: _get(record, name) for name in (*EDITABLE_FIELDS, "group_id")}
    merged.update(fields)
    cleaned = validate_new_group_request(merged, default_min_participants)
    patch = {name: cleaned[name] for name in EDITABLE_FIELDS}
    return Decision("update", status.value, status.value, patch, detail={"fields": sorted(fields)})


# ── voting ──────────────────────────────────────────────────────────
def decide_vote(record: Any, actor_id: str, now: datetime, vote_threshold: int) -> Decision:
    status = _status(record)
    require_transition(GROUP, status, "vote")
    if actor_id == _get(record, "creator_id"):
        raise PermissionDeniedError("You cannot vote on your own request")
    votes = _list(record, "votes")
    if actor_id in votes:
        raise DuplicateActionError("You have already voted on this request")
    if actor_id in _list(record, "teachers"):
        raise ValidationError("Teachers cannot vote on a request they applied to teach")

    votes = votes + [actor_id]
    patch: dict[str, Any] = {"votes": votes, **_counts_after(record, votes=votes)}
    target = status
    if status == GroupRequestStatus.pending and len(votes) >= vote_threshold:
        target = GroupRequestStatus.voting_open
        patch.update(status=target, voting_opened_at=now)
    return Decision("vote", status.value, target.value, patch, detail={"votes": len(votes)})


def decide_unvote(record: Any, actor_id: str) -> Decision:
    """Remove a vote. Transitions only go forward, so the status never reverts here."""
    status = _status(record)
    require_transition(GROUP, status, "unvote")
    votes = _list(record, "votes")
    if actor_id not in votes:
        raise ValidationError("You have not voted on this request")
    votes = _without(votes, actor_id)
    patch = {"votes": votes, **_counts_after(record, votes=votes)}
    return Decision("unvote", status.value, status.value, patch, detail={"votes": len(votes)})


# ── participants ────────────────────────────────────────────────────
def decide_join(record: Any, actor_id: str) -> Decision:
    status = _status(record)
    require_transition(GROUP, status, "join")
    if actor_id == _get(record, "creator_id"):
        raise DuplicateActionError("The creator is always a participant")
    if actor_id in _list(record, "teachers"):
        raise ValidationError("Teachers cannot join as participants")
    participants = _list(record, "participants")
    if actor_id in participants:
        raise DuplicateActionError("You have already joined this request")
    participants = participants + [actor_id]
    patch = {"participants": participants, **_counts_after(record, participants=participants)}
    return Decision("join", status.value, status.value, patch)


def decide_leave(record: Any, actor_id: str) -> Decision:
    status = _status(record)
    require_transition(GROUP, status, "leave")
    participants = _list(record, "participants")
    if actor_id not in participants:
        raise ValidationError("You have not joined this request")
    participants = _without(participants, actor_id)
    patch = {"participants": participants, **_counts_after(record, participants=participants)}
    return Decision("leave", status.value, status.value, patch)


# ── teachers ────────────────────────────────────────────────────────
def decide_apply_to_teach(record: Any, actor_id: str, now: datetime) -> Decision:
    status = _status(record)
    require_transition(GROUP, status, "apply_to_teach")
    if actor_id == _get(record, "creator_id"):
        raise PermissionDeniedError("You cannot teach your own request")
    teachers = _list(record, "teachers")
    if actor_id in teachers:
        raise DuplicateActionError("You have already applied to teach this request")
    if actor_id in effective_participants(record):
        raise ValidationError("Participants and voters cannot apply to teach the same request")

    teachers = teachers + [actor_id]
    patch: dict[str, Any] = {"teachers": teachers}
    target = status
    if status == GroupRequestStatus.voting_open and len(teachers) == 1:
        target = GroupRequestStatus.accepted
        patch.update(status=target, accepted_at=now)
    return Decision("apply_to_teach", status.value, target.value, patch, detail={"teachers": len(teachers)})


def decide_withdraw_teaching(record: Any, actor_id: str) -> Decision:
    status = _status(record)
    require_transition(GROUP, status, "withdraw_teaching")
    teachers = _list(record, "teachers")
    if actor_id not in teachers:
        raise ValidationError("You have not applied to teach this request")
    teachers = _without(teachers, actor_id)
    patch: dict[str, Any] = {"teachers": teachers}
    target = status
    if status == GroupRequestStatus.accepted and not teachers:
        target = GroupRequestStatus.voting_open
        patch.update(status=target, accepted_at=None)
    return Decision("withdraw_teaching", status.value, target.value, patch, detail={"teachers": len(teachers)})


def decide_select_teacher(
    record: Any,
    actor_id: str,
    teacher_id: str,
    deadline_hours: float,
    now: datetime,
) -> Decision:
    """accepted → funding: fix the teacher, the deadline and the payer snapshot."""
    status = _status(record)
    require_transition(GROUP, status, "select_teacher")
    _require_creator(record, actor_id, "select a teacher")
    if teacher_id not in _list(record, "teachers"):
        raise ValidationError("Selected teacher has not applied to teach this request", missing_fields=["teacher_id"])
    try:
        hours = float(deadline_hours)
    except (TypeError, ValueError):
        hours = 0.0
    if hours <= 0:
        raise ValidationError("deadline_hours must be greater than zero", missing_fields=["deadline_hours"])

    snapshot = sorted(effective_participants(record))
    deadline = now + timedelta(hours=hours)
    patch = {
        "status": GroupRequestStatus.funding,
        "selected_teacher": teacher_id,
        "payment_deadline": deadline,
        "funding_started_at": now,
        "participants": snapshot,
        **_counts_after(record, participants=snapshot),
    }
    return Decision(
        "select_teacher",
        status.value,
        GroupRequestStatus.funding.value,
        patch,
        detail={"teacher_id": teacher_id, "payment_deadline": deadline.isoformat(), "expected_payers": len(snapshot)},
    )


# ── funding ─────────────────────────────────────────────────────────
def decide_pay(record: Any, actor_id: str, now: datetime) -> Decision:
    status = _status(record)
    require_transition(GROUP, status, "pay")
    rec = reconcile(record)
    if actor_id not in rec.expected_payers:
        raise PermissionDeniedError("Only participants of this request can pay for it")
    paid = _list(record, "paid_participants")
    if actor_id in paid:
        raise DuplicateActionError("You have already paid for this request")

    paid = paid + [actor_id]
    patch: dict[str, Any] = {"paid_participants": paid}
    effects = [INCREMENT_TOTAL_PAID]
    target = status
    if rec.expected_payers <= set(paid):
        target = GroupRequestStatus.paid
        patch.update(status=target, paid_at=now)
        effects.append(PROVISION_MEETING)
    return Decision(
        "pay",
        status.value,
        target.value,
        patch,
        effects=effects,
        detail={"amount": float(_get(record, "rate") or 0.0), "paid": len(paid), "expected": len(rec.expected_payers)},
    )


def decide_deadline_elapsed(record: Any, now: datetime) -> Optional[Decision]:
    """funding → paid once the deadline passes. Returns None when the event is a no-op."""
    status = _status(record)
    if status != GroupRequestStatus.funding:
        return None
    deadline = ensure_utc(_get(record, "payment_deadline"))
    if deadline is None or ensure_utc(now) < deadline:
        raise InvalidTransitionError(
            "Payment deadline has not elapsed yet",
            event="deadline_elapsed",
            status=status.value,
            flow=GROUP,
            payment_deadline=deadline.isoformat() if deadline else None,
        )
    require_transition(GROUP, status, "deadline_elapsed")
    rec = reconcile(record)
    return Decision(
        "deadline_elapsed",
        status.value,
        GroupRequestStatus.paid.value,
        {"status": GroupRequestStatus.paid, "paid_at": now, "funding_expired_at": now},
        effects=[PROVISION_MEETING],
        detail={"pending_payers": sorted(rec.pending_payers), "paid": rec.paid_count},
    )


def build_roster(record: Any) -> list[dict[str, Any]]:
    """Meeting roster: creator first, then participants, then the selected teacher."""
    creator = _get(record, "creator_id")
    roster = [{"user_id": creator, "role": "creator", "joined_at": None}]
    for user_id in sorted(effective_participants(record) - {creator}):
        roster.append({"user_id": user_id, "role": "participant", "joined_at": None})
    teacher = _get(record, "selected_teacher")
    if teacher:
        roster.append({"user_id": teacher, "role": "teacher", "joined_at": None})
    return roster


# ── session ─────────────────────────────────────────────────────────
def decide_mark_started(record: Any, actor_id: str, now: datetime) -> Decision:
    status = _status(record)
    require_transition(GROUP, status, "mark_started")
    if actor_id not in (_get(record, "creator_id"), _get(record, "selected_teacher")):
        raise PermissionDeniedError("Only the creator or the selected teacher may start the session")
    return Decision(
        "mark_started",
        status.value,
        GroupRequestStatus.in_progress.value,
        {"status": GroupRequestStatus.in_progress, "started_at": now},
    )


def decide_complete(record: Any, actor_id: str, now: datetime) -> Decision:
    status = _status(record)
    require_transition(GROUP, status, "complete")
    allowed = set(effective_participants(record))
    if _get(record, "selected_teacher"):
        allowed.add(_get(record, "selected_teacher"))
    if actor_id not in allowed:
        raise PermissionDeniedError("Only participants or the teacher may complete this session")
    return Decision(
        "complete",
        status.value,
        GroupRequestStatus.completed.value,
        {"status": GroupRequestStatus.completed, "completed_at": now},
        effects=[END_MEETING] if _get(record, "meeting_ref") else [],
    )


def decide_cancel(record: Any, actor_id: str, reason: Optional[str], now: datetime) -> Decision:
    status = _status(record)
    require_transition(GROUP, status, "cancel")
    _require_creator(record, actor_id, "cancel this request")
    patch: dict[str, Any] = {
        "status": GroupRequestStatus.cancelled,
        "cancellation_reason": reason,
        "cancelled_at": now,
    }
    effects = []
    if _list(record, "paid_participants"):
        patch.update(refund_status=RefundStatus.pending, refund_initiated_at=now)
        effects.append(INITIATE_REFUND)
    if _get(record, "meeting_ref"):
        effects.append(END_MEETING)
    return Decision("cancel", status.value, GroupRequestStatus.cancelled.value, patch, effects=effects, detail={"reason": reason})
