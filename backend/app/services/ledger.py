"""Mutation ledger — one RequestMutation row per applied transition."""
from datetime import date, datetime, time
from enum import Enum
from typing import Any, Optional

from app.lifecycle.decision import Decision
from app.store.base import RecordStore
from app.timeutil import utcnow


def _json_safe(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_json_safe(v) for v in value]
    return value


def record_mutation(
    store: RecordStore,
    request_id: str,
    request_type: str,
    actor_id: Optional[str],
    action: str,
    before_status: Optional[str],
    after_status: Optional[str],
    detail: Optional[dict[str, Any]] = None,
):
    """Append a ledger entry. Call inside the same store.atomic() block as the write."""
    return store.create(
        "request_mutations",
        {
            "request_id": request_id,
            "request_type": request_type,
            "actor_id": actor_id,
            "action": action,
            "before_status": before_status,
            "after_status": after_status,
            "detail": _json_safe(detail or {}),
            # Microsecond timestamps keep history() in write order
            "created_at": utcnow(),
        },
    )


def record_decision(store: RecordStore, request_id: str, request_type: str, actor_id: Optional[str], decision: Decision):
    return record_mutation(
        store,
        request_id=request_id,
        request_type=request_type,
        actor_id=actor_id,
        action=decision.event,
        before_status=decision.before_status,
        after_status=decision.target_status,
        detail=decision.detail,
    )


def history(store: RecordStore, request_id: str) -> list:
    """Ledger entries for one request, oldest first."""
    return store.find("request_mutations", request_id=request_id)
