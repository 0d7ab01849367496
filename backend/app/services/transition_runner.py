"""Read → decide → compare-and-set loop shared by both request flows.

Status transitions are not commutative, so every write is keyed on the
status and version the decision was made against. A writer that loses the
race re-reads the record and decides again; if the event is no longer
legal the decision function raises, and if it became a no-op the decide
callback returns None.
"""
import logging
from typing import Any, Callable, Optional

from app.config import settings
from app.errors import ConcurrentUpdateError, NotFoundError
from app.lifecycle.decision import Decision
from app.services.ledger import record_decision
from app.store.base import RecordStore

logger = logging.getLogger(__name__)

Decide = Callable[[Any], Optional[Decision]]
InTransaction = Callable[[Any, Decision], None]


def load(store: RecordStore, collection: str, record_id: str, label: str = "Request"):
    record = store.get(collection, record_id)
    if record is None:
        raise NotFoundError(f"{label} not found", record_id=record_id)
    return record


def run_transition(
    store: RecordStore,
    collection: str,
    request_type: str,
    record_id: str,
    actor_id: Optional[str],
    decide: Decide,
    within: Optional[InTransaction] = None,
    max_attempts: Optional[int] = None,
) -> tuple[Any, Optional[Decision]]:
    """Apply `decide` to the current record with compare-and-set semantics.

    `within` runs in the same transaction as the successful write, for
    writes that must never be observed apart from it (counters, hide entries).
    Returns the fresh record and the applied decision (None for a no-op).
    """
    attempts = max_attempts or settings.CAS_MAX_ATTEMPTS
    for attempt in range(1, attempts + 1):
        record = load(store, collection, record_id)
        decision = decide(record)
        if decision is None:
            return record, None

        with store.atomic():
            applied = store.conditional_update(
                collection,
                record_id,
                decision.patch,
                expected={"status": record.status, "version": record.version},
            )
            if applied:
                record_decision(store, record_id, request_type, actor_id, decision)
                if within is not None:
                    within(record, decision)

        if applied:
            if decision.changes_status:
                logger.info(
                    "%s %s: %s %s -> %s (actor %s)",
                    request_type, record_id, decision.event,
                    decision.before_status, decision.target_status, actor_id or "system",
                )
            else:
                logger.info("%s %s: %s by %s", request_type, record_id, decision.event, actor_id or "system")
            return load(store, collection, record_id), decision

        logger.warning(
            "%s %s: lost compare-and-set for '%s' (attempt %d/%d), re-reading",
            request_type, record_id, decision.event, attempt, attempts,
        )

    raise ConcurrentUpdateError(
        "The request kept changing while applying the update; refresh and retry",
        record_id=record_id,
    )
