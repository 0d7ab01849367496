"""Group request service.

Every mutation runs through run_transition: read the record, let the pure
decision function compute the full patch (sets plus cached counts), then
compare-and-set on the status and version it read. total_paid is the only
counter and moves through atomic_increment in the same transaction as the
payment that caused it.

Meeting provisioning after pay / deadline_elapsed happens after the
transition commits. A provisioning failure there is logged and left for the
deadline monitor to retry; the paid status is never rolled back.
"""
import logging
from datetime import datetime
from typing import Any, Callable, Mapping, Optional

from app.config import settings
from app.errors import LifecycleError, NotFoundError, PermissionDeniedError, ProvisioningError
from app.lifecycle import group
from app.lifecycle.decision import END_MEETING, INCREMENT_TOTAL_PAID, INITIATE_REFUND, PROVISION_MEETING, Decision
from app.lifecycle.reconciliation import cached_counts, reconcile
from app.lifecycle.transitions import GROUP, events_from, is_terminal, require_transition
from app.models.group_request import GroupRequestStatus
from app.models.meeting import RequestType
from app.services.directory import Directory
from app.services.ledger import record_mutation
from app.services.meeting_provisioner import MeetingInfo, MeetingProvisioner
from app.services.transition_runner import load, run_transition
from app.store.base import ChangeFilter, RecordStore
from app.timeutil import utcnow

logger = logging.getLogger(__name__)

COLLECTION = "group_requests"


def _load(store: RecordStore, request_id: str):
    return load(store, COLLECTION, request_id, label="Group request")


def _run(store: RecordStore, request_id: str, actor_id: Optional[str], decide, within=None):
    return run_transition(store, COLLECTION, GROUP, request_id, actor_id, decide, within=within)


# ── creation ────────────────────────────────────────────────────────
def create_group_request(
    store: RecordStore,
    creator_id: str,
    fields: Mapping[str, Any],
    directory: Optional[Directory] = None,
):
    """Create a pending group request inside a group the creator belongs to."""
    cleaned = group.validate_new_group_request(fields, settings.DEFAULT_MIN_PARTICIPANTS)
    if directory is not None:
        if not directory.group_exists(cleaned["group_id"]):
            raise NotFoundError("Group not found", group_id=cleaned["group_id"])
        if not directory.is_group_member(cleaned["group_id"], creator_id):
            raise PermissionDeniedError("You must be a member of the group to create a request in it")

    doc = {
        "creator_id": creator_id,
        "status": GroupRequestStatus.pending,
        "votes": [],
        "teachers": [],
        "participants": [],
        "paid_participants": [],
        "total_paid": 0.0,
        **cleaned,
    }
    doc.update(cached_counts(reconcile(doc)))
    with store.atomic():
        record = store.create(COLLECTION, doc)
        request_id = record.request_id
        record_mutation(
            store, request_id, GROUP, creator_id, "create", None, GroupRequestStatus.pending.value,
            {"group_id": cleaned["group_id"], "rate": cleaned["rate"]},
        )
    logger.info("Created group request %s in group %s by %s", request_id, cleaned["group_id"], creator_id)
    return _load(store, request_id)


def update_group_request(store: RecordStore, request_id: str, actor_id: str, fields: Mapping[str, Any]):
    """Creator edits title, description, category, rate or min_participants while pending."""
    record, _ = _run(
        store, request_id, actor_id,
        lambda r: group.decide_update(r, actor_id, fields, settings.DEFAULT_MIN_PARTICIPANTS),
    )
    return record


# ── voting / participants / teachers ────────────────────────────────
def vote(store: RecordStore, request_id: str, actor_id: str, now: Optional[datetime] = None):
    now = now or utcnow()
    record, _ = _run(
        store, request_id, actor_id,
        lambda r: group.decide_vote(r, actor_id, now, settings.VOTE_THRESHOLD),
    )
    return record


def unvote(store: RecordStore, request_id: str, actor_id: str):
    record, _ = _run(store, request_id, actor_id, lambda r: group.decide_unvote(r, actor_id))
    return record


def join(store: RecordStore, request_id: str, actor_id: str):
    record, _ = _run(store, request_id, actor_id, lambda r: group.decide_join(r, actor_id))
    return record


def leave(store: RecordStore, request_id: str, actor_id: str):
    record, _ = _run(store, request_id, actor_id, lambda r: group.decide_leave(r, actor_id))
    return record


def apply_to_teach(store: RecordStore, request_id: str, actor_id: str, now: Optional[datetime] = None):
    now = now or utcnow()
    record, _ = _run(store, request_id, actor_id, lambda r: group.decide_apply_to_teach(r, actor_id, now))
    return record


def withdraw_teaching(store: RecordStore, request_id: str, actor_id: str):
    record, _ = _run(store, request_id, actor_id, lambda r: group.decide_withdraw_teaching(r, actor_id))
    return record


def select_teacher(
    store: RecordStore,
    request_id: str,
    actor_id: str,
    teacher_id: str,
    deadline_hours: float,
    now: Optional[datetime] = None,
):
    now = now or utcnow()
    record, _ = _run(
        store, request_id, actor_id,
        lambda r: group.decide_select_teacher(r, actor_id, teacher_id, deadline_hours, now),
    )
    return record


# ── funding ─────────────────────────────────────────────────────────
def _increment_total_paid(store: RecordStore):
    def within(record, decision: Decision) -> None:
        if decision.has_effect(INCREMENT_TOTAL_PAID):
            store.atomic_increment(COLLECTION, record.request_id, "total_paid", decision.detail["amount"])

    return within


def _provision_after_commit(store: RecordStore, provisioner: MeetingProvisioner, record) -> Optional[MeetingInfo]:
    try:
        return provision_meeting(store, provisioner, record.request_id)
    except ProvisioningError as exc:
        logger.error(
            "Provisioning failed for group request %s after it was paid; the deadline monitor will retry: %s",
            record.request_id, exc,
        )
        return None


def pay(
    store: RecordStore,
    provisioner: MeetingProvisioner,
    request_id: str,
    actor_id: str,
    now: Optional[datetime] = None,
):
    """Record a (mock) payment of `rate` by `actor_id`."""
    now = now or utcnow()
    record, decision = _run(
        store, request_id, actor_id,
        lambda r: group.decide_pay(r, actor_id, now),
        within=_increment_total_paid(store),
    )
    if decision is not None and decision.has_effect(PROVISION_MEETING):
        _provision_after_commit(store, provisioner, record)
        record = _load(store, request_id)
    return record


def deadline_elapsed(
    store: RecordStore,
    provisioner: MeetingProvisioner,
    request_id: str,
    now: Optional[datetime] = None,
):
    """System event: force funding → paid once the payment deadline has passed.

    A no-op on any status other than funding, so a second firing after the
    first succeeded returns the record unchanged.
    """
    now = now or utcnow()
    record, decision = _run(store, request_id, None, lambda r: group.decide_deadline_elapsed(r, now))
    if decision is None:
        logger.debug("deadline_elapsed on %s ignored (status %s)", request_id, record.status)
        return record
    logger.info(
        "Payment deadline elapsed for group request %s; forced to paid with %d pending payers",
        request_id, len(decision.detail.get("pending_payers", [])),
    )
    if decision.has_effect(PROVISION_MEETING):
        _provision_after_commit(store, provisioner, record)
        record = _load(store, request_id)
    return record


def provision_meeting(store: RecordStore, provisioner: MeetingProvisioner, request_id: str) -> MeetingInfo:
    """Create the session meeting once; later calls return the existing one."""
    record = _load(store, request_id)
    require_transition(GROUP, record.status, "provision_meeting")
    if record.meeting_ref:
        meeting = store.get("meetings", record.meeting_ref)
        if meeting is not None:
            return MeetingInfo(meeting.meeting_id, meeting.room_id, meeting.join_url, created=False)

    roster = group.build_roster(record)
    with store.atomic():
        meeting = provisioner.provision(request_id, RequestType.group, roster)
        linked = store.conditional_update(
            COLLECTION, request_id, {"meeting_ref": meeting.meeting_id}, expected={"meeting_ref": None}
        )
        if linked:
            record_mutation(
                store, request_id, GROUP, None, "provision_meeting",
                GroupRequestStatus(record.status).value, GroupRequestStatus(record.status).value,
                {"meeting_id": meeting.meeting_id, "room_id": meeting.room_id, "participants": len(roster)},
            )
    return meeting


# ── session ─────────────────────────────────────────────────────────
def mark_started(store: RecordStore, request_id: str, actor_id: str, now: Optional[datetime] = None):
    now = now or utcnow()
    record, _ = _run(store, request_id, actor_id, lambda r: group.decide_mark_started(r, actor_id, now))
    return record


def _end_meeting(provisioner: MeetingProvisioner, record) -> None:
    if not record.meeting_ref:
        return
    try:
        provisioner.mark_ended(record.meeting_ref)
    except LifecycleError as exc:
        logger.error("Failed to end meeting %s for group request %s: %s", record.meeting_ref, record.request_id, exc)


def complete(
    store: RecordStore,
    provisioner: MeetingProvisioner,
    request_id: str,
    actor_id: str,
    now: Optional[datetime] = None,
):
    now = now or utcnow()
    record, decision = _run(store, request_id, actor_id, lambda r: group.decide_complete(r, actor_id, now))
    if decision is not None and decision.has_effect(END_MEETING):
        _end_meeting(provisioner, record)
    return record


def cancel(
    store: RecordStore,
    provisioner: MeetingProvisioner,
    request_id: str,
    actor_id: str,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
):
    now = now or utcnow()
    record, decision = _run(store, request_id, actor_id, lambda r: group.decide_cancel(r, actor_id, reason, now))
    if decision is None:
        return record
    if decision.has_effect(INITIATE_REFUND):
        # Payments are mocked; refund stays pending
        logger.info(
            "Refund pending for group request %s: %d payers, total %.2f",
            request_id, len(record.paid_participants or []), record.total_paid or 0.0,
        )
    if decision.has_effect(END_MEETING):
        _end_meeting(provisioner, record)
    return record


# ── read paths ──────────────────────────────────────────────────────
def get_group_request_view(store: RecordStore, request_id: str) -> dict[str, Any]:
    """Record plus freshly computed reconciliation; cached counts are not trusted."""
    record = _load(store, request_id)
    return {
        "record": record,
        "reconciliation": reconcile(record),
        "available_actions": events_from(GROUP, record.status),
        "terminal": is_terminal(GROUP, record.status),
    }


def list_group_requests(
    store: RecordStore,
    group_id: Optional[str] = None,
    status: Optional[GroupRequestStatus] = None,
    creator_id: Optional[str] = None,
) -> list:
    filters: dict[str, Any] = {}
    if group_id is not None:
        filters["group_id"] = group_id
    if status is not None:
        filters["status"] = GroupRequestStatus(status)
    if creator_id is not None:
        filters["creator_id"] = creator_id
    return store.find(COLLECTION, **filters)


def watch_group_requests(
    store: RecordStore,
    change_filter: ChangeFilter,
    on_change: Callable[[str, dict[str, Any]], None],
) -> Callable[[], None]:
    """Subscribe to group request changes; each callback gets a re-reconciled view.

    Cached counts on the document are never passed through: they are
    replaced with the values reconciliation computes from the sets.
    """

    def deliver(change: str, doc: dict[str, Any]) -> None:
        rec = reconcile(doc)
        fresh = dict(doc)
        fresh.update(cached_counts(rec))
        on_change(change, {"record": fresh, "reconciliation": rec})

    return store.subscribe(COLLECTION, change_filter, deliver)


# ── maintenance ─────────────────────────────────────────────────────
def repair_cached_counts(store: RecordStore) -> int:
    """Rewrite stale vote_count / participant_count columns. Returns how many changed."""
    repaired = 0
    for record in store.find(COLLECTION):
        counts = cached_counts(reconcile(record))
        if all(getattr(record, field) == value for field, value in counts.items()):
            continue
        if store.conditional_update(COLLECTION, record.request_id, counts, expected={"version": record.version}):
            repaired += 1
            logger.info("Repaired cached counts on group request %s: %s", record.request_id, counts)
        else:
            logger.warning("Group request %s changed during repair; skipped", record.request_id)
    return repaired
