"""Tests for the group request service.

Covers:
- Creation validation and group membership
- Voting threshold, unvote, join/leave, teacher application and withdrawal
- Full funding scenario and the forced deadline scenario
- Cancellation with and without refunds
- Change-feed watchers and cached-count repair
"""
from datetime import timedelta

import pytest

from app.errors import (
    DuplicateActionError,
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from app.lifecycle.reconciliation import effective_participants, reconcile
from app.models.group_request import GroupRequestStatus, RefundStatus
from app.models.meeting import MeetingStatus, RequestType
from app.services import group_request_service as svc
from app.services.ledger import history
from app.timeutil import ensure_utc, utcnow
from tests.conftest import (
    FailingProvisioner,
    create_group_request,
    create_test_group,
    create_test_user,
    group_request_fields,
    group_request_in_funding,
)

PAYERS = ("v1", "v2", "v3", "v4", "v5")


def _assert_payer_invariant(record):
    rec = reconcile(record)
    assert rec.expected_payers == rec.effective_participants
    assert set(record.votes) | {record.creator_id} <= rec.effective_participants


class TestCreate:
    """Creation rules recovered from the request form validation."""

    def test_create_pending(self, store):
        record = create_group_request(store)
        assert record.status == GroupRequestStatus.pending
        assert record.min_participants == 3
        assert record.participant_count == 1
        assert record.vote_count == 0

    def test_validation_lists_every_problem(self, store):
        with pytest.raises(ValidationError) as exc:
            svc.create_group_request(store, "carla", {"title": "Rust", "description": "short", "rate": -1})
        assert exc.value.missing_fields == ["description", "group_id", "rate", "title"]

    def test_zero_min_participants(self, store):
        with pytest.raises(ValidationError):
            create_group_request(store, min_participants=0)

    def test_creator_must_be_group_member(self, store, db, directory):
        for user_id in ("carla", "mallory"):
            create_test_user(db, user_id)
        create_test_group(db, "carla")
        with pytest.raises(PermissionDeniedError):
            svc.create_group_request(store, "mallory", group_request_fields(), directory=directory)
        assert svc.create_group_request(store, "carla", group_request_fields(), directory=directory)

    def test_unknown_group(self, store, directory):
        with pytest.raises(NotFoundError):
            svc.create_group_request(store, "carla", group_request_fields(group_id="nope"), directory=directory)


class TestUpdate:
    """Creator edits are limited to pending requests."""

    def test_creator_edits_pending_request(self, store):
        record = create_group_request(store)
        updated = svc.update_group_request(
            store, record.request_id, "carla", {"title": "Intro to async Rust", "rate": 12.5}
        )
        assert updated.title == "Intro to async Rust"
        assert updated.rate == 12.5
        assert updated.description == record.description
        assert updated.status == GroupRequestStatus.pending
        assert updated.version == 2
        assert history(store, record.request_id)[-1].action == "update"

    def test_invalid_edit_changes_nothing(self, store):
        record = create_group_request(store)
        with pytest.raises(ValidationError):
            svc.update_group_request(store, record.request_id, "carla", {"description": "too short"})
        fresh = store.get("group_requests", record.request_id)
        assert fresh.version == 1
        assert fresh.description == "Ownership, borrowing and lifetimes for beginners"

    def test_only_creator_edits(self, store):
        record = create_group_request(store)
        with pytest.raises(PermissionDeniedError):
            svc.update_group_request(store, record.request_id, "v1", {"rate": 20})

    def test_no_edits_after_voting_opens(self, store):
        record = create_group_request(store)
        for voter in PAYERS:
            svc.vote(store, record.request_id, voter)
        with pytest.raises(InvalidTransitionError):
            svc.update_group_request(store, record.request_id, "carla", {"rate": 20})


class TestVoting:
    """Votes open the request once the threshold is reached, and only once."""

    def test_threshold_opens_voting_once(self, store):
        record = create_group_request(store)
        for voter in PAYERS:
            record = svc.vote(store, record.request_id, voter)
        assert record.status == GroupRequestStatus.voting_open
        opened_at = record.voting_opened_at

        for voter in ("v6", "v7"):
            record = svc.vote(store, record.request_id, voter)
        assert record.status == GroupRequestStatus.voting_open
        assert record.voting_opened_at == opened_at
        assert record.vote_count == 7
        assert [m.action for m in history(store, record.request_id)].count("vote") == 7
        transitions = [m for m in history(store, record.request_id) if m.after_status == "voting_open" and m.before_status == "pending"]
        assert len(transitions) == 1

    def test_repeat_vote(self, store):
        record = create_group_request(store)
        svc.vote(store, record.request_id, "v1")
        with pytest.raises(DuplicateActionError):
            svc.vote(store, record.request_id, "v1")
        assert store.get("group_requests", record.request_id).vote_count == 1

    def test_unvote_keeps_status(self, store):
        record = create_group_request(store)
        for voter in PAYERS:
            svc.vote(store, record.request_id, voter)
        record = svc.unvote(store, record.request_id, "v5")
        assert record.status == GroupRequestStatus.voting_open
        assert record.vote_count == 4
        assert record.participant_count == 5

    def test_join_and_leave(self, store):
        record = create_group_request(store)
        with pytest.raises(InvalidTransitionError):
            svc.join(store, record.request_id, "p1")
        for voter in PAYERS:
            svc.vote(store, record.request_id, voter)
        record = svc.join(store, record.request_id, "p1")
        assert record.participant_count == 7
        _assert_payer_invariant(record)
        record = svc.leave(store, record.request_id, "p1")
        assert record.participant_count == 6


class TestTeachers:
    def test_apply_and_withdraw(self, store):
        record = create_group_request(store)
        for voter in PAYERS:
            svc.vote(store, record.request_id, voter)
        record = svc.apply_to_teach(store, record.request_id, "tom")
        assert record.status == GroupRequestStatus.accepted
        record = svc.apply_to_teach(store, record.request_id, "tina")
        record = svc.withdraw_teaching(store, record.request_id, "tom")
        assert record.status == GroupRequestStatus.accepted
        record = svc.withdraw_teaching(store, record.request_id, "tina")
        assert record.status == GroupRequestStatus.voting_open

    def test_teaching_before_voting_opens(self, store):
        record = create_group_request(store)
        with pytest.raises(InvalidTransitionError):
            svc.apply_to_teach(store, record.request_id, "tom")


class TestFundingScenarios:
    """End-to-end group flows."""

    def test_everyone_pays(self, store, provisioner):
        now = utcnow()
        record = group_request_in_funding(store, now=now, deadline_hours=1)
        assert record.status == GroupRequestStatus.funding
        assert reconcile(record).expected_payers == {"carla", *PAYERS}
        assert ensure_utc(record.payment_deadline) == now + timedelta(hours=1)
        _assert_payer_invariant(record)

        for payer in (*PAYERS, "carla"):
            record = svc.pay(store, provisioner, record.request_id, payer, now=now)
        assert record.status == GroupRequestStatus.paid
        assert record.total_paid == pytest.approx(60.0)
        assert record.meeting_ref is not None

        meeting = store.get("meetings", record.meeting_ref)
        assert meeting.request_type == RequestType.group
        roles = [p["role"] for p in meeting.participants]
        assert roles.count("participant") + roles.count("creator") == 6
        assert roles[-1] == "teacher"
        assert meeting.participants[-1]["user_id"] == "tom"
        assert "-7p-" in meeting.room_id

    def test_deadline_forces_paid_with_pending_payers(self, store, provisioner):
        now = utcnow()
        record = group_request_in_funding(store, now=now, deadline_hours=1)
        for payer in ("v1", "v2", "v3", "carla"):
            svc.pay(store, provisioner, record.request_id, payer, now=now)

        with pytest.raises(InvalidTransitionError):
            svc.deadline_elapsed(store, provisioner, record.request_id, now=now + timedelta(minutes=30))

        record = svc.deadline_elapsed(store, provisioner, record.request_id, now=now + timedelta(hours=1, seconds=1))
        assert record.status == GroupRequestStatus.paid
        assert record.funding_expired_at is not None
        assert reconcile(record).pending_payers == {"v4", "v5"}
        assert record.meeting_ref is not None
        assert record.total_paid == pytest.approx(40.0)

    def test_deadline_elapsed_twice_is_noop(self, store, provisioner):
        now = utcnow()
        record = group_request_in_funding(store, now=now, deadline_hours=1)
        later = now + timedelta(hours=2)
        first = svc.deadline_elapsed(store, provisioner, record.request_id, now=later)
        second = svc.deadline_elapsed(store, provisioner, record.request_id, now=later)
        assert first.status == second.status == GroupRequestStatus.paid
        assert second.version == first.version
        assert len(store.find("meetings", request_id=record.request_id)) == 1
        actions = [m.action for m in history(store, record.request_id)]
        assert actions.count("deadline_elapsed") == 1

    def test_provisioning_failure_keeps_paid(self, store, provisioner):
        now = utcnow()
        record = group_request_in_funding(store, now=now, deadline_hours=1)
        record = svc.deadline_elapsed(store, FailingProvisioner(), record.request_id, now=now + timedelta(hours=2))
        assert record.status == GroupRequestStatus.paid
        assert record.meeting_ref is None

        meeting = svc.provision_meeting(store, provisioner, record.request_id)
        assert store.get("group_requests", record.request_id).meeting_ref == meeting.meeting_id
        again = svc.provision_meeting(store, provisioner, record.request_id)
        assert again.meeting_id == meeting.meeting_id
        assert not again.created

    def test_non_participant_cannot_pay(self, store, provisioner):
        record = group_request_in_funding(store)
        with pytest.raises(PermissionDeniedError):
            svc.pay(store, provisioner, record.request_id, "tom")

    def test_double_payment(self, store, provisioner):
        record = group_request_in_funding(store)
        svc.pay(store, provisioner, record.request_id, "v1")
        with pytest.raises(DuplicateActionError):
            svc.pay(store, provisioner, record.request_id, "v1")
        assert store.get("group_requests", record.request_id).total_paid == pytest.approx(10.0)

    def test_session_start_and_complete(self, store, provisioner):
        now = utcnow()
        record = group_request_in_funding(store, now=now)
        for payer in (*PAYERS, "carla"):
            record = svc.pay(store, provisioner, record.request_id, payer, now=now)
        with pytest.raises(PermissionDeniedError):
            svc.mark_started(store, record.request_id, "v1")
        record = svc.mark_started(store, record.request_id, "tom")
        assert record.status == GroupRequestStatus.in_progress
        record = svc.complete(store, provisioner, record.request_id, "v2")
        assert record.status == GroupRequestStatus.completed
        assert store.get("meetings", record.meeting_ref).status == MeetingStatus.completed
        with pytest.raises(InvalidTransitionError):
            svc.cancel(store, provisioner, record.request_id, "carla")


class TestCancel:
    """Cancellation is terminal; refunds only when someone has paid."""

    def test_cancel_funding_with_payment_sets_refund(self, store, provisioner):
        record = group_request_in_funding(store)
        svc.pay(store, provisioner, record.request_id, "v1")
        record = svc.cancel(store, provisioner, record.request_id, "carla", reason="Teacher unavailable")
        assert record.status == GroupRequestStatus.cancelled
        assert record.refund_status == RefundStatus.pending
        assert record.refund_initiated_at is not None
        assert record.cancellation_reason == "Teacher unavailable"

    def test_cancel_pending_without_payment(self, store, provisioner):
        record = create_group_request(store)
        record = svc.cancel(store, provisioner, record.request_id, "carla")
        assert record.status == GroupRequestStatus.cancelled
        assert record.refund_status is None

    def test_only_creator_cancels(self, store, provisioner):
        record = create_group_request(store)
        with pytest.raises(PermissionDeniedError):
            svc.cancel(store, provisioner, record.request_id, "v1")

    def test_no_writes_after_cancel(self, store, provisioner):
        record = create_group_request(store)
        svc.cancel(store, provisioner, record.request_id, "carla")
        with pytest.raises(InvalidTransitionError):
            svc.vote(store, record.request_id, "v1")


class TestReadPaths:
    """Watchers and listings always see reconciled counts."""

    def test_watch_recomputes_counts(self, store):
        record = create_group_request(store)
        seen = []
        unsubscribe = svc.watch_group_requests(
            store, {"request_id": record.request_id}, lambda change, view: seen.append(view)
        )
        svc.vote(store, record.request_id, "v1")
        unsubscribe()
        svc.vote(store, record.request_id, "v2")

        assert seen
        latest = seen[-1]
        assert latest["record"]["vote_count"] == 1
        assert latest["reconciliation"].effective_participants == {"carla", "v1"}

    def test_view_ignores_stale_cache(self, store):
        record = create_group_request(store)
        svc.vote(store, record.request_id, "v1")
        store.conditional_update("group_requests", record.request_id, {"participant_count": 99}, {})
        view = svc.get_group_request_view(store, record.request_id)
        assert view["reconciliation"].participant_count == 2

    def test_repair_cached_counts(self, store):
        record = create_group_request(store)
        svc.vote(store, record.request_id, "v1")
        store.conditional_update("group_requests", record.request_id, {"vote_count": 5, "participant_count": 0}, {})
        assert svc.repair_cached_counts(store) == 1
        repaired = store.get("group_requests", record.request_id)
        assert (repaired.vote_count, repaired.participant_count) == (1, 2)
        assert svc.repair_cached_counts(store) == 0

    def test_list_filters(self, store):
        first = create_group_request(store)
        create_group_request(store, creator_id="dana", group_id="group-2")
        svc.vote(store, first.request_id, "v1")
        assert [r.request_id for r in svc.list_group_requests(store, group_id="group-1")] == [first.request_id]
        assert len(svc.list_group_requests(store, status=GroupRequestStatus.pending)) == 2
        assert len(svc.list_group_requests(store, creator_id="dana")) == 1
        assert effective_participants(store.get("group_requests", first.request_id)) == {"carla", "v1"}
