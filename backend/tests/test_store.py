"""Tests for the SQL Record Store.

Covers:
- conditional_update wins once per expected snapshot and bumps version
- atomic_increment leaves version alone
- atomic() rolls back every write and drops notifications on failure
- subscribe delivers committed changes only, filtered, until unsubscribed
"""
import pytest

from app.models.request import RequestStatus
from app.store.base import CREATED, DELETED, UPDATED


def _new_request(store, owner_id="olivia"):
    return store.create("requests", {"owner_id": owner_id, "status": RequestStatus.draft, "responses": []})


class TestConditionalUpdate:
    """Compare-and-set semantics."""

    def test_matching_expectation_applies_and_bumps_version(self, store):
        record = _new_request(store)
        applied = store.conditional_update(
            "requests", record.request_id, {"topic": "Calculus"},
            expected={"status": RequestStatus.draft, "version": 1},
        )
        assert applied
        fresh = store.get("requests", record.request_id)
        assert fresh.topic == "Calculus"
        assert fresh.version == 2

    def test_stale_expectation_loses(self, store):
        record = _new_request(store)
        expected = {"status": RequestStatus.draft, "version": record.version}
        assert store.conditional_update("requests", record.request_id, {"status": RequestStatus.open}, expected)
        # A second writer holding the same snapshot must lose
        assert not store.conditional_update("requests", record.request_id, {"status": RequestStatus.cancelled}, expected)
        assert store.get("requests", record.request_id).status == RequestStatus.open

    def test_none_expectation_matches_null(self, store):
        record = _new_request(store)
        assert store.conditional_update("requests", record.request_id, {"meeting_ref": "m-1"}, {"meeting_ref": None})
        assert not store.conditional_update("requests", record.request_id, {"meeting_ref": "m-2"}, {"meeting_ref": None})
        assert store.get("requests", record.request_id).meeting_ref == "m-1"

    def test_missing_record(self, store):
        assert not store.conditional_update("requests", "nope", {"topic": "x"}, {"version": 1})


class TestAtomicIncrement:
    def test_increment_does_not_bump_version(self, store):
        record = _new_request(store)
        assert store.atomic_increment("requests", record.request_id, "response_count", 1)
        assert store.atomic_increment("requests", record.request_id, "response_count", 2)
        fresh = store.get("requests", record.request_id)
        assert fresh.response_count == 3
        assert fresh.version == 1


class TestAtomicBlock:
    """Transactions and post-commit notifications."""

    def test_rollback_discards_writes_and_notifications(self, store):
        seen = []
        store.subscribe("requests", None, lambda change, doc: seen.append(change))
        with pytest.raises(RuntimeError):
            with store.atomic():
                record = _new_request(store)
                request_id = record.request_id
                raise RuntimeError("boom")
        assert store.get("requests", request_id) is None
        assert seen == []

    def test_notifications_fire_after_commit(self, store):
        seen = []
        store.subscribe("requests", None, lambda change, doc: seen.append((change, doc["topic"])))
        with store.atomic():
            record = _new_request(store)
            store.conditional_update("requests", record.request_id, {"topic": "Chess"}, {"version": 1})
            assert seen == []
        assert seen == [(CREATED, "Chess"), (UPDATED, "Chess")]

    def test_nested_blocks_commit_once(self, store):
        with store.atomic():
            with store.atomic():
                record = _new_request(store)
            assert store.session.in_transaction()
        assert store.get("requests", record.request_id) is not None


class TestSubscribe:
    def test_filter_and_unsubscribe(self, store):
        seen = []
        unsubscribe = store.subscribe("requests", {"owner_id": "olivia"}, lambda change, doc: seen.append(doc["owner_id"]))
        _new_request(store, "olivia")
        _new_request(store, "ravi")
        unsubscribe()
        _new_request(store, "olivia")
        assert seen == ["olivia"]

    def test_delete_delivers_last_snapshot(self, store):
        seen = []
        record = _new_request(store)
        store.subscribe("requests", lambda doc: doc["request_id"] == record.request_id,
                        lambda change, doc: seen.append((change, doc["owner_id"])))
        assert store.delete("requests", record.request_id)
        assert seen == [(DELETED, "olivia")]

    def test_failing_listener_does_not_break_writer(self, store):
        def explode(change, doc):
            raise ValueError("listener bug")

        store.subscribe("requests", None, explode)
        record = _new_request(store)
        assert store.get("requests", record.request_id) is not None
