"""Tests for the Deadline Monitor.

Covers:
- Overdue funding requests are forced to paid and get one meeting
- A second scan (or a second firing) is a no-op
- Requests before their deadline are left alone
- Provisioning is retried for paid requests without a meeting
- The background thread starts and stops cleanly
"""
import time
from datetime import timedelta

from app.models.group_request import GroupRequestStatus
from app.services import group_request_service as svc
from app.services.deadline_monitor import DeadlineMonitor
from app.timeutil import utcnow
from tests.conftest import FailingProvisioner, group_request_in_funding


class TestRunOnce:
    """Single scans driven with an explicit clock."""

    def test_expires_overdue_request(self, store, session_factory):
        now = utcnow()
        record = group_request_in_funding(store, now=now, deadline_hours=1)

        monitor = DeadlineMonitor(session_factory)
        summary = monitor.run_once(now + timedelta(hours=1, minutes=1))
        assert summary["expired"] == [record.request_id]
        assert summary["failed"] == []

        fresh = store.get("group_requests", record.request_id)
        assert fresh.status == GroupRequestStatus.paid
        assert fresh.meeting_ref is not None

    def test_second_scan_is_noop(self, store, session_factory):
        now = utcnow()
        record = group_request_in_funding(store, now=now, deadline_hours=1)
        monitor = DeadlineMonitor(session_factory)
        later = now + timedelta(hours=3)

        monitor.run_once(later)
        version = store.get("group_requests", record.request_id).version
        summary = monitor.run_once(later)

        assert summary == {"expired": [], "provisioned": [], "failed": []}
        assert store.get("group_requests", record.request_id).version == version
        assert len(store.find("meetings", request_id=record.request_id)) == 1

    def test_leaves_open_windows_alone(self, store, session_factory):
        now = utcnow()
        record = group_request_in_funding(store, now=now, deadline_hours=1)
        summary = DeadlineMonitor(session_factory).run_once(now + timedelta(minutes=59))
        assert summary["expired"] == []
        assert store.get("group_requests", record.request_id).status == GroupRequestStatus.funding

    def test_retries_provisioning(self, store, session_factory):
        now = utcnow()
        record = group_request_in_funding(store, now=now, deadline_hours=1)
        svc.deadline_elapsed(store, FailingProvisioner(), record.request_id, now=now + timedelta(hours=2))
        assert store.get("group_requests", record.request_id).meeting_ref is None

        summary = DeadlineMonitor(session_factory).run_once(now + timedelta(hours=2))
        assert summary["provisioned"] == [record.request_id]
        assert store.get("group_requests", record.request_id).meeting_ref is not None

    def test_provisioning_outage_never_rolls_back(self, store, session_factory):
        now = utcnow()
        record = group_request_in_funding(store, now=now, deadline_hours=1)
        monitor = DeadlineMonitor(session_factory, provisioner_factory=lambda _store: FailingProvisioner())
        summary = monitor.run_once(now + timedelta(hours=2))

        assert summary["expired"] == [record.request_id]
        assert record.request_id in summary["failed"]
        fresh = store.get("group_requests", record.request_id)
        assert fresh.status == GroupRequestStatus.paid
        assert fresh.meeting_ref is None


class TestBackgroundThread:
    def test_start_and_stop(self, store, session_factory):
        past = utcnow() - timedelta(hours=2)
        record = group_request_in_funding(store, now=past, deadline_hours=1)

        monitor = DeadlineMonitor(session_factory, interval_seconds=0.05)
        monitor.start()
        try:
            deadline = time.monotonic() + 5
            while time.monotonic() < deadline:
                if store.get("group_requests", record.request_id).status == GroupRequestStatus.paid:
                    break
                time.sleep(0.05)
        finally:
            monitor.stop()

        assert not monitor.running
        assert store.get("group_requests", record.request_id).status == GroupRequestStatus.paid
