"""Deadline Monitor — the only time-driven trigger in the system.

Every interval it fires deadline_elapsed for funding requests whose payment
deadline has passed, then retries meeting provisioning for paid requests
that still have no meeting. Firing twice is harmless: the second
deadline_elapsed sees status paid and does nothing.
"""
import logging
import threading
from datetime import datetime
from typing import Any, Callable, Optional

from sqlalchemy.orm import Session

from app.config import settings
from app.errors import LifecycleError
from app.models.group_request import GroupRequestStatus
from app.services import group_request_service
from app.services.meeting_provisioner import JitsiMeetingProvisioner, MeetingProvisioner
from app.store.base import RecordStore
from app.store.sql import SqlRecordStore
from app.timeutil import ensure_utc, utcnow

logger = logging.getLogger(__name__)

AWAITING_MEETING = (GroupRequestStatus.paid, GroupRequestStatus.payment_complete)


class DeadlineMonitor:
    """Background scanner for expired payment deadlines."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        provisioner_factory: Callable[[RecordStore], MeetingProvisioner] = JitsiMeetingProvisioner,
        interval_seconds: Optional[float] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.provisioner_factory = provisioner_factory
        self.interval_seconds = interval_seconds or settings.DEADLINE_SCAN_INTERVAL_SECONDS
        self.clock = clock
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    # ── one scan ────────────────────────────────────────────────────
    def run_once(self, now: Optional[datetime] = None) -> dict[str, Any]:
        """Run a single scan and return what it did."""
        now = ensure_utc(now or self.clock())
        summary: dict[str, Any] = {"expired": [], "provisioned": [], "failed": []}
        db = self.session_factory()
        try:
            store = SqlRecordStore(db)
            provisioner = self.provisioner_factory(store)
            self._expire_deadlines(store, provisioner, now, summary)
            self._retry_provisioning(store, provisioner, summary)
        finally:
            db.close()
        if summary["expired"] or summary["provisioned"] or summary["failed"]:
            logger.info(
                "Deadline scan: %d expired, %d meetings provisioned, %d failed",
                len(summary["expired"]), len(summary["provisioned"]), len(summary["failed"]),
            )
        return summary

    def _expire_deadlines(self, store, provisioner, now, summary) -> None:
        for record in store.find("group_requests", status=GroupRequestStatus.funding):
            deadline = ensure_utc(record.payment_deadline)
            if deadline is None or deadline > now:
                continue
            request_id = record.request_id
            try:
                group_request_service.deadline_elapsed(store, provisioner, request_id, now=now)
                summary["expired"].append(request_id)
            except LifecycleError as exc:
                # Usually a concurrent writer got there first
                logger.warning("deadline_elapsed on %s rejected: %s", request_id, exc)
                summary["failed"].append(request_id)
            except Exception:
                logger.exception("deadline_elapsed on %s failed", request_id)
                store.session.rollback()
                summary["failed"].append(request_id)

    def _retry_provisioning(self, store, provisioner, summary) -> None:
        for status in AWAITING_MEETING:
            for record in store.find("group_requests", status=status, meeting_ref=None):
                request_id = record.request_id
                try:
                    meeting = group_request_service.provision_meeting(store, provisioner, request_id)
                    summary["provisioned"].append(request_id)
                    logger.info("Provisioned meeting %s for group request %s", meeting.meeting_id, request_id)
                except LifecycleError as exc:
                    logger.warning("Provisioning retry for %s failed: %s", request_id, exc)
                    summary["failed"].append(request_id)

    # ── background thread ───────────────────────────────────────────
    def _loop(self) -> None:
        logger.info("Deadline monitor started (every %.1fs)", self.interval_seconds)
        while not self._stop.is_set():
            try:
                self.run_once()
            except Exception:
                logger.exception("Deadline scan failed")
            self._stop.wait(self.interval_seconds)
        logger.info("Deadline monitor stopped")

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="deadline-monitor", daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout if timeout is not None else self.interval_seconds * 2)
            self._thread = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()
