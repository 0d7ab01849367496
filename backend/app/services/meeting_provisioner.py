"""Meeting Provisioner — creates exactly one meeting room per request.

provision() is idempotent per request id: if a meeting already exists for
the request it is returned unchanged. Any failure surfaces as a retryable
ProvisioningError.
"""
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional

from app.config import settings
from app.errors import (
    ConcurrentUpdateError,
    InvalidTransitionError,
    LifecycleError,
    NotFoundError,
    PermissionDeniedError,
    ProvisioningError,
)
from app.models.meeting import MeetingStatus, RequestType
from app.store.base import RecordStore
from app.timeutil import utcnow

logger = logging.getLogger(__name__)

_UNSAFE = re.compile(r"[^a-zA-Z0-9-]")
OPEN_MEETING_STATUSES = (MeetingStatus.scheduled, MeetingStatus.active)


@dataclass(frozen=True)
class MeetingInfo:
    meeting_id: str
    room_id: str
    join_url: str
    created: bool = True


class MeetingProvisioner(ABC):
    @abstractmethod
    def provision(
        self,
        request_id: str,
        request_type: RequestType,
        roster: list[dict[str, Any]],
        scheduled_start_utc: Optional[datetime] = None,
    ) -> MeetingInfo:
        ...

    @abstractmethod
    def mark_ended(self, meeting_id: str) -> bool:
        ...

    @abstractmethod
    def join(self, meeting_id: str, user_id: str, now: Optional[datetime] = None) -> Any:
        ...


class JitsiMeetingProvisioner(MeetingProvisioner):
    """Jitsi-style rooms: https://<domain>/<prefix>-1to1-... or <prefix>-Group-..."""

    def __init__(
        self,
        store: RecordStore,
        domain: Optional[str] = None,
        prefix: Optional[str] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.domain = domain or settings.MEETING_DOMAIN
        self.prefix = prefix or settings.MEETING_ROOM_PREFIX
        self.clock = clock

    def room_id_for(self, request_type: RequestType, request_id: str, roster: list[dict[str, Any]]) -> str:
        stamp = int(self.clock().timestamp() * 1000)
        short_id = request_id[-8:]
        if RequestType(request_type) == RequestType.one_to_one:
            user_hash = "-".join(sorted(p["user_id"] for p in roster))[-16:]
            room = f"{self.prefix}-1to1-{short_id}-{user_hash}-{stamp}"
        else:
            room = f"{self.prefix}-Group-{short_id}-{len(roster)}p-{stamp}"
        return _UNSAFE.sub("", room)

    def join_url_for(self, room_id: str) -> str:
        return f"https://{self.domain}/{room_id}"

    def provision(
        self,
        request_id: str,
        request_type: RequestType,
        roster: list[dict[str, Any]],
        scheduled_start_utc: Optional[datetime] = None,
    ) -> MeetingInfo:
        existing = self.store.find("meetings", request_id=request_id)
        if existing:
            meeting = existing[0]
            logger.info("Meeting %s already exists for request %s", meeting.meeting_id, request_id)
            return MeetingInfo(meeting.meeting_id, meeting.room_id, meeting.join_url, created=False)

        try:
            room_id = self.room_id_for(request_type, request_id, roster)
            meeting = self.store.create(
                "meetings",
                {
                    "request_id": request_id,
                    "request_type": RequestType(request_type),
                    "room_id": room_id,
                    "join_url": self.join_url_for(room_id),
                    "participants": [dict(p) for p in roster],
                    "status": MeetingStatus.scheduled,
                    "scheduled_start_utc": scheduled_start_utc,
                },
            )
        except LifecycleError:
            raise
        except Exception as exc:
            logger.error("Meeting provisioning failed for request %s: %s", request_id, exc)
            raise ProvisioningError("Failed to create meeting. Please try again.", request_id=request_id) from exc

        logger.info(
            "Provisioned %s meeting %s (%s) for request %s with %d participants",
            RequestType(request_type).value, meeting.meeting_id, room_id, request_id, len(roster),
        )
        return MeetingInfo(meeting.meeting_id, meeting.room_id, meeting.join_url, created=True)

    def mark_ended(self, meeting_id: str) -> bool:
        meeting = self.store.get("meetings", meeting_id)
        if meeting is None or MeetingStatus(meeting.status) not in OPEN_MEETING_STATUSES:
            return False
        ended = self.store.conditional_update(
            "meetings",
            meeting_id,
            {"status": MeetingStatus.completed, "ended_at": self.clock()},
            expected={"status": meeting.status},
        )
        if ended:
            logger.info("Meeting %s marked completed", meeting_id)
        return ended

    def join(self, meeting_id: str, user_id: str, now: Optional[datetime] = None):
        """Stamp the user's joined_at and move a scheduled meeting to active.

        Only users on the roster may join, and never once the meeting has
        ended. Joining again is a no-op that keeps the first joined_at.
        """
        now = now or self.clock()
        for _ in range(settings.CAS_MAX_ATTEMPTS):
            meeting = self.store.get("meetings", meeting_id)
            if meeting is None:
                raise NotFoundError("Meeting not found", meeting_id=meeting_id)
            status = MeetingStatus(meeting.status)
            if status not in OPEN_MEETING_STATUSES:
                raise InvalidTransitionError(
                    "Meeting has ended", event="join", status=status.value, flow="meeting"
                )

            roster = [dict(p) for p in meeting.participants or []]
            entry = next((p for p in roster if p.get("user_id") == user_id), None)
            if entry is None:
                raise PermissionDeniedError("Not authorized to join this meeting", meeting_id=meeting_id)
            if entry.get("joined_at") and status == MeetingStatus.active:
                return meeting

            entry["joined_at"] = entry.get("joined_at") or now.isoformat()
            patch: dict[str, Any] = {"participants": roster, "status": MeetingStatus.active}
            if meeting.started_at is None:
                patch["started_at"] = now
            if self.store.conditional_update("meetings", meeting_id, patch, expected={"version": meeting.version}):
                logger.info("User %s joined meeting %s (%s)", user_id, meeting_id, entry.get("role"))
                return self.store.get("meetings", meeting_id)
            logger.warning("Join on meeting %s lost a concurrent update; retrying", meeting_id)

        raise ConcurrentUpdateError("The meeting changed while joining; please retry", record_id=meeting_id)
