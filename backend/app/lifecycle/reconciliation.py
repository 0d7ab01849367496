"""Reconciliation — the single place where derived group counts are computed.

effective participants = participants ∪ votes ∪ {creator}
expected payers        = effective participants
pending payers         = expected payers minus paid participants

Works on ORM records and on plain document dicts (change-feed snapshots),
so read paths and write paths share the exact same arithmetic.
"""
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional

from app.config import settings


@dataclass(frozen=True)
class VotingProgress:
    votes: int
    threshold: int
    remaining: int
    reached: bool


@dataclass(frozen=True)
class Reconciliation:
    effective_participants: frozenset
    expected_payers: frozenset
    paid_count: int
    pending_payers: frozenset
    voting_progress: VotingProgress

    @property
    def participant_count(self) -> int:
        return len(self.effective_participants)

    @property
    def fully_paid(self) -> bool:
        return not self.pending_payers

    def as_dict(self) -> dict[str, Any]:
        return {
            "effective_participants": sorted(self.effective_participants),
            "expected_payers": sorted(self.expected_payers),
            "paid_count": self.paid_count,
            "pending_payers": sorted(self.pending_payers),
            "participant_count": self.participant_count,
            "voting_progress": {
                "votes": self.voting_progress.votes,
                "threshold": self.voting_progress.threshold,
                "remaining": self.voting_progress.remaining,
                "reached": self.voting_progress.reached,
            },
        }


def _field(source: Any, name: str, default: Any = None) -> Any:
    if isinstance(source, Mapping):
        return source.get(name, default)
    return getattr(source, name, default)


def _as_set(values: Optional[Iterable[str]]) -> frozenset:
    return frozenset(v for v in (values or ()) if v)


def effective_participants(group_request: Any) -> frozenset:
    creator = _field(group_request, "creator_id")
    members = _as_set(_field(group_request, "participants")) | _as_set(_field(group_request, "votes"))
    if creator:
        members = members | {creator}
    return frozenset(members)


def reconcile(group_request: Any, vote_threshold: Optional[int] = None) -> Reconciliation:
    threshold = vote_threshold if vote_threshold is not None else settings.VOTE_THRESHOLD
    effective = effective_participants(group_request)
    paid = _as_set(_field(group_request, "paid_participants"))
    votes = len(_as_set(_field(group_request, "votes")))
    return Reconciliation(
        effective_participants=effective,
        expected_payers=effective,
        paid_count=len(paid & effective),
        pending_payers=effective - paid,
        voting_progress=VotingProgress(
            votes=votes,
            threshold=threshold,
            remaining=max(threshold - votes, 0),
            reached=votes >= threshold,
        ),
    )


def cached_counts(rec: Reconciliation) -> dict[str, int]:
    """Patch for the cached count columns; written alongside every set mutation."""
    return {
        "vote_count": rec.voting_progress.votes,
        "participant_count": rec.participant_count,
    }


def audit(group_request: Any) -> list[str]:
    """List invariant violations on a stored group request (empty when consistent)."""
    problems = []
    creator = _field(group_request, "creator_id")
    votes = _as_set(_field(group_request, "votes"))
    teachers = _as_set(_field(group_request, "teachers"))
    paid = _as_set(_field(group_request, "paid_participants"))
    selected = _field(group_request, "selected_teacher")

    if creator in votes:
        problems.append("creator is listed in votes")
    if creator in teachers:
        problems.append("creator is listed in teachers")
    if selected and selected not in teachers:
        problems.append("selected teacher is not a candidate teacher")
    stray = paid - effective_participants(group_request)
    if stray:
        problems.append(f"paid participants outside expected payers: {sorted(stray)}")

    rec = reconcile(group_request)
    for field, value in cached_counts(rec).items():
        if _field(group_request, field) != value:
            problems.append(f"cached {field} is stale")
    return problems
