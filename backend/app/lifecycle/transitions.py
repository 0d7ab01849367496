"""Closed transition tables for the one-to-one and group flows.

Every mutating operation checks its (status, event) pair here before doing
anything else. A pair with no row is rejected with InvalidTransitionError.
The value of each row is the set of statuses the event may leave the
record in; the decision functions pick one of them.
"""
from app.errors import InvalidTransitionError
from app.models.group_request import GroupRequestStatus as G
from app.models.request import RequestStatus as R

ONE_TO_ONE = "one-to-one"
GROUP = "group"

ONE_TO_ONE_TERMINAL = frozenset({R.completed, R.archived, R.cancelled})
GROUP_TERMINAL = frozenset({G.completed, G.cancelled})

ONE_TO_ONE_TRANSITIONS: dict[tuple[R, str], frozenset] = {
    (R.draft, "update"): frozenset({R.draft}),
    (R.draft, "publish"): frozenset({R.open}),
    (R.open, "respond"): frozenset({R.open}),
    (R.open, "claim"): frozenset({R.active}),
    (R.active, "complete"): frozenset({R.completed}),
    # Administrative archival is the only write a terminal record accepts
    (R.completed, "archive"): frozenset({R.archived}),
}
for _status in (R.draft, R.open, R.active):
    ONE_TO_ONE_TRANSITIONS[(_status, "cancel")] = frozenset({R.cancelled})

GROUP_TRANSITIONS: dict[tuple[G, str], frozenset] = {
    (G.pending, "vote"): frozenset({G.pending, G.voting_open}),
    (G.pending, "unvote"): frozenset({G.pending}),
    (G.pending, "update"): frozenset({G.pending}),
    (G.voting_open, "vote"): frozenset({G.voting_open}),
    (G.voting_open, "unvote"): frozenset({G.voting_open}),
    (G.voting_open, "join"): frozenset({G.voting_open}),
    (G.voting_open, "leave"): frozenset({G.voting_open}),
    (G.voting_open, "apply_to_teach"): frozenset({G.voting_open, G.accepted}),
    (G.voting_open, "withdraw_teaching"): frozenset({G.voting_open}),
    (G.accepted, "join"): frozenset({G.accepted}),
    (G.accepted, "leave"): frozenset({G.accepted}),
    (G.accepted, "apply_to_teach"): frozenset({G.accepted}),
    (G.accepted, "withdraw_teaching"): frozenset({G.accepted, G.voting_open}),
    (G.accepted, "select_teacher"): frozenset({G.funding}),
    (G.funding, "pay"): frozenset({G.funding, G.paid}),
    (G.funding, "deadline_elapsed"): frozenset({G.paid}),
    (G.paid, "provision_meeting"): frozenset({G.paid}),
    (G.payment_complete, "provision_meeting"): frozenset({G.payment_complete}),
    (G.in_progress, "provision_meeting"): frozenset({G.in_progress}),
    (G.paid, "mark_started"): frozenset({G.in_progress}),
    (G.payment_complete, "mark_started"): frozenset({G.in_progress}),
    (G.in_progress, "complete"): frozenset({G.completed}),
}
for _status in G:
    if _status not in GROUP_TERMINAL:
        GROUP_TRANSITIONS[(_status, "cancel")] = frozenset({G.cancelled})

_TABLES = {
    ONE_TO_ONE: (ONE_TO_ONE_TRANSITIONS, R),
    GROUP: (GROUP_TRANSITIONS, G),
}


def allowed_targets(flow: str, status, event: str) -> frozenset:
    """Return the statuses `event` may lead to from `status`, or an empty set."""
    table, enum_cls = _TABLES[flow]
    return table.get((enum_cls(status), event), frozenset())


def require_transition(flow: str, status, event: str) -> frozenset:
    """Raise InvalidTransitionError unless the table has a row for (status, event)."""
    targets = allowed_targets(flow, status, event)
    if not targets:
        status_value = getattr(status, "value", status)
        raise InvalidTransitionError(
            f"'{event}' is not allowed while a {flow} request is '{status_value}'",
            event=event,
            status=status_value,
            flow=flow,
        )
    return targets


def events_from(flow: str, status) -> list[str]:
    """Events the table accepts from `status` (used to describe available actions)."""
    table, enum_cls = _TABLES[flow]
    current = enum_cls(status)
    return sorted(event for (s, event) in table if s == current)


def is_terminal(flow: str, status) -> bool:
    if flow == ONE_TO_ONE:
        return R(status) in ONE_TO_ONE_TERMINAL
    return G(status) in GROUP_TERMINAL
