"""Decision — the output of every pure lifecycle decision function."""
from dataclasses import dataclass, field
from typing import Any, Optional

# Follow-up effects the orchestrating service carries out after the write
PROVISION_MEETING = "provision_meeting"
END_MEETING = "end_meeting"
HIDE_FOR_RESPONDER = "hide_for_responder"
INCREMENT_TOTAL_PAID = "increment_total_paid"
INITIATE_REFUND = "initiate_refund"


@dataclass
class Decision:
    event: str
    before_status: str
    target_status: str
    patch: dict[str, Any] = field(default_factory=dict)
    effects: list[str] = field(default_factory=list)
    detail: dict[str, Any] = field(default_factory=dict)

    @property
    def changes_status(self) -> bool:
        return self.before_status != self.target_status

    def has_effect(self, effect: str) -> bool:
        return effect in self.effects


def status_value(status: Any) -> Optional[str]:
    return getattr(status, "value", status)
