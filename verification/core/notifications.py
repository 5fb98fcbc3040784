"""
Post-commit fan-out of engine events to external collaborators.

The notification sender and the settlement system subscribe here. Events are
dispatched only after the engine's transaction commits, and a failing
subscriber is logged and skipped: delivery never rolls back engine state.
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Any, Callable, Dict, List

from ..util.logging import logger, audit_event

PANEL_ASSIGNED = "panel_assigned"
DECISION_REACHED = "decision_reached"


@dataclass
class PanelAssigned:
    request_id: str
    project_id: str
    validator_ids: List[str]
    required_approvals: int
    voting_deadline: datetime
    event_type: str = PANEL_ASSIGNED


@dataclass
class DecisionReached:
    request_id: str
    project_id: str
    decision: str
    decided_at: datetime
    resolved_by: str
    approval_count: int
    rejection_count: int
    # validator_id, wallet_address, wallet_signature, signed_at of each approver
    approving_proofs: List[Dict[str, Any]] = field(default_factory=list)
    event_type: str = DECISION_REACHED

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['decided_at'] = self.decided_at.isoformat()
        return data


class NotificationDispatcher:
    """Delivers engine events to subscribed callables."""

    def __init__(self):
        self._subscribers: List[Callable] = []

    def subscribe(self, callback: Callable) -> None:
        if not callable(callback):
            raise ValueError(f"Subscriber must be callable: {callback}")
        self._subscribers.append(callback)

    def unsubscribe(self, callback: Callable) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    def clear(self) -> None:
        self._subscribers.clear()

    def dispatch(self, event) -> int:
        """Deliver ``event`` to every subscriber; returns the number of failures."""
        failures = 0
        for subscriber in list(self._subscribers):
            try:
                subscriber(event)
            except Exception as e:
                failures += 1
                logger.log_notification_failure(event.event_type, event.request_id,
                                                getattr(subscriber, "__name__", repr(subscriber)), str(e))
        return failures


def log_event(event) -> None:
    """Default subscriber: audit every dispatched event, wallet signatures redacted."""
    audit_event(f"notification.{event.event_type}", {"request_id": event.request_id}, asdict(event))


# Global dispatcher instance
dispatcher = NotificationDispatcher()
dispatcher.subscribe(log_event)
