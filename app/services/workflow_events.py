"""
Procurement Workflow — domain events.

Notable transitions (workflow_blocked, workflow_completed, stage_blocked)
are published here after the state change is committed.  Delivery is
synchronous and best-effort: a failing subscriber is logged and never
undoes or fails the transition that emitted the event.

Usage:
    bus = WorkflowEventBus()
    bus.subscribe("workflow_blocked", lambda evt: notify_owner(evt))
"""

import logging
from collections import defaultdict
from dataclasses import asdict, dataclass
from datetime import datetime

logger = logging.getLogger(__name__)

WILDCARD = "*"


@dataclass(frozen=True)
class WorkflowEvent:
    event_type: str
    workflow_id: str
    evaluation_project_id: str
    vendor_id: str
    occurred_at: datetime
    stage_id: str | None = None
    reason: str | None = None
    performed_by: str | None = None

    def to_dict(self):
        data = asdict(self)
        data["occurred_at"] = self.occurred_at.isoformat()
        return data


class WorkflowEventBus:
    """In-process publish/subscribe keyed by event type ("*" receives everything)."""

    def __init__(self):
        self._subscribers = defaultdict(list)

    def subscribe(self, event_type: str, handler) -> None:
        self._subscribers[event_type].append(handler)

    def unsubscribe(self, event_type: str, handler) -> None:
        handlers = self._subscribers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)

    def publish(self, event: WorkflowEvent) -> int:
        """Deliver *event* to matching subscribers.

        Returns:
            Number of handlers that ran without raising.
        """
        delivered = 0
        handlers = list(self._subscribers.get(event.event_type, ())) + list(self._subscribers.get(WILDCARD, ()))
        for handler in handlers:
            try:
                handler(event)
                delivered += 1
            except Exception:
                logger.exception(
                    "Workflow event handler %r failed for %s",
                    handler, event.event_type,
                    extra={"workflow_id": event.workflow_id, "event_type": event.event_type},
                )
        return delivered


def log_event(event: WorkflowEvent) -> None:
    """Default subscriber: record the event in the application log."""
    logger.info(
        "Workflow event %s (workflow=%s stage=%s)%s",
        event.event_type, event.workflow_id, event.stage_id or "-",
        f": {event.reason}" if event.reason else "",
        extra={
            "workflow_id": event.workflow_id,
            "stage_id": event.stage_id,
            "event_type": event.event_type,
        },
    )
