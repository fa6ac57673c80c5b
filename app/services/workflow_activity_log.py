"""
Procurement Workflow — Activity Log recorder.

Append-only writer and reader for ``WorkflowActivityLog``.

The state change is committed first; activity rows are then written in their
own short transaction with bounded retries.  If every attempt fails the
state change stands, the failure is logged at ERROR, and ``append`` returns
False so the caller can flag the result as audit-degraded.
"""

from __future__ import annotations

import itertools
import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from app.core.exceptions import ValidationError
from app.models import db
from app.models.procurement_workflow import ACTIVITY_TYPES, WorkflowActivityLog

logger = logging.getLogger(__name__)

MAX_HISTORY_LIMIT = 500


@dataclass(frozen=True)
class Actor:
    """Who performed an operation.  Anonymous callers are recorded as "System"."""

    id: str | None = None
    name: str = "System"


SYSTEM = Actor()


@dataclass(frozen=True)
class ActivityRecord:
    """One pending activity entry, collected during a mutation."""

    activity_type: str
    description: str
    workflow_id: str
    stage_id: str | None = None
    milestone_id: str | None = None
    field_changed: str | None = None
    old_value: str | None = None
    new_value: str | None = None


class ActivityLog:
    """Persists ``ActivityRecord`` batches and serves workflow histories.

    Args:
        retries: Attempts per batch before giving up.
        backoff: Base sleep (seconds) between attempts; doubles each retry.
    """

    def __init__(self, retries: int = 3, backoff: float = 0.05):
        self.retries = max(1, retries)
        self.backoff = backoff
        # Strictly increasing across the process; orders same-instant entries.
        self._sequence = itertools.count(time.time_ns())
        self._sequence_lock = threading.Lock()

    def _next_sequence(self) -> int:
        with self._sequence_lock:
            return next(self._sequence)

    def append(self, records, actor: Actor, performed_at=None) -> bool:
        """Write *records* in one transaction.

        Returns:
            True when persisted, False when every attempt failed.
        """
        records = list(records)
        if not records:
            return True
        for record in records:
            if record.activity_type not in ACTIVITY_TYPES:
                raise ValueError(f"Unknown activity type: {record.activity_type}")

        performed_at = performed_at or datetime.now(timezone.utc)

        def build_rows():
            return [
                WorkflowActivityLog(
                    workflow_id=r.workflow_id,
                    stage_id=r.stage_id,
                    milestone_id=r.milestone_id,
                    activity_type=r.activity_type,
                    description=r.description,
                    field_changed=r.field_changed,
                    old_value=r.old_value,
                    new_value=r.new_value,
                    performed_by=actor.id,
                    performed_by_name=actor.name or "System",
                    performed_at=performed_at,
                    sequence=self._next_sequence(),
                )
                for r in records
            ]

        for attempt in range(1, self.retries + 1):
            try:
                db.session.add_all(build_rows())
                db.session.commit()
                return True
            except SQLAlchemyError as exc:
                db.session.rollback()
                logger.warning(
                    "Activity log write failed (attempt %d/%d) for workflow %s: %s",
                    attempt, self.retries, records[0].workflow_id, exc,
                )
                if attempt < self.retries:
                    time.sleep(self.backoff * (2 ** (attempt - 1)))

        logger.error(
            "Activity log write abandoned after %d attempts; %d entries lost",
            self.retries, len(records),
            extra={
                "workflow_id": records[0].workflow_id,
                "event_type": ",".join(r.activity_type for r in records),
            },
        )
        return False

    def history(self, workflow_id: str, limit: int = 50) -> list[WorkflowActivityLog]:
        """Entries for one workflow (including its stages and milestones), newest first."""
        if isinstance(limit, bool) or not isinstance(limit, int) or not 1 <= limit <= MAX_HISTORY_LIMIT:
            raise ValidationError(
                f"limit must be an integer between 1 and {MAX_HISTORY_LIMIT}",
                details={"limit": limit},
            )
        stmt = (
            select(WorkflowActivityLog)
            .where(WorkflowActivityLog.workflow_id == workflow_id)
            .order_by(
                WorkflowActivityLog.performed_at.desc(),
                WorkflowActivityLog.sequence.desc(),
            )
            .limit(limit)
        )
        return list(db.session.execute(stmt).scalars())
