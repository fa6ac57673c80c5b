"""
Procurement Workflow — Stage Scheduler.

Pure date arithmetic: given a planned start date and the ordered stage
durations, chain each stage's planned window to the previous one.

    stage N:    [cursor, cursor + target_days]
    stage N+1:  starts the day after stage N ends

A stage without ``target_days`` gets a start but no end, and does not move
the cursor (the next stage inherits the same start).  A zero-day stage
collapses start == end.

Usage:
    from app.services.workflow_scheduler import StageSpec, schedule_stages

    windows = schedule_stages(date(2026, 1, 1), [StageSpec("Negotiation", 5)])
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date, timedelta

from app.core.exceptions import ValidationError


@dataclass(frozen=True)
class StageSpec:
    """Definition of one stage to be created, before scheduling."""

    name: str
    target_days: int | None = None
    description: str | None = None
    order: int | None = None
    milestones: tuple[str, ...] = field(default_factory=tuple)
    planned_start_date: date | None = None
    planned_end_date: date | None = None


def validate_durations(stages) -> None:
    """Reject negative or non-integer durations before any scheduling happens."""
    bad = {}
    for index, stage in enumerate(stages):
        days = stage.target_days
        if days is None:
            continue
        if isinstance(days, bool) or not isinstance(days, int):
            bad[stage.name or f"stage[{index}]"] = f"target_days must be an integer, got {days!r}"
        elif days < 0:
            bad[stage.name or f"stage[{index}]"] = f"target_days must be >= 0, got {days}"
    if bad:
        raise ValidationError("Invalid stage duration", details=bad)


def schedule_stages(start_date: date | None, stages) -> list[StageSpec]:
    """Return copies of *stages* with planned start/end dates filled in.

    Args:
        start_date: Planned start of the first stage.  ``None`` leaves every
            window unscheduled.
        stages: Ordered sequence of ``StageSpec``.

    Raises:
        ValidationError: any stage has a negative duration.
    """
    stages = list(stages)
    validate_durations(stages)

    scheduled = []
    cursor = start_date
    for stage in stages:
        if cursor is None:
            scheduled.append(replace(stage, planned_start_date=None, planned_end_date=None))
            continue

        if stage.target_days is None:
            scheduled.append(replace(stage, planned_start_date=cursor, planned_end_date=None))
            continue

        end = cursor + timedelta(days=stage.target_days)
        scheduled.append(replace(stage, planned_start_date=cursor, planned_end_date=end))
        cursor = end + timedelta(days=1)

    return scheduled


def planned_end_of(scheduled: list[StageSpec]) -> date | None:
    """Latest planned end across scheduled stages (the workflow's planned end)."""
    ends = [s.planned_end_date for s in scheduled if s.planned_end_date]
    return max(ends) if ends else None
