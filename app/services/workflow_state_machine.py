"""
Procurement Workflow — lifecycle transition tables.

Every lifecycle event is resolved through a data table:

    (current status, event) → Transition(next status, activity type, side effects)

The engine looks a transition up, applies the status change, logs the
activity type and then executes the listed side effects.  Nothing here
touches the database, so the rules (and the cascade plan) are unit-testable
on plain objects.

Side effects:
    advance          after a stage turns terminal, start the next pending
                     stage or complete the workflow (see ``plan_cascade``)
    emit             publish the activity type as a domain event
    clear_block      wipe blocked_reason / blocked_since
    set_block        stamp blocked_reason / blocked_since
    stamp_start      set actual_start_date if empty
    stamp_end        set actual_end_date (and completion fields for stages)
"""

from __future__ import annotations

from dataclasses import dataclass

from app.core.exceptions import InvalidTransitionError

ADVANCE = "advance"
EMIT = "emit"
CLEAR_BLOCK = "clear_block"
SET_BLOCK = "set_block"
STAMP_START = "stamp_start"
STAMP_END = "stamp_end"


@dataclass(frozen=True)
class Transition:
    to: str
    activity: str
    effects: tuple[str, ...] = ()


# ── Workflow ─────────────────────────────────────────────────────────────────

_WF_CANCEL = Transition("cancelled", "workflow_cancelled", (CLEAR_BLOCK,))
_WF_FINISH = Transition("completed", "workflow_completed", (CLEAR_BLOCK, STAMP_END, EMIT))

WORKFLOW_TRANSITIONS: dict[tuple[str, str], Transition] = {
    ("not_started", "start"):    Transition("in_progress", "workflow_started", (STAMP_START, ADVANCE)),
    ("in_progress", "block"):    Transition("blocked", "workflow_blocked", (SET_BLOCK, EMIT)),
    ("blocked", "unblock"):      Transition("in_progress", "workflow_unblocked", (CLEAR_BLOCK,)),
    ("in_progress", "complete"): _WF_FINISH,
    # Raised by the cascade when the last stage finishes.  A workflow that
    # is administratively blocked still completes once its work is done.
    ("in_progress", "stages_done"): _WF_FINISH,
    ("blocked", "stages_done"):     _WF_FINISH,
    ("not_started", "cancel"):   _WF_CANCEL,
    ("in_progress", "cancel"):   _WF_CANCEL,
    ("blocked", "cancel"):       _WF_CANCEL,
}

# ── Stage ────────────────────────────────────────────────────────────────────

_STAGE_SKIP = Transition("skipped", "stage_skipped", (CLEAR_BLOCK, ADVANCE))

STAGE_TRANSITIONS: dict[tuple[str, str], Transition] = {
    ("pending", "start"):        Transition("in_progress", "stage_started", (STAMP_START,)),
    ("in_progress", "complete"): Transition("completed", "stage_completed", (STAMP_END, ADVANCE)),
    ("in_progress", "block"):    Transition("blocked", "stage_blocked", (SET_BLOCK, EMIT)),
    ("blocked", "unblock"):      Transition("in_progress", "stage_unblocked", (CLEAR_BLOCK,)),
    ("pending", "skip"):         _STAGE_SKIP,
    ("in_progress", "skip"):     _STAGE_SKIP,
}

# ── Milestone ────────────────────────────────────────────────────────────────

MILESTONE_TRANSITIONS: dict[tuple[str, str], Transition] = {
    ("pending", "start"):        Transition("in_progress", "milestone_started"),
    ("pending", "complete"):     Transition("completed", "milestone_completed", (STAMP_END,)),
    ("in_progress", "complete"): Transition("completed", "milestone_completed", (STAMP_END,)),
    ("pending", "skip"):         Transition("skipped", "milestone_skipped"),
    ("in_progress", "skip"):     Transition("skipped", "milestone_skipped"),
}

_TABLES = {
    "workflow": WORKFLOW_TRANSITIONS,
    "stage": STAGE_TRANSITIONS,
    "milestone": MILESTONE_TRANSITIONS,
}


def allowed_events(entity: str, status: str) -> list[str]:
    """Events that are legal for *entity* in *status* (sorted, for API hints)."""
    table = _TABLES[entity]
    return sorted(ev for (st, ev) in table if st == status)


def resolve(entity: str, entity_id: str | None, status: str, event: str) -> Transition:
    """Look up the transition for ``(status, event)`` or raise.

    Raises:
        InvalidTransitionError: the event is not legal from *status*.
    """
    transition = _TABLES[entity].get((status, event))
    if transition is None:
        allowed = allowed_events(entity, status)
        reason = f"allowed: {', '.join(allowed)}" if allowed else "no transitions from this status"
        raise InvalidTransitionError(entity, entity_id, event, status, reason)
    return transition


# ── Cascade planning ─────────────────────────────────────────────────────────

CASCADE_NONE = "none"
CASCADE_START_STAGE = "start_stage"
CASCADE_COMPLETE_WORKFLOW = "complete_workflow"

_RUNNING_WORKFLOW = {"in_progress", "blocked"}


def plan_cascade(workflow_status: str, stages) -> tuple[str, object | None]:
    """Decide what follows a workflow start or a stage turning terminal.

    Works on any objects exposing ``status`` and ``stage_order``.

    Returns:
        (CASCADE_START_STAGE, stage)      the lowest-order pending stage starts
        (CASCADE_COMPLETE_WORKFLOW, None) no pending stage remains
        (CASCADE_NONE, None)              workflow not running, or a stage is still active
    """
    if workflow_status not in _RUNNING_WORKFLOW:
        return CASCADE_NONE, None

    ordered = sorted(stages, key=lambda s: s.stage_order)
    if any(s.status in ("in_progress", "blocked") for s in ordered):
        return CASCADE_NONE, None

    for stage in ordered:
        if stage.status == "pending":
            return CASCADE_START_STAGE, stage
    return CASCADE_COMPLETE_WORKFLOW, None
