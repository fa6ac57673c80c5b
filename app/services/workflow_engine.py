"""
Procurement Workflow Engine.

Owns the lifecycle of post-selection procurement workflows: instantiation
from a template (or a custom stage list), workflow / stage / milestone
transitions, the stage cascade, edits, and the read models (timeline,
activity history, project dashboard).

Every mutation follows the same path:

    lock(workflow) → reload → resolve transition(s) → apply → commit
        → append activity entries → publish domain events → result

    - Transition legality comes from the tables in ``workflow_state_machine``.
    - A stage turning terminal cascades in the same unit of work: the next
      pending stage starts, or the workflow completes.
    - A stale ``version`` on commit is retried with backoff up to
      ``conflict_retries`` times, then surfaced as ConcurrencyConflictError.
    - Activity entries are written after the state commit; if that write
      keeps failing the result is flagged ``audit_degraded`` instead of the
      transition being rolled back.
    - Workflows in a terminal status (completed, cancelled) are read-only.

Usage:
    engine = current_app.extensions["workflow_engine"]
    result = engine.complete_stage(stage_id, Complete(actor=Actor("u1", "Ana")))
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.attributes import flag_modified

from app.core.exceptions import (
    ConcurrencyConflictError,
    DuplicateWorkflowError,
    InvalidTransitionError,
    ValidationError,
)
from app.models.procurement_workflow import (
    STAGE_ACTIVE_STATUSES,
    STAGE_TERMINAL_STATUSES,
    WORKFLOW_TERMINAL_STATUSES,
    Workflow,
    WorkflowMilestone,
    WorkflowStage,
)
from app.services.workflow_activity_log import ActivityLog, ActivityRecord
from app.services.workflow_commands import (
    AddMilestone,
    Block,
    Cancel,
    Complete,
    CreateCustom,
    CreateFromTemplate,
    ReassignOwner,
    Reschedule,
    Skip,
    Start,
    Unblock,
    UpdateNotes,
)
from app.services.workflow_dashboard import compute_dashboard
from app.services.workflow_events import WorkflowEvent, WorkflowEventBus
from app.services.workflow_locks import WorkflowLockRegistry
from app.services.workflow_repository import WorkflowRepository
from app.services.workflow_scheduler import StageSpec, planned_end_of, schedule_stages
from app.services.workflow_state_machine import (
    ADVANCE,
    CASCADE_COMPLETE_WORKFLOW,
    CASCADE_START_STAGE,
    CLEAR_BLOCK,
    EMIT,
    SET_BLOCK,
    STAMP_END,
    STAMP_START,
    plan_cascade,
    resolve,
)
from app.services.workflow_template_service import TemplateStore, normalise_stage_specs

logger = logging.getLogger(__name__)

AUDIT_DEGRADED_WARNING = "Activity log could not be written; the audit trail for this change is incomplete"


def _iso(value):
    return value.isoformat() if value else None


# ── Results ──────────────────────────────────────────────────────────────────

@dataclass
class OperationResult:
    """Outcome of one engine mutation.

    ``entity`` is the workflow, stage or milestone the caller addressed;
    ``activities`` lists every activity type logged, cascade included.
    """

    entity: object
    workflow: Workflow
    activities: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    audit_degraded: bool = False

    def to_dict(self):
        if isinstance(self.entity, Workflow):
            data = self.entity.to_dict(include_children=True)
        elif isinstance(self.entity, WorkflowStage):
            data = self.entity.to_dict(include_children=True)
        else:
            data = self.entity.to_dict()
        return {
            "data": data,
            "workflow": self.workflow.to_dict(),
            "activities": list(self.activities),
            "warnings": list(self.warnings),
            "audit_degraded": self.audit_degraded,
        }


class _UnitOfWork:
    """Collects activity records, events and warnings for one attempt."""

    def __init__(self, actor, now):
        self.actor = actor
        self.now = now
        self.today = now.date()
        self.records: list[ActivityRecord] = []
        self.events: list[WorkflowEvent] = []
        self.warnings: list[str] = []

    def record(self, activity_type, description, workflow, *, stage=None, milestone=None,
               field_changed=None, old_value=None, new_value=None):
        self.records.append(ActivityRecord(
            activity_type=activity_type,
            description=description,
            workflow_id=workflow.id,
            stage_id=stage.id if stage is not None else None,
            milestone_id=milestone.id if milestone is not None else None,
            field_changed=field_changed,
            old_value=None if old_value is None else str(old_value),
            new_value=None if new_value is None else str(new_value),
        ))

    def emit(self, event_type, workflow, *, stage=None, reason=None):
        self.events.append(WorkflowEvent(
            event_type=event_type,
            workflow_id=workflow.id,
            evaluation_project_id=workflow.evaluation_project_id,
            vendor_id=workflow.vendor_id,
            occurred_at=self.now,
            stage_id=stage.id if stage is not None else None,
            reason=reason,
            performed_by=self.actor.id,
        ))


# ═════════════════════════════════════════════════════════════════════════════
# Engine
# ═════════════════════════════════════════════════════════════════════════════


class WorkflowEngine:
    """Single entry point for every workflow operation.

    Collaborators are injected so tests can swap any of them; defaults
    talk to the Flask-SQLAlchemy session of the current app context.
    """

    def __init__(
        self,
        templates: TemplateStore | None = None,
        repository: WorkflowRepository | None = None,
        activity_log: ActivityLog | None = None,
        events: WorkflowEventBus | None = None,
        locks: WorkflowLockRegistry | None = None,
        *,
        conflict_retries: int = 3,
        retry_backoff: float = 0.05,
        enforce_milestones: bool = False,
        upcoming_limit: int = 10,
        at_risk_days: int = 7,
        at_risk_progress: float = 80.0,
        clock=None,
    ):
        self.templates = templates or TemplateStore()
        self.repository = repository or WorkflowRepository()
        self.activity_log = activity_log or ActivityLog()
        self.events = events or WorkflowEventBus()
        self.locks = locks or WorkflowLockRegistry()
        self.conflict_retries = max(1, conflict_retries)
        self.retry_backoff = retry_backoff
        self.enforce_milestones = enforce_milestones
        self.upcoming_limit = upcoming_limit
        self.at_risk_days = at_risk_days
        self.at_risk_progress = at_risk_progress
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @classmethod
    def from_config(cls, config, **overrides):
        """Build an engine from a Flask config mapping."""
        options = dict(
            activity_log=ActivityLog(
                retries=config.get("WORKFLOW_AUDIT_RETRIES", 3),
                backoff=config.get("WORKFLOW_RETRY_BACKOFF", 0.05),
            ),
            locks=WorkflowLockRegistry(timeout=config.get("WORKFLOW_LOCK_TIMEOUT", 10.0)),
            conflict_retries=config.get("WORKFLOW_CONFLICT_RETRIES", 3),
            retry_backoff=config.get("WORKFLOW_RETRY_BACKOFF", 0.05),
            enforce_milestones=config.get("WORKFLOW_ENFORCE_MILESTONES", False),
            upcoming_limit=config.get("DASHBOARD_UPCOMING_LIMIT", 10),
            at_risk_days=config.get("DASHBOARD_AT_RISK_DAYS", 7),
            at_risk_progress=config.get("DASHBOARD_AT_RISK_PROGRESS", 80.0),
        )
        options.update(overrides)
        return cls(**options)

    def now(self) -> datetime:
        return self._clock()

    # ── Instantiation ────────────────────────────────────────────────────

    def create_from_template(self, evaluation_project_id: str, cmd: CreateFromTemplate) -> OperationResult:
        """Copy a template's stages and milestones into a new not_started workflow."""
        blueprint = self.templates.get_template(cmd.template_id)
        return self._instantiate(
            evaluation_project_id, cmd, list(blueprint.stages),
            template_id=blueprint.id,
            name=cmd.name or blueprint.name,
            description=cmd.description or blueprint.description,
            summary=f"Workflow created from template: {blueprint.name}",
        )

    def create_custom(self, evaluation_project_id: str, cmd: CreateCustom) -> OperationResult:
        """Create a workflow from an explicit stage list (no template)."""
        specs = normalise_stage_specs(cmd.stages)
        return self._instantiate(
            evaluation_project_id, cmd, specs,
            template_id=None,
            name=cmd.name,
            description=cmd.description,
            summary=f"Workflow created with {len(specs)} custom stages",
        )

    def _instantiate(self, evaluation_project_id, cmd, specs, *, template_id, name, description, summary):
        if not evaluation_project_id:
            raise ValidationError("evaluation_project_id is required")
        scheduled = schedule_stages(cmd.planned_start_date, specs)

        with self.locks.hold(f"{evaluation_project_id}:{cmd.vendor_id}"):
            existing = self.repository.find_live_workflow(evaluation_project_id, cmd.vendor_id)
            if existing is not None:
                raise DuplicateWorkflowError(evaluation_project_id, cmd.vendor_id, existing.id)

            uow = _UnitOfWork(cmd.actor, self.now())
            workflow = Workflow(
                id=str(uuid.uuid4()),
                evaluation_project_id=evaluation_project_id,
                vendor_id=cmd.vendor_id,
                template_id=template_id,
                name=name,
                description=description,
                status="not_started",
                planned_start_date=cmd.planned_start_date,
                planned_end_date=planned_end_of(scheduled),
                owner_id=cmd.owner_id,
                owner_name=cmd.owner_name,
                created_by=cmd.actor.id,
            )
            for spec in scheduled:
                stage = WorkflowStage(
                    id=str(uuid.uuid4()),
                    name=spec.name,
                    description=spec.description,
                    stage_order=spec.order,
                    target_days=spec.target_days,
                    planned_start_date=spec.planned_start_date,
                    planned_end_date=spec.planned_end_date,
                    status="pending",
                )
                for position, milestone_name in enumerate(spec.milestones, start=1):
                    stage.milestones.append(WorkflowMilestone(
                        name=milestone_name, milestone_order=position, status="pending",
                    ))
                workflow.stages.append(stage)

            self.repository.add(workflow)
            uow.record("workflow_created", summary, workflow,
                       field_changed="status", new_value="not_started")
            try:
                self.repository.commit(workflow.id)
            except IntegrityError:
                # Lost the race to another process; the partial unique index caught it.
                raise DuplicateWorkflowError(evaluation_project_id, cmd.vendor_id) from None

            logger.info(
                "Workflow %s created for project=%s vendor=%s (%d stages)",
                workflow.id, evaluation_project_id, cmd.vendor_id, len(scheduled),
                extra={"workflow_id": workflow.id, "event_type": "workflow_created"},
            )
            return self._finish(uow, workflow, workflow)

    # ── Workflow lifecycle ───────────────────────────────────────────────

    def start_workflow(self, workflow_id: str, cmd: Start | None = None) -> OperationResult:
        return self._workflow_event(workflow_id, "start", cmd or Start())

    def complete_workflow(self, workflow_id: str, cmd: Complete | None = None) -> OperationResult:
        cmd = cmd or Complete()
        return self._workflow_event(workflow_id, "complete", cmd, notes=cmd.notes)

    def block_workflow(self, workflow_id: str, cmd: Block) -> OperationResult:
        return self._workflow_event(workflow_id, "block", cmd, reason=cmd.reason)

    def unblock_workflow(self, workflow_id: str, cmd: Unblock | None = None) -> OperationResult:
        return self._workflow_event(workflow_id, "unblock", cmd or Unblock())

    def cancel_workflow(self, workflow_id: str, cmd: Cancel | None = None) -> OperationResult:
        cmd = cmd or Cancel()
        return self._workflow_event(workflow_id, "cancel", cmd, reason=cmd.reason)

    def _workflow_event(self, workflow_id, event, cmd, **kwargs):
        def mutate(uow):
            workflow = self.repository.get_workflow(workflow_id, for_update=True)
            self._apply_workflow(workflow, event, uow, **kwargs)
            return workflow, workflow

        return self._execute(workflow_id, mutate, cmd.actor)

    # ── Stage lifecycle ──────────────────────────────────────────────────

    def start_stage(self, stage_id: str, cmd: Start | None = None) -> OperationResult:
        return self._stage_event(stage_id, "start", cmd or Start())

    def complete_stage(self, stage_id: str, cmd: Complete | None = None) -> OperationResult:
        cmd = cmd or Complete()
        return self._stage_event(stage_id, "complete", cmd, notes=cmd.notes)

    def skip_stage(self, stage_id: str, cmd: Skip | None = None) -> OperationResult:
        cmd = cmd or Skip()
        return self._stage_event(stage_id, "skip", cmd, reason=cmd.reason)

    def block_stage(self, stage_id: str, cmd: Block) -> OperationResult:
        return self._stage_event(stage_id, "block", cmd, reason=cmd.reason)

    def unblock_stage(self, stage_id: str, cmd: Unblock | None = None) -> OperationResult:
        return self._stage_event(stage_id, "unblock", cmd or Unblock())

    def _stage_event(self, stage_id, event, cmd, **kwargs):
        workflow_id = self.repository.get_stage(stage_id).workflow_id

        def mutate(uow):
            workflow = self.repository.get_workflow(workflow_id, for_update=True)
            stage = self.repository.get_stage(stage_id)
            self._apply_stage(workflow, stage, event, uow, **kwargs)
            return stage, workflow

        return self._execute(workflow_id, mutate, cmd.actor)

    # ── Milestones ───────────────────────────────────────────────────────

    def start_milestone(self, milestone_id: str, cmd: Start | None = None) -> OperationResult:
        return self._milestone_event(milestone_id, "start", cmd or Start())

    def complete_milestone(self, milestone_id: str, cmd: Complete | None = None) -> OperationResult:
        cmd = cmd or Complete()
        return self._milestone_event(milestone_id, "complete", cmd, notes=cmd.notes)

    def skip_milestone(self, milestone_id: str, cmd: Skip | None = None) -> OperationResult:
        cmd = cmd or Skip()
        return self._milestone_event(milestone_id, "skip", cmd, notes=cmd.reason)

    def _milestone_event(self, milestone_id, event, cmd, notes=None):
        workflow_id = self.repository.get_milestone(milestone_id).stage.workflow_id

        def mutate(uow):
            workflow = self.repository.get_workflow(workflow_id, for_update=True)
            milestone = self.repository.get_milestone(milestone_id)
            stage = milestone.stage
            self._require_open_workflow(workflow, "milestone", milestone.id, event, milestone.status)

            transition = resolve("milestone", milestone.id, milestone.status, event)
            old = milestone.status
            milestone.status = transition.to
            if STAMP_END in transition.effects:
                milestone.completed_at = uow.now
                milestone.completed_by = uow.actor.id
            if notes is not None:
                milestone.completion_notes = notes

            verb = {"start": "started", "complete": "completed", "skip": "skipped"}[event]
            uow.record(
                transition.activity, f"Milestone '{milestone.name}' {verb}", workflow,
                stage=stage, milestone=milestone,
                field_changed="status", old_value=old, new_value=transition.to,
            )
            return milestone, workflow

        return self._execute(workflow_id, mutate, cmd.actor)

    def add_milestone(self, stage_id: str, cmd: AddMilestone) -> OperationResult:
        """Append a milestone to a stage at the next free position."""
        workflow_id = self.repository.get_stage(stage_id).workflow_id

        def mutate(uow):
            workflow = self.repository.get_workflow(workflow_id, for_update=True)
            stage = self.repository.get_stage(stage_id)
            self._require_open_workflow(workflow, "stage", stage.id, "add_milestone", stage.status)
            if stage.status in STAGE_TERMINAL_STATUSES:
                raise InvalidTransitionError("stage", stage.id, "add_milestone", stage.status,
                                             reason="stage is already finished")

            milestone = WorkflowMilestone(
                id=str(uuid.uuid4()),
                name=cmd.name,
                description=cmd.description,
                due_date=cmd.due_date,
                milestone_order=self.repository.next_milestone_order(stage.id),
                status="pending",
            )
            stage.milestones.append(milestone)
            uow.record("milestone_added", f"Milestone '{cmd.name}' added to stage '{stage.name}'",
                       workflow, stage=stage, milestone=milestone)
            return milestone, workflow

        return self._execute(workflow_id, mutate, cmd.actor)

    # ── Edits ────────────────────────────────────────────────────────────

    def reassign_workflow_owner(self, workflow_id: str, cmd: ReassignOwner) -> OperationResult:
        def mutate(uow):
            workflow = self.repository.get_workflow(workflow_id, for_update=True)
            self._require_open_workflow(workflow, "workflow", workflow.id, "reassign_owner", workflow.status)
            old = workflow.owner_name
            workflow.owner_id = cmd.owner_id
            workflow.owner_name = cmd.owner_name
            uow.record("owner_changed", f"Owner changed to {cmd.owner_name}", workflow,
                       field_changed="owner", old_value=old, new_value=cmd.owner_name)
            return workflow, workflow

        return self._execute(workflow_id, mutate, cmd.actor)

    def reassign_stage_owner(self, stage_id: str, cmd: ReassignOwner) -> OperationResult:
        workflow_id = self.repository.get_stage(stage_id).workflow_id

        def mutate(uow):
            workflow = self.repository.get_workflow(workflow_id, for_update=True)
            stage = self.repository.get_stage(stage_id)
            self._require_open_workflow(workflow, "stage", stage.id, "reassign_owner", stage.status)
            old = stage.owner_name
            stage.owner_id = cmd.owner_id
            stage.owner_name = cmd.owner_name
            uow.record("owner_changed", f"Owner changed to {cmd.owner_name}", workflow, stage=stage,
                       field_changed="owner", old_value=old, new_value=cmd.owner_name)
            return stage, workflow

        return self._execute(workflow_id, mutate, cmd.actor)

    def update_notes(self, workflow_id: str, cmd: UpdateNotes) -> OperationResult:
        def mutate(uow):
            workflow = self.repository.get_workflow(workflow_id, for_update=True)
            self._require_open_workflow(workflow, "workflow", workflow.id, "update_notes", workflow.status)
            old = workflow.notes
            workflow.notes = cmd.notes or None
            uow.record("note_added", "Notes updated", workflow,
                       field_changed="notes", old_value=old, new_value=workflow.notes)
            return workflow, workflow

        return self._execute(workflow_id, mutate, cmd.actor)

    def reschedule(self, workflow_id: str, cmd: Reschedule) -> OperationResult:
        """Move the planned start and re-chain every stage's planned window."""
        def mutate(uow):
            workflow = self.repository.get_workflow(workflow_id, for_update=True)
            self._require_open_workflow(workflow, "workflow", workflow.id, "reschedule", workflow.status)

            specs = [StageSpec(s.name, s.target_days, order=s.stage_order) for s in workflow.stages]
            scheduled = schedule_stages(cmd.planned_start_date, specs)
            for stage, spec in zip(workflow.stages, scheduled):
                stage.planned_start_date = spec.planned_start_date
                stage.planned_end_date = spec.planned_end_date

            old = workflow.planned_start_date
            workflow.planned_start_date = cmd.planned_start_date
            workflow.planned_end_date = planned_end_of(scheduled)
            uow.record("date_changed", f"Planned start moved to {cmd.planned_start_date.isoformat()}",
                       workflow, field_changed="planned_start_date",
                       old_value=_iso(old), new_value=_iso(cmd.planned_start_date))
            return workflow, workflow

        return self._execute(workflow_id, mutate, cmd.actor)

    # ── Reads ────────────────────────────────────────────────────────────

    def get_workflow(self, workflow_id: str) -> Workflow:
        return self.repository.get_workflow(workflow_id)

    def get_workflows_for_project(self, evaluation_project_id: str) -> list[Workflow]:
        return self.repository.list_for_project(evaluation_project_id)

    def list_templates(self, procurement_type: str | None = None):
        return self.templates.list_templates(procurement_type)

    def get_activity_log(self, workflow_id: str, limit: int = 50):
        """Newest-first history of a workflow and everything inside it."""
        self.repository.get_workflow(workflow_id)
        return self.activity_log.history(workflow_id, limit)

    def get_timeline(self, workflow_id: str) -> dict:
        """Planned vs actual windows per stage, for Gantt-style rendering."""
        workflow = self.repository.get_workflow(workflow_id)
        today = self.now().date()

        stages = []
        for stage in workflow.stages:
            variance = None
            if stage.actual_end_date and stage.planned_end_date:
                variance = (stage.actual_end_date - stage.planned_end_date).days
            stages.append({
                "id": stage.id,
                "name": stage.name,
                "order": stage.stage_order,
                "status": stage.status,
                "owner_name": stage.owner_name,
                "planned_start_date": _iso(stage.planned_start_date),
                "planned_end_date": _iso(stage.planned_end_date),
                "actual_start_date": _iso(stage.actual_start_date),
                "actual_end_date": _iso(stage.actual_end_date),
                "is_overdue": bool(
                    stage.planned_end_date
                    and stage.planned_end_date <= today
                    and stage.status not in STAGE_TERMINAL_STATUSES
                ),
                "variance_days": variance,
                "milestones": [
                    {"id": m.id, "name": m.name, "status": m.status, "due_date": _iso(m.due_date)}
                    for m in stage.milestones
                ],
            })

        return {
            "workflow": {
                "id": workflow.id,
                "name": workflow.name,
                "status": workflow.status,
                "planned_start_date": _iso(workflow.planned_start_date),
                "planned_end_date": _iso(workflow.planned_end_date),
                "actual_start_date": _iso(workflow.actual_start_date),
                "actual_end_date": _iso(workflow.actual_end_date),
                "progress_percent": workflow.progress_percent,
            },
            "stages": stages,
            "today": today.isoformat(),
        }

    def get_dashboard(self, evaluation_project_id: str, today=None) -> dict:
        workflows = self.repository.list_for_project(evaluation_project_id)
        summary = compute_dashboard(
            workflows,
            today=today or self.now().date(),
            upcoming_limit=self.upcoming_limit,
            at_risk_days=self.at_risk_days,
            at_risk_progress=self.at_risk_progress,
        )
        summary["evaluation_project_id"] = evaluation_project_id
        summary["workflows"] = [w.to_dict() for w in workflows]
        return summary

    # ═════════════════════════════════════════════════════════════════════
    # Internals
    # ═════════════════════════════════════════════════════════════════════

    def _execute(self, workflow_id, mutate, actor) -> OperationResult:
        """Run *mutate* under the workflow lock, retrying stale versions."""
        # Unknown ids fail here with NotFoundError, before any lock is taken.
        self.repository.get_workflow(workflow_id)
        attempt = 0
        while True:
            attempt += 1
            uow = _UnitOfWork(actor, self.now())
            with self.locks.hold(workflow_id):
                try:
                    entity, workflow = mutate(uow)
                    workflow.updated_at = uow.now
                    flag_modified(workflow, "updated_at")
                    self.repository.commit(workflow_id)
                except ConcurrencyConflictError:
                    if attempt >= self.conflict_retries:
                        logger.warning(
                            "Giving up on workflow %s after %d conflicting attempts",
                            workflow_id, attempt, extra={"workflow_id": workflow_id},
                        )
                        raise ConcurrencyConflictError(workflow_id, attempts=attempt) from None
                except Exception:
                    self.repository.rollback()
                    raise
                else:
                    return self._finish(uow, entity, workflow)
            time.sleep(min(self.retry_backoff * (2 ** (attempt - 1)), 1.0))

    def _finish(self, uow, entity, workflow) -> OperationResult:
        degraded = not self.activity_log.append(uow.records, uow.actor, performed_at=uow.now)
        warnings = list(uow.warnings)
        if degraded:
            warnings.append(AUDIT_DEGRADED_WARNING)

        activities = [r.activity_type for r in uow.records]
        if activities:
            logger.info(
                "Workflow %s: %s", workflow.id, ", ".join(activities),
                extra={"workflow_id": workflow.id, "event_type": activities[0]},
            )
        for event in uow.events:
            self.events.publish(event)

        return OperationResult(
            entity=entity,
            workflow=workflow,
            activities=activities,
            warnings=warnings,
            audit_degraded=degraded,
        )

    @staticmethod
    def _require_open_workflow(workflow, entity, entity_id, event, status):
        if workflow.status in WORKFLOW_TERMINAL_STATUSES:
            raise InvalidTransitionError(entity, entity_id, event, status,
                                         reason=f"workflow is {workflow.status}")

    def _apply_workflow(self, workflow, event, uow, *, reason=None, notes=None, description=None):
        transition = resolve("workflow", workflow.id, workflow.status, event)
        if event == "start" and not any(s.status == "pending" for s in workflow.stages):
            raise ValidationError("Workflow has no pending stage to start")

        old = workflow.status
        workflow.status = transition.to
        for effect in transition.effects:
            if effect == SET_BLOCK:
                workflow.blocked_reason = reason
                workflow.blocked_since = uow.now
            elif effect == CLEAR_BLOCK:
                workflow.blocked_reason = None
                workflow.blocked_since = None
            elif effect == STAMP_START and workflow.actual_start_date is None:
                workflow.actual_start_date = uow.today
            elif effect == STAMP_END:
                workflow.actual_end_date = uow.today

        if description is None:
            description = {
                "start": "Workflow started",
                "complete": "Workflow completed",
                "block": "Workflow blocked",
                "unblock": "Workflow unblocked",
                "cancel": "Workflow cancelled",
            }.get(event, f"Workflow {transition.to}")
            detail = reason or notes
            if detail:
                description = f"{description}: {detail}"
        uow.record(transition.activity, description, workflow,
                   field_changed="status", old_value=old, new_value=transition.to)

        if EMIT in transition.effects:
            uow.emit(transition.activity, workflow, reason=reason)
        if ADVANCE in transition.effects:
            self._advance(workflow, uow)

    def _apply_stage(self, workflow, stage, event, uow, *, reason=None, notes=None):
        self._require_open_workflow(workflow, "stage", stage.id, event, stage.status)
        transition = resolve("stage", stage.id, stage.status, event)
        if event == "start":
            self._check_stage_startable(workflow, stage)
        elif event == "complete":
            self._check_open_milestones(stage, uow)

        old = stage.status
        stage.status = transition.to
        for effect in transition.effects:
            if effect == SET_BLOCK:
                stage.blocked_reason = reason
                stage.blocked_since = uow.now
            elif effect == CLEAR_BLOCK:
                stage.blocked_reason = None
                stage.blocked_since = None
            elif effect == STAMP_START and stage.actual_start_date is None:
                stage.actual_start_date = uow.today
            elif effect == STAMP_END:
                stage.actual_end_date = uow.today
                stage.completed_at = uow.now
                stage.completed_by = uow.actor.id
                stage.completion_notes = notes
        if event == "skip":
            stage.completion_notes = reason

        verb = {
            "start": "started", "complete": "completed", "skip": "skipped",
            "block": "blocked", "unblock": "unblocked",
        }[event]
        description = f"Stage '{stage.name}' {verb}"
        if reason or notes:
            description = f"{description}: {reason or notes}"
        uow.record(transition.activity, description, workflow, stage=stage,
                   field_changed="status", old_value=old, new_value=transition.to)

        if EMIT in transition.effects:
            uow.emit(transition.activity, workflow, stage=stage, reason=reason)
        if ADVANCE in transition.effects:
            self._advance(workflow, uow)

    def _advance(self, workflow, uow):
        action, next_stage = plan_cascade(workflow.status, workflow.stages)
        if action == CASCADE_START_STAGE:
            self._apply_stage(workflow, next_stage, "start", uow)
        elif action == CASCADE_COMPLETE_WORKFLOW:
            self._apply_workflow(workflow, "stages_done", uow,
                                 description="Workflow completed: all stages finished")

    @staticmethod
    def _check_stage_startable(workflow, stage):
        if workflow.status not in ("in_progress", "blocked"):
            raise InvalidTransitionError("stage", stage.id, "start", stage.status,
                                         reason=f"workflow is {workflow.status}")
        for other in workflow.stages:
            if other.id == stage.id:
                continue
            if other.status in STAGE_ACTIVE_STATUSES:
                raise InvalidTransitionError("stage", stage.id, "start", stage.status,
                                             reason=f"stage '{other.name}' is still {other.status}")
            if other.stage_order < stage.stage_order and other.status not in STAGE_TERMINAL_STATUSES:
                raise InvalidTransitionError("stage", stage.id, "start", stage.status,
                                             reason=f"earlier stage '{other.name}' is not finished")

    def _check_open_milestones(self, stage, uow):
        open_milestones = stage.open_milestones
        if not open_milestones:
            return
        if self.enforce_milestones:
            raise ValidationError(
                f"Stage '{stage.name}' has {len(open_milestones)} open milestone(s)",
                details={"open_milestones": [m.name for m in open_milestones]},
            )
        message = f"Stage '{stage.name}' completed with {len(open_milestones)} open milestone(s)"
        uow.warnings.append(message)
        logger.warning(message, extra={"workflow_id": stage.workflow_id, "stage_id": stage.id})
