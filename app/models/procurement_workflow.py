"""
Procurement Workflow Platform
Procurement workflow domain models.

Models:
    - WorkflowTemplate:     reusable blueprint of ordered stages + milestone names
    - Workflow:             one vendor's post-selection process for one evaluation project
    - WorkflowStage:        ordered phase of a workflow (e.g. "Contract Negotiation")
    - WorkflowMilestone:    checklist item within a stage (informational, non-gating)
    - WorkflowActivityLog:  immutable, append-only trail of every workflow mutation

Architecture:
    WorkflowTemplate ··copy-on-instantiate··▶ Workflow
    Workflow ──1:N──▶ WorkflowStage ──1:N──▶ WorkflowMilestone
    Workflow / WorkflowStage / WorkflowMilestone ──1:N──▶ WorkflowActivityLog

Lifecycle states:
    Workflow:   not_started → in_progress ⇄ blocked → completed
                not_started | in_progress | blocked → cancelled
    Stage:      pending → in_progress ⇄ blocked, in_progress → completed
                pending | in_progress → skipped
    Milestone:  pending → in_progress → completed,  pending | in_progress → skipped
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import event

from app.core.exceptions import ImmutableRecordError
from app.models import db


# ── Helpers ──────────────────────────────────────────────────────────────────

def _uuid():
    return str(uuid.uuid4())


def _utcnow():
    return datetime.now(timezone.utc)


def _iso(value):
    return value.isoformat() if value else None


# ── Constants ────────────────────────────────────────────────────────────────

PROCUREMENT_TYPES = {
    "software", "services", "hardware", "saas",
    "consulting", "managed_services", "custom",
}

WORKFLOW_STATUSES = {
    "not_started", "in_progress", "blocked", "completed", "cancelled",
}

STAGE_STATUSES = {
    "pending", "in_progress", "blocked", "completed", "skipped",
}

MILESTONE_STATUSES = {
    "pending", "in_progress", "completed", "skipped",
}

WORKFLOW_TERMINAL_STATUSES = {"completed", "cancelled"}
STAGE_TERMINAL_STATUSES = {"completed", "skipped"}
STAGE_ACTIVE_STATUSES = {"in_progress", "blocked"}
MILESTONE_OPEN_STATUSES = {"pending", "in_progress"}

ACTIVITY_TYPES = {
    "workflow_created",
    "workflow_started",
    "workflow_completed",
    "workflow_cancelled",
    "workflow_blocked",
    "workflow_unblocked",
    "stage_started",
    "stage_completed",
    "stage_blocked",
    "stage_unblocked",
    "stage_skipped",
    "milestone_started",
    "milestone_completed",
    "milestone_skipped",
    "milestone_added",
    "owner_changed",
    "note_added",
    "date_changed",
}


# ═════════════════════════════════════════════════════════════════════════════
# 1. WorkflowTemplate
# ═════════════════════════════════════════════════════════════════════════════


class WorkflowTemplate(db.Model):
    """
    Pre-configured workflow blueprint for a procurement type.

    ``stages`` is a JSON list of
    ``{"name", "description", "order", "target_days", "milestones": [str]}``.
    Workflows copy these definitions into their own rows on instantiation,
    so later template edits never reach existing workflows.
    """

    __tablename__ = "procurement_workflow_templates"
    __table_args__ = (
        db.Index("idx_workflow_templates_type", "procurement_type", "is_active"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    procurement_type = db.Column(
        db.String(50), nullable=False, default="custom",
        comment="software | services | hardware | saas | consulting | managed_services | custom",
    )
    stages = db.Column(db.JSON, nullable=False, default=list)
    is_default = db.Column(db.Boolean, nullable=False, default=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_by = db.Column(db.String(36), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=_utcnow, onupdate=_utcnow,
    )

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "procurement_type": self.procurement_type,
            "stages": sorted(self.stages or [], key=lambda s: s.get("order") or 0),
            "stage_count": len(self.stages or []),
            "is_default": self.is_default,
            "is_active": self.is_active,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<WorkflowTemplate {self.id[:8]}: {self.name} [{self.procurement_type}]>"


# ═════════════════════════════════════════════════════════════════════════════
# 2. Workflow
# ═════════════════════════════════════════════════════════════════════════════


class Workflow(db.Model):
    """
    One vendor's procurement workflow within an evaluation project.

    At most one non-cancelled workflow may exist per
    (evaluation_project_id, vendor_id); the partial unique index backs the
    engine-level check.  ``version`` is the optimistic-concurrency counter:
    every flush bumps it and a stale UPDATE raises ``StaleDataError``.
    """

    __tablename__ = "procurement_workflows"
    __table_args__ = (
        db.Index("idx_workflows_project", "evaluation_project_id"),
        db.Index("idx_workflows_vendor", "vendor_id"),
        db.Index(
            "uq_workflows_live_project_vendor",
            "evaluation_project_id", "vendor_id",
            unique=True,
            postgresql_where=db.text("status <> 'cancelled'"),
            sqlite_where=db.text("status <> 'cancelled'"),
        ),
        db.CheckConstraint(
            "status IN ('not_started','in_progress','blocked','completed','cancelled')",
            name="ck_procurement_workflow_status",
        ),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    evaluation_project_id = db.Column(db.String(36), nullable=False)
    vendor_id = db.Column(db.String(36), nullable=False)
    template_id = db.Column(
        db.String(36),
        db.ForeignKey("procurement_workflow_templates.id", ondelete="SET NULL"),
        nullable=True,
    )

    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(30), nullable=False, default="not_started")

    # Timeline
    planned_start_date = db.Column(db.Date, nullable=True)
    planned_end_date = db.Column(db.Date, nullable=True)
    actual_start_date = db.Column(db.Date, nullable=True)
    actual_end_date = db.Column(db.Date, nullable=True)

    # Blocking
    blocked_reason = db.Column(db.Text, nullable=True)
    blocked_since = db.Column(db.DateTime(timezone=True), nullable=True)

    # Ownership
    owner_id = db.Column(db.String(36), nullable=True)
    owner_name = db.Column(db.String(255), nullable=True)

    notes = db.Column(db.Text, nullable=True)

    version = db.Column(db.Integer, nullable=False, default=1)

    created_by = db.Column(db.String(36), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=_utcnow, onupdate=_utcnow,
    )

    __mapper_args__ = {"version_id_col": version}

    # ── Relationships ────────────────────────────────────────────────────
    stages = db.relationship(
        "WorkflowStage", backref="workflow",
        cascade="all, delete-orphan", order_by="WorkflowStage.stage_order",
    )
    template = db.relationship("WorkflowTemplate")

    # ── Derived progress ─────────────────────────────────────────────────

    @property
    def total_stages(self) -> int:
        return sum(1 for s in self.stages if s.status != "skipped")

    @property
    def completed_stages(self) -> int:
        return sum(1 for s in self.stages if s.status == "completed")

    @property
    def progress_percent(self) -> float:
        total = self.total_stages
        if total == 0:
            return 0.0
        return round(self.completed_stages / total * 100, 2)

    @property
    def active_stage(self):
        """The stage currently in_progress or blocked, if any."""
        for stage in self.stages:
            if stage.status in STAGE_ACTIVE_STATUSES:
                return stage
        return None

    def to_dict(self, include_children=False):
        result = {
            "id": self.id,
            "evaluation_project_id": self.evaluation_project_id,
            "vendor_id": self.vendor_id,
            "template_id": self.template_id,
            "name": self.name,
            "description": self.description,
            "status": self.status,
            "planned_start_date": _iso(self.planned_start_date),
            "planned_end_date": _iso(self.planned_end_date),
            "actual_start_date": _iso(self.actual_start_date),
            "actual_end_date": _iso(self.actual_end_date),
            "blocked_reason": self.blocked_reason,
            "blocked_since": _iso(self.blocked_since),
            "owner_id": self.owner_id,
            "owner_name": self.owner_name,
            "notes": self.notes,
            "version": self.version,
            "total_stages": self.total_stages,
            "completed_stages": self.completed_stages,
            "progress_percent": self.progress_percent,
            "created_by": self.created_by,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
        if include_children:
            result["stages"] = [s.to_dict(include_children=True) for s in self.stages]
        return result

    def __repr__(self):
        return f"<Workflow {self.id[:8]}: {self.name} [{self.status}]>"


# ═════════════════════════════════════════════════════════════════════════════
# 3. WorkflowStage
# ═════════════════════════════════════════════════════════════════════════════


class WorkflowStage(db.Model):
    """
    Ordered phase of a workflow.  ``stage_order`` is 1-based, contiguous and
    unique per workflow; it is fixed at creation and never reordered.
    """

    __tablename__ = "procurement_workflow_stages"
    __table_args__ = (
        db.UniqueConstraint("workflow_id", "stage_order", name="uq_stage_workflow_order"),
        db.Index("idx_stages_workflow_status", "workflow_id", "status"),
        db.CheckConstraint(
            "status IN ('pending','in_progress','blocked','completed','skipped')",
            name="ck_procurement_workflow_stage_status",
        ),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    workflow_id = db.Column(
        db.String(36),
        db.ForeignKey("procurement_workflows.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )

    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    stage_order = db.Column(db.Integer, nullable=False)

    # Timeline
    target_days = db.Column(db.Integer, nullable=True)
    planned_start_date = db.Column(db.Date, nullable=True)
    planned_end_date = db.Column(db.Date, nullable=True)
    actual_start_date = db.Column(db.Date, nullable=True)
    actual_end_date = db.Column(db.Date, nullable=True)

    status = db.Column(db.String(30), nullable=False, default="pending")

    blocked_reason = db.Column(db.Text, nullable=True)
    blocked_since = db.Column(db.DateTime(timezone=True), nullable=True)

    owner_id = db.Column(db.String(36), nullable=True)
    owner_name = db.Column(db.String(255), nullable=True)

    # Completion
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_by = db.Column(db.String(36), nullable=True)
    completion_notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=_utcnow, onupdate=_utcnow,
    )

    milestones = db.relationship(
        "WorkflowMilestone", backref="stage",
        cascade="all, delete-orphan", order_by="WorkflowMilestone.milestone_order",
    )

    @property
    def total_milestones(self) -> int:
        return sum(1 for m in self.milestones if m.status != "skipped")

    @property
    def completed_milestones(self) -> int:
        return sum(1 for m in self.milestones if m.status == "completed")

    @property
    def open_milestones(self) -> list:
        return [m for m in self.milestones if m.status in MILESTONE_OPEN_STATUSES]

    def to_dict(self, include_children=False):
        result = {
            "id": self.id,
            "workflow_id": self.workflow_id,
            "name": self.name,
            "description": self.description,
            "order": self.stage_order,
            "target_days": self.target_days,
            "planned_start_date": _iso(self.planned_start_date),
            "planned_end_date": _iso(self.planned_end_date),
            "actual_start_date": _iso(self.actual_start_date),
            "actual_end_date": _iso(self.actual_end_date),
            "status": self.status,
            "blocked_reason": self.blocked_reason,
            "blocked_since": _iso(self.blocked_since),
            "owner_id": self.owner_id,
            "owner_name": self.owner_name,
            "completed_at": _iso(self.completed_at),
            "completed_by": self.completed_by,
            "completion_notes": self.completion_notes,
            "total_milestones": self.total_milestones,
            "completed_milestones": self.completed_milestones,
        }
        if include_children:
            result["milestones"] = [m.to_dict() for m in self.milestones]
        return result

    def __repr__(self):
        return f"<WorkflowStage {self.stage_order}: {self.name} [{self.status}]>"


# ═════════════════════════════════════════════════════════════════════════════
# 4. WorkflowMilestone
# ═════════════════════════════════════════════════════════════════════════════


class WorkflowMilestone(db.Model):
    """Checklist item within a stage.  Its status never drives stage transitions."""

    __tablename__ = "workflow_milestones"
    __table_args__ = (
        db.UniqueConstraint("stage_id", "milestone_order", name="uq_milestone_stage_order"),
        db.CheckConstraint(
            "status IN ('pending','in_progress','completed','skipped')",
            name="ck_workflow_milestone_status",
        ),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    stage_id = db.Column(
        db.String(36),
        db.ForeignKey("procurement_workflow_stages.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )

    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    milestone_order = db.Column(db.Integer, nullable=False, default=1)
    status = db.Column(db.String(30), nullable=False, default="pending")
    due_date = db.Column(db.Date, nullable=True)

    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_by = db.Column(db.String(36), nullable=True)
    completion_notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=_utcnow, onupdate=_utcnow,
    )

    def to_dict(self):
        return {
            "id": self.id,
            "stage_id": self.stage_id,
            "name": self.name,
            "description": self.description,
            "order": self.milestone_order,
            "status": self.status,
            "due_date": _iso(self.due_date),
            "completed_at": _iso(self.completed_at),
            "completed_by": self.completed_by,
            "completion_notes": self.completion_notes,
        }

    def __repr__(self):
        return f"<WorkflowMilestone {self.milestone_order}: {self.name} [{self.status}]>"


# ═════════════════════════════════════════════════════════════════════════════
# 5. WorkflowActivityLog
# ═════════════════════════════════════════════════════════════════════════════


class WorkflowActivityLog(db.Model):
    """
    Immutable audit trail — one row per workflow mutation.

    Subject references are weak (no FK): entries outlive nothing in
    practice, but the log must never block or cascade with its subject.
    Stage and milestone entries also carry the owning workflow_id.
    """

    __tablename__ = "workflow_activity_log"
    __table_args__ = (
        db.Index("idx_activity_workflow_time", "workflow_id", "performed_at"),
        db.Index("idx_activity_stage", "stage_id"),
        db.Index("idx_activity_type", "activity_type"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    workflow_id = db.Column(db.String(36), nullable=True)
    stage_id = db.Column(db.String(36), nullable=True)
    milestone_id = db.Column(db.String(36), nullable=True)

    activity_type = db.Column(
        db.String(50), nullable=False,
        comment="workflow_created | stage_completed | milestone_skipped | …",
    )
    description = db.Column(db.Text, nullable=True)

    field_changed = db.Column(db.String(100), nullable=True)
    old_value = db.Column(db.Text, nullable=True)
    new_value = db.Column(db.Text, nullable=True)

    performed_by = db.Column(db.String(36), nullable=True)
    performed_by_name = db.Column(db.String(255), nullable=False, default="System")
    performed_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    # Monotonic tiebreaker for entries written in the same instant
    sequence = db.Column(db.BigInteger, nullable=False, default=0)

    def to_dict(self):
        return {
            "id": self.id,
            "workflow_id": self.workflow_id,
            "stage_id": self.stage_id,
            "milestone_id": self.milestone_id,
            "activity_type": self.activity_type,
            "description": self.description,
            "field_changed": self.field_changed,
            "old_value": self.old_value,
            "new_value": self.new_value,
            "performed_by": self.performed_by,
            "performed_by_name": self.performed_by_name,
            "performed_at": _iso(self.performed_at),
        }

    def __repr__(self):
        return f"<WorkflowActivityLog {self.activity_type} wf={self.workflow_id}>"


@event.listens_for(WorkflowActivityLog, "before_update")
def _reject_activity_update(mapper, connection, target):
    raise ImmutableRecordError(f"WorkflowActivityLog {target.id} is append-only")


@event.listens_for(WorkflowActivityLog, "before_delete")
def _reject_activity_delete(mapper, connection, target):
    raise ImmutableRecordError(f"WorkflowActivityLog {target.id} cannot be deleted")
