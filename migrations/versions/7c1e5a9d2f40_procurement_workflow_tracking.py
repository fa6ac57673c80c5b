"""procurement_workflow_tracking

Creates the procurement workflow tables:
  - procurement_workflow_templates  — reusable stage blueprints per procurement type
  - procurement_workflows           — one live workflow per (evaluation project, vendor)
  - procurement_workflow_stages     — ordered stages, copied from the template
  - workflow_milestones             — checklist items inside a stage
  - workflow_activity_log           — append-only audit trail

Tables created conditionally (IF NOT EXISTS semantics) to support idempotent
execution against databases that already received these tables via db.create_all()
in a development environment.

Revision ID: 7c1e5a9d2f40
Revises:
Create Date: 2026-01-09 00:13:00.000000
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = '7c1e5a9d2f40'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing = set(inspector.get_table_names())

    # ── Templates ─────────────────────────────────────────────────────────
    if "procurement_workflow_templates" not in existing:
        op.create_table(
            "procurement_workflow_templates",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("procurement_type", sa.String(length=50), nullable=False,
                      comment="software | services | hardware | saas | consulting | managed_services | custom"),
            sa.Column("stages", sa.JSON(), nullable=False),
            sa.Column("is_default", sa.Boolean(), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=False),
            sa.Column("created_by", sa.String(length=36), nullable=True),
            *_timestamps(),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("idx_workflow_templates_type", "procurement_workflow_templates",
                        ["procurement_type", "is_active"])

    # ── Workflows ─────────────────────────────────────────────────────────
    if "procurement_workflows" not in existing:
        op.create_table(
            "procurement_workflows",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("evaluation_project_id", sa.String(length=36), nullable=False),
            sa.Column("vendor_id", sa.String(length=36), nullable=False),
            sa.Column("template_id", sa.String(length=36), nullable=True),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("status", sa.String(length=30), nullable=False),
            sa.Column("planned_start_date", sa.Date(), nullable=True),
            sa.Column("planned_end_date", sa.Date(), nullable=True),
            sa.Column("actual_start_date", sa.Date(), nullable=True),
            sa.Column("actual_end_date", sa.Date(), nullable=True),
            sa.Column("blocked_reason", sa.Text(), nullable=True),
            sa.Column("blocked_since", sa.DateTime(timezone=True), nullable=True),
            sa.Column("owner_id", sa.String(length=36), nullable=True),
            sa.Column("owner_name", sa.String(length=255), nullable=True),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("version", sa.Integer(), nullable=False),
            sa.Column("created_by", sa.String(length=36), nullable=True),
            *_timestamps(),
            sa.CheckConstraint(
                "status IN ('not_started','in_progress','blocked','completed','cancelled')",
                name="ck_procurement_workflow_status",
            ),
            sa.ForeignKeyConstraint(["template_id"], ["procurement_workflow_templates.id"],
                                    ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("idx_workflows_project", "procurement_workflows", ["evaluation_project_id"])
        op.create_index("idx_workflows_vendor", "procurement_workflows", ["vendor_id"])
        op.create_index(
            "uq_workflows_live_project_vendor", "procurement_workflows",
            ["evaluation_project_id", "vendor_id"], unique=True,
            postgresql_where=sa.text("status <> 'cancelled'"),
            sqlite_where=sa.text("status <> 'cancelled'"),
        )

    # ── Stages ────────────────────────────────────────────────────────────
    if "procurement_workflow_stages" not in existing:
        op.create_table(
            "procurement_workflow_stages",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("workflow_id", sa.String(length=36), nullable=False),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("stage_order", sa.Integer(), nullable=False),
            sa.Column("target_days", sa.Integer(), nullable=True),
            sa.Column("planned_start_date", sa.Date(), nullable=True),
            sa.Column("planned_end_date", sa.Date(), nullable=True),
            sa.Column("actual_start_date", sa.Date(), nullable=True),
            sa.Column("actual_end_date", sa.Date(), nullable=True),
            sa.Column("status", sa.String(length=30), nullable=False),
            sa.Column("blocked_reason", sa.Text(), nullable=True),
            sa.Column("blocked_since", sa.DateTime(timezone=True), nullable=True),
            sa.Column("owner_id", sa.String(length=36), nullable=True),
            sa.Column("owner_name", sa.String(length=255), nullable=True),
            sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("completed_by", sa.String(length=36), nullable=True),
            sa.Column("completion_notes", sa.Text(), nullable=True),
            *_timestamps(),
            sa.CheckConstraint(
                "status IN ('pending','in_progress','blocked','completed','skipped')",
                name="ck_procurement_workflow_stage_status",
            ),
            sa.ForeignKeyConstraint(["workflow_id"], ["procurement_workflows.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("workflow_id", "stage_order", name="uq_stage_workflow_order"),
        )
        op.create_index("ix_procurement_workflow_stages_workflow_id",
                        "procurement_workflow_stages", ["workflow_id"])
        op.create_index("idx_stages_workflow_status", "procurement_workflow_stages",
                        ["workflow_id", "status"])

    # ── Milestones ────────────────────────────────────────────────────────
    if "workflow_milestones" not in existing:
        op.create_table(
            "workflow_milestones",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("stage_id", sa.String(length=36), nullable=False),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("milestone_order", sa.Integer(), nullable=False),
            sa.Column("status", sa.String(length=30), nullable=False),
            sa.Column("due_date", sa.Date(), nullable=True),
            sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("completed_by", sa.String(length=36), nullable=True),
            sa.Column("completion_notes", sa.Text(), nullable=True),
            *_timestamps(),
            sa.CheckConstraint(
                "status IN ('pending','in_progress','completed','skipped')",
                name="ck_workflow_milestone_status",
            ),
            sa.ForeignKeyConstraint(["stage_id"], ["procurement_workflow_stages.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("stage_id", "milestone_order", name="uq_milestone_stage_order"),
        )
        op.create_index("ix_workflow_milestones_stage_id", "workflow_milestones", ["stage_id"])

    # ── Activity log ──────────────────────────────────────────────────────
    if "workflow_activity_log" not in existing:
        op.create_table(
            "workflow_activity_log",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("workflow_id", sa.String(length=36), nullable=True),
            sa.Column("stage_id", sa.String(length=36), nullable=True),
            sa.Column("milestone_id", sa.String(length=36), nullable=True),
            sa.Column("activity_type", sa.String(length=50), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("field_changed", sa.String(length=100), nullable=True),
            sa.Column("old_value", sa.Text(), nullable=True),
            sa.Column("new_value", sa.Text(), nullable=True),
            sa.Column("performed_by", sa.String(length=36), nullable=True),
            sa.Column("performed_by_name", sa.String(length=255), nullable=False),
            sa.Column("performed_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("sequence", sa.BigInteger(), nullable=False),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("idx_activity_workflow_time", "workflow_activity_log",
                        ["workflow_id", "performed_at"])
        op.create_index("idx_activity_stage", "workflow_activity_log", ["stage_id"])
        op.create_index("idx_activity_type", "workflow_activity_log", ["activity_type"])


def downgrade():
    op.drop_table("workflow_activity_log")
    op.drop_table("workflow_milestones")
    op.drop_table("procurement_workflow_stages")
    op.drop_table("procurement_workflows")
    op.drop_table("procurement_workflow_templates")
