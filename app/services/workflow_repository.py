"""
Procurement Workflow — persistence gateway.

Thin SQLAlchemy layer used by the engine.  Loads always re-read the row
(``populate_existing``) so a retried read-modify-write sees the latest
committed version, and ``commit`` turns the ORM's optimistic-lock failure
into ``ConcurrencyConflictError``.
"""

import logging

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from app.core.exceptions import ConcurrencyConflictError, NotFoundError
from app.models import db
from app.models.procurement_workflow import (
    Workflow,
    WorkflowMilestone,
    WorkflowStage,
)

logger = logging.getLogger(__name__)


class WorkflowRepository:

    # ── Loads ────────────────────────────────────────────────────────────

    def get_workflow(self, workflow_id, *, for_update=False):
        workflow = db.session.get(
            Workflow, workflow_id,
            populate_existing=True, with_for_update=for_update or None,
        )
        if workflow is None:
            raise NotFoundError(resource="Workflow", resource_id=workflow_id)
        return workflow

    def get_stage(self, stage_id):
        stage = db.session.get(WorkflowStage, stage_id, populate_existing=True)
        if stage is None:
            raise NotFoundError(resource="WorkflowStage", resource_id=stage_id)
        return stage

    def get_milestone(self, milestone_id):
        milestone = db.session.get(WorkflowMilestone, milestone_id, populate_existing=True)
        if milestone is None:
            raise NotFoundError(resource="WorkflowMilestone", resource_id=milestone_id)
        return milestone

    def find_live_workflow(self, evaluation_project_id, vendor_id):
        """The non-cancelled workflow for a project/vendor pair, if any."""
        stmt = select(Workflow).where(
            Workflow.evaluation_project_id == evaluation_project_id,
            Workflow.vendor_id == vendor_id,
            Workflow.status != "cancelled",
        )
        return db.session.execute(stmt).scalars().first()

    def list_for_project(self, evaluation_project_id):
        stmt = (
            select(Workflow)
            .where(Workflow.evaluation_project_id == evaluation_project_id)
            .order_by(Workflow.created_at.desc(), Workflow.id)
        )
        return list(db.session.execute(stmt).scalars())

    def next_milestone_order(self, stage_id) -> int:
        current = db.session.execute(
            select(func.max(WorkflowMilestone.milestone_order))
            .where(WorkflowMilestone.stage_id == stage_id)
        ).scalar()
        return (current or 0) + 1

    # ── Writes ───────────────────────────────────────────────────────────

    def add(self, obj):
        db.session.add(obj)
        return obj

    def commit(self, workflow_id=None):
        """Commit the unit of work.

        Raises:
            ConcurrencyConflictError: a concurrent writer bumped the workflow
                version between our read and our write.
        """
        try:
            db.session.commit()
        except StaleDataError:
            db.session.rollback()
            logger.info("Stale workflow version detected for %s", workflow_id,
                        extra={"workflow_id": workflow_id})
            raise ConcurrencyConflictError(workflow_id)
        except IntegrityError:
            db.session.rollback()
            raise

    def rollback(self):
        db.session.rollback()
