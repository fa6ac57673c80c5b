"""
Workflow engine tests — instantiation, lifecycle, cascade, milestones, edits.

The engine under test runs on a frozen clock so actual dates are
deterministic.  Helpers go through the engine (not raw ORM writes) except
where a test needs an arbitrary starting state.
"""

from datetime import date, datetime, timedelta, timezone

import pytest

from app.core.exceptions import (
    DuplicateWorkflowError,
    InvalidTransitionError,
    NotFoundError,
    TemplateNotFoundError,
    ValidationError,
)
from app.models import db
from app.models.procurement_workflow import Workflow, WorkflowActivityLog
from app.services.workflow_activity_log import Actor
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
    UpdateNotes,
)
from app.services.workflow_engine import WorkflowEngine

PROJECT_ID = "proj-0001"
VENDOR_ID = "vendor-0001"
DAY_ONE = datetime(2026, 1, 1, 9, 0, tzinfo=timezone.utc)


@pytest.fixture()
def clock():
    return {"now": DAY_ONE}


@pytest.fixture()
def engine(app, clock):
    """Engine with a controllable clock and no retry sleeps."""
    return WorkflowEngine.from_config(app.config, clock=lambda: clock["now"])


def _create(engine, template, actor=Actor(), vendor_id=VENDOR_ID, start=date(2026, 1, 1)):
    result = engine.create_from_template(PROJECT_ID, CreateFromTemplate(
        vendor_id=vendor_id, template_id=template.id, planned_start_date=start, actor=actor,
    ))
    return result.workflow


def _started(engine, template, actor=Actor()):
    wf = _create(engine, template, actor)
    engine.start_workflow(wf.id, Start(actor=actor))
    return wf


def _types(engine, workflow_id):
    """Activity types in chronological order."""
    return [e.activity_type for e in reversed(engine.get_activity_log(workflow_id, limit=500))]


def _stage_statuses(wf):
    return [s.status for s in wf.stages]


# ═════════════════════════════════════════════════════════════════════════════
# Instantiation
# ═════════════════════════════════════════════════════════════════════════════


class TestCreateFromTemplate:

    def test_copies_stages_and_milestones(self, engine, template, actor):
        wf = _create(engine, template, actor)

        assert wf.status == "not_started"
        assert wf.template_id == template.id
        assert wf.name == "Three Step"
        assert [s.stage_order for s in wf.stages] == [1, 2, 3]
        assert [s.name for s in wf.stages] == ["Negotiation", "Legal", "Signing"]
        assert _stage_statuses(wf) == ["pending"] * 3
        assert [m.name for m in wf.stages[0].milestones] == ["Terms agreed", "Pricing signed"]
        assert [m.milestone_order for m in wf.stages[0].milestones] == [1, 2]
        assert wf.created_by == "user-42"

    def test_schedules_planned_windows(self, engine, template):
        wf = _create(engine, template)

        assert [(s.planned_start_date, s.planned_end_date) for s in wf.stages] == [
            (date(2026, 1, 1), date(2026, 1, 6)),
            (date(2026, 1, 7), date(2026, 1, 10)),
            (date(2026, 1, 11), date(2026, 1, 13)),
        ]
        assert wf.planned_start_date == date(2026, 1, 1)
        assert wf.planned_end_date == date(2026, 1, 13)

    def test_logs_creation_with_actor(self, engine, template, actor):
        wf = _create(engine, template, actor)

        (entry,) = engine.get_activity_log(wf.id)
        assert entry.activity_type == "workflow_created"
        assert entry.performed_by == "user-42"
        assert entry.performed_by_name == "Dana Buyer"
        assert "Three Step" in entry.description

    def test_anonymous_actor_recorded_as_system(self, engine, template):
        wf = _create(engine, template)
        (entry,) = engine.get_activity_log(wf.id)
        assert entry.performed_by is None
        assert entry.performed_by_name == "System"

    def test_later_template_edits_do_not_reach_workflow(self, engine, template):
        wf = _create(engine, template)

        template.stages = [{"name": "Only", "order": 1, "target_days": 1}]
        db.session.commit()

        assert [s.name for s in engine.get_workflow(wf.id).stages] == ["Negotiation", "Legal", "Signing"]

    def test_unknown_template(self, engine):
        with pytest.raises(TemplateNotFoundError):
            engine.create_from_template(PROJECT_ID, CreateFromTemplate(
                vendor_id=VENDOR_ID, template_id="missing",
            ))
        assert Workflow.query.count() == 0

    def test_inactive_template(self, engine, template_factory):
        tpl = template_factory(is_active=False)
        db.session.commit()
        with pytest.raises(TemplateNotFoundError):
            engine.create_from_template(PROJECT_ID, CreateFromTemplate(
                vendor_id=VENDOR_ID, template_id=tpl.id,
            ))

    def test_template_with_negative_duration_rejected(self, engine, template_factory):
        tpl = template_factory(stages=[{"name": "Bad", "order": 1, "target_days": -2}])
        db.session.commit()
        with pytest.raises(ValidationError):
            engine.create_from_template(PROJECT_ID, CreateFromTemplate(
                vendor_id=VENDOR_ID, template_id=tpl.id,
            ))
        assert Workflow.query.count() == 0

    def test_duplicate_live_workflow_rejected(self, engine, template):
        first = _create(engine, template)
        with pytest.raises(DuplicateWorkflowError) as exc:
            _create(engine, template)
        assert exc.value.existing_id == first.id
        assert Workflow.query.count() == 1

    def test_same_vendor_other_project_allowed(self, engine, template):
        _create(engine, template)
        engine.create_from_template("proj-0002", CreateFromTemplate(
            vendor_id=VENDOR_ID, template_id=template.id,
        ))
        assert Workflow.query.count() == 2

    def test_cancelled_workflow_frees_the_pair(self, engine, template):
        first = _create(engine, template)
        engine.cancel_workflow(first.id, Cancel(reason="vendor withdrew"))

        second = _create(engine, template)

        assert second.id != first.id
        assert second.status == "not_started"

    def test_without_planned_start_leaves_windows_empty(self, engine, template):
        wf = _create(engine, template, start=None)
        assert all(s.planned_start_date is None for s in wf.stages)
        assert wf.planned_end_date is None


class TestCreateCustom:

    def test_custom_stage_list(self, engine):
        result = engine.create_custom(PROJECT_ID, CreateCustom(
            vendor_id=VENDOR_ID,
            name="Hardware buy",
            planned_start_date=date(2026, 2, 1),
            stages=[
                {"name": "Quote", "target_days": 2, "milestones": ["Quote received"]},
                {"name": "Order", "target_days": 0},
            ],
        ))
        wf = result.workflow

        assert wf.template_id is None
        assert [s.stage_order for s in wf.stages] == [1, 2]
        assert wf.stages[1].planned_start_date == wf.stages[1].planned_end_date == date(2026, 2, 4)
        assert result.activities == ["workflow_created"]

    def test_negative_duration_creates_nothing(self, engine):
        with pytest.raises(ValidationError):
            engine.create_custom(PROJECT_ID, CreateCustom(
                vendor_id=VENDOR_ID, name="x",
                stages=[{"name": "A", "target_days": 1}, {"name": "B", "target_days": -1}],
            ))
        assert Workflow.query.count() == 0
        assert WorkflowActivityLog.query.count() == 0

    def test_empty_stage_list_rejected(self, engine):
        with pytest.raises(ValidationError):
            engine.create_custom(PROJECT_ID, CreateCustom(vendor_id=VENDOR_ID, name="x", stages=[]))
        assert Workflow.query.count() == 0

    def test_non_contiguous_orders_rejected(self, engine):
        with pytest.raises(ValidationError):
            engine.create_custom(PROJECT_ID, CreateCustom(
                vendor_id=VENDOR_ID, name="x",
                stages=[{"name": "A", "order": 1}, {"name": "B", "order": 3}],
            ))

    def test_explicit_orders_are_sorted(self, engine):
        wf = engine.create_custom(PROJECT_ID, CreateCustom(
            vendor_id=VENDOR_ID, name="x",
            stages=[{"name": "Second", "order": 2}, {"name": "First", "order": 1}],
        )).workflow
        assert [s.name for s in wf.stages] == ["First", "Second"]


# ═════════════════════════════════════════════════════════════════════════════
# End-to-end lifecycle
# ═════════════════════════════════════════════════════════════════════════════


class TestHappyPath:

    def test_three_stage_workflow_runs_to_completion(self, engine, template, actor, clock):
        completed_events = []
        engine.events.subscribe("workflow_completed", completed_events.append)

        wf = _create(engine, template, actor)
        assert wf.planned_end_date == date(2026, 1, 13)

        engine.start_workflow(wf.id, Start(actor=actor))
        assert wf.status == "in_progress"
        assert wf.actual_start_date == date(2026, 1, 1)
        assert _stage_statuses(wf) == ["in_progress", "pending", "pending"]
        assert wf.stages[0].actual_start_date == date(2026, 1, 1)

        clock["now"] = DAY_ONE + timedelta(days=5)
        first = engine.complete_stage(wf.stages[0].id, Complete(actor=actor))
        assert first.activities == ["stage_completed", "stage_started"]
        assert _stage_statuses(wf) == ["completed", "in_progress", "pending"]
        assert wf.stages[0].actual_end_date == date(2026, 1, 6)
        assert wf.stages[0].completed_by == "user-42"
        assert wf.stages[1].actual_start_date == date(2026, 1, 6)

        clock["now"] = DAY_ONE + timedelta(days=8)
        engine.complete_stage(wf.stages[1].id, Complete(actor=actor))
        assert _stage_statuses(wf) == ["completed", "completed", "in_progress"]

        clock["now"] = DAY_ONE + timedelta(days=10)
        last = engine.complete_stage(wf.stages[2].id, Complete(actor=actor, notes="signed"))
        assert last.activities == ["stage_completed", "workflow_completed"]

        assert wf.status == "completed"
        assert wf.actual_end_date == date(2026, 1, 11)
        assert wf.progress_percent == 100.0
        assert wf.stages[2].completion_notes == "signed"

        # one entry per state change: 3 completions, 3 stage starts, create,
        # workflow start and workflow completion
        assert len(_types(engine, wf.id)) == 9
        assert _types(engine, wf.id) == [
            "workflow_created",
            "workflow_started",
            "stage_started",
            "stage_completed",
            "stage_started",
            "stage_completed",
            "stage_started",
            "stage_completed",
            "workflow_completed",
        ]
        assert [e.workflow_id for e in completed_events] == [wf.id]

    def test_stage_entries_carry_workflow_and_stage_ids(self, engine, template):
        wf = _started(engine, template)
        stage_entries = [e for e in engine.get_activity_log(wf.id) if e.activity_type.startswith("stage_")]
        assert stage_entries
        assert all(e.workflow_id == wf.id and e.stage_id for e in stage_entries)

    def test_version_bumps_on_every_mutation(self, engine, template):
        wf = _create(engine, template)
        assert wf.version == 1
        engine.start_workflow(wf.id)
        assert wf.version == 2
        engine.update_notes(wf.id, UpdateNotes(notes="kick-off done"))
        assert wf.version == 3


# ═════════════════════════════════════════════════════════════════════════════
# Invariants & rejected transitions
# ═════════════════════════════════════════════════════════════════════════════


class TestGuards:

    def test_start_twice_rejected_without_new_log(self, engine, template):
        wf = _started(engine, template)
        before = len(_types(engine, wf.id))

        with pytest.raises(InvalidTransitionError):
            engine.start_workflow(wf.id)

        assert len(_types(engine, wf.id)) == before

    def test_completing_completed_stage_is_rejected(self, engine, template):
        wf = _started(engine, template)
        stage_id = wf.stages[0].id
        engine.complete_stage(stage_id)
        before = _types(engine, wf.id)

        with pytest.raises(InvalidTransitionError) as exc:
            engine.complete_stage(stage_id)

        assert exc.value.current_status == "completed"
        assert _types(engine, wf.id) == before
        assert _stage_statuses(engine.get_workflow(wf.id)) == ["completed", "in_progress", "pending"]

    def test_only_one_stage_in_progress(self, engine, template):
        wf = _started(engine, template)
        with pytest.raises(InvalidTransitionError) as exc:
            engine.start_stage(wf.stages[2].id)
        assert "Negotiation" in str(exc.value)
        assert _stage_statuses(wf).count("in_progress") == 1

    def test_stage_cannot_start_before_workflow(self, engine, template):
        wf = _create(engine, template)
        with pytest.raises(InvalidTransitionError):
            engine.start_stage(wf.stages[0].id)

    def test_pending_stage_cannot_complete(self, engine, template):
        wf = _started(engine, template)
        with pytest.raises(InvalidTransitionError):
            engine.complete_stage(wf.stages[1].id)

    def test_start_without_pending_stages(self, engine, template):
        wf = _create(engine, template)
        for stage in list(wf.stages):
            engine.skip_stage(stage.id, Skip(reason="not needed"))

        with pytest.raises(ValidationError):
            engine.start_workflow(wf.id)
        assert engine.get_workflow(wf.id).status == "not_started"

    def test_unknown_ids(self, engine):
        with pytest.raises(NotFoundError):
            engine.start_workflow("nope")
        with pytest.raises(NotFoundError):
            engine.complete_stage("nope")
        with pytest.raises(NotFoundError):
            engine.complete_milestone("nope")

    def test_block_requires_reason(self):
        with pytest.raises(ValidationError):
            Block.from_payload({})


# ═════════════════════════════════════════════════════════════════════════════
# Skipping
# ═════════════════════════════════════════════════════════════════════════════


class TestSkip:

    def test_skipping_active_stage_starts_next(self, engine, template):
        wf = _started(engine, template)

        result = engine.skip_stage(wf.stages[0].id, Skip(reason="handled offline"))

        assert result.activities == ["stage_skipped", "stage_started"]
        assert _stage_statuses(wf) == ["skipped", "in_progress", "pending"]
        assert wf.stages[0].completion_notes == "handled offline"

    def test_skipped_stages_leave_progress_denominator(self, engine, template):
        wf = _started(engine, template)
        engine.skip_stage(wf.stages[0].id)
        engine.complete_stage(wf.stages[1].id)

        assert wf.total_stages == 2
        assert wf.completed_stages == 1
        assert wf.progress_percent == 50.0

    def test_skipping_pending_stage_does_not_cascade(self, engine, template):
        wf = _started(engine, template)

        result = engine.skip_stage(wf.stages[1].id)

        assert result.activities == ["stage_skipped"]
        assert _stage_statuses(wf) == ["in_progress", "skipped", "pending"]

        engine.complete_stage(wf.stages[0].id)
        assert _stage_statuses(wf) == ["completed", "skipped", "in_progress"]

    def test_skipping_last_stage_completes_workflow(self, engine, template):
        wf = _started(engine, template)
        engine.complete_stage(wf.stages[0].id)
        engine.complete_stage(wf.stages[1].id)

        result = engine.skip_stage(wf.stages[2].id)

        assert result.activities == ["stage_skipped", "workflow_completed"]
        assert wf.status == "completed"


# ═════════════════════════════════════════════════════════════════════════════
# Blocking, cancel, explicit complete
# ═════════════════════════════════════════════════════════════════════════════


class TestBlockingAndCancel:

    def test_block_and_unblock_workflow(self, engine, template):
        seen = []
        engine.events.subscribe("workflow_blocked", seen.append)
        wf = _started(engine, template)

        engine.block_workflow(wf.id, Block(reason="budget freeze"))
        assert wf.status == "blocked"
        assert wf.blocked_reason == "budget freeze"
        assert wf.blocked_since is not None
        assert seen[0].reason == "budget freeze"

        engine.unblock_workflow(wf.id)
        assert wf.status == "in_progress"
        assert wf.blocked_reason is None
        assert wf.blocked_since is None

    def test_block_stage_keeps_workflow_running(self, engine, template):
        wf = _started(engine, template)
        stage_id = wf.stages[0].id

        engine.block_stage(stage_id, Block(reason="waiting on legal"))
        assert wf.stages[0].status == "blocked"
        assert wf.status == "in_progress"

        with pytest.raises(InvalidTransitionError):
            engine.complete_stage(stage_id)

        engine.unblock_stage(stage_id)
        engine.complete_stage(stage_id)
        assert _stage_statuses(wf) == ["completed", "in_progress", "pending"]

    def test_blocked_workflow_completes_when_last_stage_finishes(self, engine, template):
        wf = _started(engine, template)
        engine.complete_stage(wf.stages[0].id)
        engine.complete_stage(wf.stages[1].id)
        engine.block_workflow(wf.id, Block(reason="audit"))

        engine.complete_stage(wf.stages[2].id)

        assert wf.status == "completed"
        assert wf.blocked_reason is None

    def test_cancel_leaves_stages_untouched(self, engine, template):
        wf = _started(engine, template)

        result = engine.cancel_workflow(wf.id, Cancel(reason="vendor withdrew"))

        assert result.activities == ["workflow_cancelled"]
        assert wf.status == "cancelled"
        assert _stage_statuses(wf) == ["in_progress", "pending", "pending"]

    def test_cancelled_workflow_is_read_only(self, engine, template):
        wf = _started(engine, template)
        engine.cancel_workflow(wf.id)

        with pytest.raises(InvalidTransitionError):
            engine.complete_stage(wf.stages[0].id)
        with pytest.raises(InvalidTransitionError):
            engine.start_workflow(wf.id)
        with pytest.raises(InvalidTransitionError):
            engine.complete_milestone(wf.stages[0].milestones[0].id)
        with pytest.raises(InvalidTransitionError):
            engine.update_notes(wf.id, UpdateNotes(notes="late note"))

    def test_explicit_complete_leaves_remaining_stages(self, engine, template):
        wf = _started(engine, template)

        engine.complete_workflow(wf.id, Complete(notes="closed early"))

        assert wf.status == "completed"
        assert wf.actual_end_date == date(2026, 1, 1)
        assert _stage_statuses(wf) == ["in_progress", "pending", "pending"]

    def test_cannot_cancel_completed_workflow(self, engine, template):
        wf = _started(engine, template)
        engine.complete_workflow(wf.id)
        with pytest.raises(InvalidTransitionError):
            engine.cancel_workflow(wf.id)


# ═════════════════════════════════════════════════════════════════════════════
# Milestones
# ═════════════════════════════════════════════════════════════════════════════


class TestMilestones:

    def test_open_milestones_produce_warning_not_error(self, engine, template):
        wf = _started(engine, template)

        result = engine.complete_stage(wf.stages[0].id)

        assert wf.stages[0].status == "completed"
        assert len(result.warnings) == 1
        assert "2 open milestone" in result.warnings[0]

    def test_enforced_milestones_block_completion(self, app, clock, template):
        strict = WorkflowEngine.from_config(app.config, clock=lambda: clock["now"], enforce_milestones=True)
        wf = _started(strict, template)

        with pytest.raises(ValidationError) as exc:
            strict.complete_stage(wf.stages[0].id)

        assert exc.value.details["open_milestones"] == ["Terms agreed", "Pricing signed"]
        assert strict.get_workflow(wf.id).stages[0].status == "in_progress"

    def test_no_warning_when_all_milestones_closed(self, engine, template, actor):
        wf = _started(engine, template)
        first, second = wf.stages[0].milestones
        engine.complete_milestone(first.id, Complete(actor=actor, notes="done"))
        engine.skip_milestone(second.id, Skip(reason="n/a"))

        result = engine.complete_stage(wf.stages[0].id)

        assert result.warnings == []
        assert first.completed_by == "user-42"
        assert first.completion_notes == "done"
        assert second.status == "skipped"

    def test_milestone_changes_never_move_stage(self, engine, template):
        wf = _started(engine, template)
        for m in wf.stages[0].milestones:
            engine.complete_milestone(m.id)
        assert wf.stages[0].status == "in_progress"

    def test_start_then_complete_milestone(self, engine, template):
        wf = _started(engine, template)
        m = wf.stages[0].milestones[0]

        engine.start_milestone(m.id)
        assert m.status == "in_progress"
        engine.complete_milestone(m.id)
        assert m.status == "completed"
        assert m.completed_at is not None

        with pytest.raises(InvalidTransitionError):
            engine.complete_milestone(m.id)

    def test_milestone_entries_reference_stage_and_workflow(self, engine, template):
        wf = _started(engine, template)
        m = wf.stages[0].milestones[0]
        engine.complete_milestone(m.id)

        entry = engine.get_activity_log(wf.id, limit=1)[0]
        assert entry.activity_type == "milestone_completed"
        assert (entry.workflow_id, entry.stage_id, entry.milestone_id) == (wf.id, wf.stages[0].id, m.id)

    def test_add_milestone_appends_at_next_order(self, engine, template):
        wf = _started(engine, template)
        stage = wf.stages[0]

        result = engine.add_milestone(stage.id, AddMilestone(name="Insurance verified", due_date=date(2026, 1, 4)))

        assert result.activities == ["milestone_added"]
        assert result.entity.milestone_order == 3
        assert [m.name for m in stage.milestones][-1] == "Insurance verified"

    def test_add_milestone_to_finished_stage_rejected(self, engine, template):
        wf = _started(engine, template)
        engine.complete_stage(wf.stages[0].id)
        with pytest.raises(InvalidTransitionError):
            engine.add_milestone(wf.stages[0].id, AddMilestone(name="Late"))


# ═════════════════════════════════════════════════════════════════════════════
# Edits
# ═════════════════════════════════════════════════════════════════════════════


class TestEdits:

    def test_reassign_workflow_owner(self, engine, template):
        wf = _create(engine, template)

        engine.reassign_workflow_owner(wf.id, ReassignOwner(owner_id="u-7", owner_name="Kim"))

        assert (wf.owner_id, wf.owner_name) == ("u-7", "Kim")
        entry = engine.get_activity_log(wf.id, limit=1)[0]
        assert entry.activity_type == "owner_changed"
        assert entry.description == "Owner changed to Kim"
        assert entry.new_value == "Kim"

    def test_reassign_stage_owner(self, engine, template):
        wf = _create(engine, template)
        stage = wf.stages[1]

        engine.reassign_stage_owner(stage.id, ReassignOwner(owner_name="Legal Team"))

        assert stage.owner_name == "Legal Team"
        entry = engine.get_activity_log(wf.id, limit=1)[0]
        assert entry.stage_id == stage.id

    def test_update_notes(self, engine, template):
        wf = _create(engine, template)
        engine.update_notes(wf.id, UpdateNotes(notes="Prefers annual billing"))
        assert wf.notes == "Prefers annual billing"
        assert engine.get_activity_log(wf.id, limit=1)[0].activity_type == "note_added"

    def test_reschedule_rechains_windows(self, engine, template):
        wf = _create(engine, template)

        engine.reschedule(wf.id, Reschedule(planned_start_date=date(2026, 2, 1)))

        assert wf.planned_start_date == date(2026, 2, 1)
        assert wf.stages[0].planned_end_date == date(2026, 2, 6)
        assert wf.stages[2].planned_end_date == date(2026, 2, 13)
        assert wf.planned_end_date == date(2026, 2, 13)
        entry = engine.get_activity_log(wf.id, limit=1)[0]
        assert (entry.activity_type, entry.old_value, entry.new_value) == (
            "date_changed", "2026-01-01", "2026-02-01",
        )


# ═════════════════════════════════════════════════════════════════════════════
# Read models
# ═════════════════════════════════════════════════════════════════════════════


class TestReads:

    def test_timeline_marks_overdue_and_variance(self, engine, template, clock):
        wf = _started(engine, template)
        clock["now"] = DAY_ONE + timedelta(days=7)   # stage 1 planned to end on Jan 6
        engine.complete_stage(wf.stages[0].id)
        clock["now"] = DAY_ONE + timedelta(days=11)  # stage 2 planned to end on Jan 10

        timeline = engine.get_timeline(wf.id)

        first, second, third = timeline["stages"]
        assert first["variance_days"] == 2
        assert first["is_overdue"] is False
        assert second["is_overdue"] is True
        assert third["is_overdue"] is False
        assert timeline["today"] == "2026-01-12"
        assert timeline["workflow"]["progress_percent"] == pytest.approx(33.33)

    def test_workflows_for_project(self, engine, template):
        _create(engine, template, vendor_id="v-1")
        _create(engine, template, vendor_id="v-2")
        engine.create_from_template("other", CreateFromTemplate(vendor_id="v-3", template_id=template.id))

        workflows = engine.get_workflows_for_project(PROJECT_ID)

        assert sorted(w.vendor_id for w in workflows) == ["v-1", "v-2"]

    def test_list_templates_filters_by_type(self, engine, template_factory):
        template_factory(name="A", procurement_type="saas")
        template_factory(name="B", procurement_type="software")
        template_factory(name="C", procurement_type="saas", is_active=False)
        db.session.commit()

        assert [t.name for t in engine.list_templates("saas")] == ["A"]
        assert len(engine.list_templates()) == 2

    def test_list_templates_rejects_unknown_type(self, engine):
        with pytest.raises(ValidationError):
            engine.list_templates("spaceships")
