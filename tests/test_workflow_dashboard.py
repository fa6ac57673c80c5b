"""
Dashboard aggregation tests over plain stand-in objects.
"""

from datetime import date, timedelta
from types import SimpleNamespace

from app.services.workflow_commands import CreateFromTemplate
from app.services.workflow_dashboard import compute_dashboard

TODAY = date(2026, 5, 10)


def _milestone(mid, status="pending", due=None, order=1):
    return SimpleNamespace(id=mid, name=f"M {mid}", status=status, due_date=due, milestone_order=order)


def _stage(sid, status="pending", milestones=(), planned_end=None, order=1):
    return SimpleNamespace(
        id=sid, name=f"Stage {sid}", status=status, stage_order=order,
        planned_end_date=planned_end, milestones=list(milestones),
    )


def _wf(wid, status="in_progress", progress=0.0, planned_end=None, actual_end=None, stages=()):
    return SimpleNamespace(
        id=wid, name=f"WF {wid}", vendor_id=f"v-{wid}", status=status,
        progress_percent=progress, planned_end_date=planned_end,
        actual_end_date=actual_end, stages=list(stages),
    )


class TestStats:

    def test_empty_project(self):
        out = compute_dashboard([], today=TODAY)
        assert out["stats"]["total"] == 0
        assert out["stats"]["average_progress"] == 0.0
        assert set(out["stats"]["by_status"]) == {
            "not_started", "in_progress", "blocked", "completed", "cancelled",
        }
        assert out["upcoming_milestones"] == []

    def test_counts_by_status(self):
        out = compute_dashboard([
            _wf("a"), _wf("b", status="blocked"), _wf("c", status="completed", progress=100.0),
        ], today=TODAY)
        assert out["stats"]["by_status"]["in_progress"] == 1
        assert out["stats"]["by_status"]["blocked"] == 1
        assert out["stats"]["by_status"]["completed"] == 1
        assert out["stats"]["by_status"]["cancelled"] == 0

    def test_average_progress_ignores_cancelled(self):
        out = compute_dashboard([
            _wf("a", progress=50.0),
            _wf("b", status="completed", progress=100.0),
            _wf("c", status="cancelled", progress=0.0),
        ], today=TODAY)
        assert out["stats"]["average_progress"] == 75.0


class TestRisk:

    def test_overdue_only_for_live_workflows(self):
        out = compute_dashboard([
            _wf("late", planned_end=date(2026, 5, 1)),
            _wf("done-late", status="completed", planned_end=date(2026, 5, 1)),
            _wf("on-time", planned_end=date(2026, 6, 1)),
        ], today=TODAY)
        assert out["overdue_workflow_ids"] == ["late"]
        assert out["stats"]["overdue"] == 1

    def test_at_risk_window_and_progress_threshold(self):
        out = compute_dashboard([
            _wf("risky", progress=40.0, planned_end=date(2026, 5, 15)),
            _wf("nearly-done", progress=90.0, planned_end=date(2026, 5, 15)),
            _wf("far-off", progress=10.0, planned_end=date(2026, 7, 1)),
            _wf("due-today", progress=10.0, planned_end=TODAY),
        ], today=TODAY)
        assert out["at_risk_workflow_ids"] == ["risky"]
        assert out["overdue_workflow_ids"] == ["due-today"]

    def test_due_today_counts_as_overdue(self):
        out = compute_dashboard([
            _wf("due-today", progress=10.0, planned_end=TODAY),
            _wf("due-today-nearly-done", progress=90.0, planned_end=TODAY),
            _wf("due-tomorrow", progress=10.0, planned_end=TODAY + timedelta(days=1)),
        ], today=TODAY)
        assert out["overdue_workflow_ids"] == ["due-today", "due-today-nearly-done"]
        assert out["at_risk_workflow_ids"] == ["due-tomorrow"]
        assert out["stats"]["overdue"] == 2

    def test_thresholds_are_configurable(self):
        wf = _wf("x", progress=85.0, planned_end=date(2026, 5, 25))
        assert compute_dashboard([wf], today=TODAY)["at_risk_workflow_ids"] == []
        out = compute_dashboard([wf], today=TODAY, at_risk_days=30, at_risk_progress=90.0)
        assert out["at_risk_workflow_ids"] == ["x"]

    def test_completed_this_week(self):
        out = compute_dashboard([
            _wf("recent", status="completed", actual_end=date(2026, 5, 5)),
            _wf("old", status="completed", actual_end=date(2026, 4, 1)),
        ], today=TODAY)
        assert out["stats"]["completed_this_week"] == 1


class TestUpcomingMilestones:

    def test_only_open_milestones_of_active_stages(self):
        active = _stage("s1", "in_progress", milestones=[
            _milestone("m1", due=date(2026, 5, 12)),
            _milestone("m2", status="completed", due=date(2026, 5, 11), order=2),
        ])
        pending = _stage("s2", "pending", milestones=[_milestone("m3", due=date(2026, 5, 11))], order=2)
        out = compute_dashboard([_wf("a", stages=[active, pending])], today=TODAY)

        assert [m["id"] for m in out["upcoming_milestones"]] == ["m1"]
        item = out["upcoming_milestones"][0]
        assert item["stage_name"] == "Stage s1"
        assert item["workflow_id"] == "a"
        assert item["vendor_id"] == "v-a"

    def test_sorted_by_due_date_with_stage_fallback(self):
        stage = _stage("s1", "in_progress", planned_end=date(2026, 5, 14), milestones=[
            _milestone("late", due=date(2026, 5, 20), order=1),
            _milestone("inherits", due=None, order=2),
            _milestone("soon", due=date(2026, 5, 11), order=3),
        ])
        out = compute_dashboard([_wf("a", stages=[stage])], today=TODAY)

        assert [m["id"] for m in out["upcoming_milestones"]] == ["soon", "inherits", "late"]
        assert out["upcoming_milestones"][1]["due_date"] == "2026-05-14"

    def test_undated_milestones_last(self):
        stage = _stage("s1", "in_progress", milestones=[
            _milestone("undated", order=1), _milestone("dated", due=date(2026, 6, 1), order=2),
        ])
        out = compute_dashboard([_wf("a", stages=[stage])], today=TODAY)
        assert [m["id"] for m in out["upcoming_milestones"]] == ["dated", "undated"]
        assert out["upcoming_milestones"][1]["due_date"] is None

    def test_capped_at_limit(self):
        stage = _stage("s1", "in_progress", milestones=[
            _milestone(f"m{i}", due=date(2026, 5, 11 + i), order=i) for i in range(1, 6)
        ])
        out = compute_dashboard([_wf("a", stages=[stage])], today=TODAY, upcoming_limit=3)
        assert [m["id"] for m in out["upcoming_milestones"]] == ["m1", "m2", "m3"]

    def test_terminal_workflows_excluded(self):
        stage = _stage("s1", "in_progress", milestones=[_milestone("m1", due=date(2026, 5, 11))])
        out = compute_dashboard([_wf("a", status="cancelled", stages=[stage])], today=TODAY)
        assert out["upcoming_milestones"] == []


class TestEngineDashboard:

    def test_engine_wraps_project_workflows(self, engine, template):
        engine.create_from_template("proj-0001", CreateFromTemplate(
            vendor_id="vendor-0001", template_id=template.id, planned_start_date=date(2026, 1, 1),
        ))

        out = engine.get_dashboard("proj-0001", today=date(2026, 2, 1))

        assert out["evaluation_project_id"] == "proj-0001"
        assert out["stats"]["total"] == 1
        assert out["stats"]["overdue"] == 1
        assert len(out["workflows"]) == 1
