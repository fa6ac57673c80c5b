"""
Concurrency tests — lock registry, optimistic version check, retry loop,
and two threads racing the same engine command.

The in-memory test database shares one connection, so cross-process
writers are simulated at the repository seam.
"""

import threading

import pytest
from sqlalchemy import text

from app.core.exceptions import ConcurrencyConflictError, InvalidTransitionError, NotFoundError
from app.models import db
from app.services.workflow_commands import CreateFromTemplate, UpdateNotes
from app.services.workflow_locks import WorkflowLockRegistry

PROJECT_ID = "proj-0001"
VENDOR_ID = "vendor-0001"


def _create(engine, template):
    return engine.create_from_template(PROJECT_ID, CreateFromTemplate(
        vendor_id=VENDOR_ID, template_id=template.id,
    )).workflow


class TestLockRegistry:

    def test_one_lock_per_key_while_held(self):
        registry = WorkflowLockRegistry()
        with registry.hold("a"):
            with registry.hold("b"):
                assert len(registry) == 2
            assert len(registry) == 1

    @pytest.mark.parametrize("keys", [["a"], ["a", "a", "b"], [f"wf-{i}" for i in range(50)]])
    def test_released_keys_are_dropped(self, keys):
        registry = WorkflowLockRegistry()
        for key in keys:
            with registry.hold(key):
                pass
        assert len(registry) == 0

    def test_reentrant_hold_keeps_entry_until_outermost_release(self):
        registry = WorkflowLockRegistry()
        with registry.hold("wf"):
            with registry.hold("wf"):
                assert len(registry) == 1
            assert len(registry) == 1
        assert len(registry) == 0

    def test_reentrant_for_same_thread(self):
        registry = WorkflowLockRegistry(timeout=0.1)
        with registry.hold("wf"):
            with registry.hold("wf"):
                pass

    def test_other_thread_times_out(self):
        registry = WorkflowLockRegistry(timeout=0.05)
        held = threading.Event()
        release = threading.Event()

        def holder():
            with registry.hold("wf"):
                held.set()
                release.wait(2)

        t = threading.Thread(target=holder)
        t.start()
        held.wait(2)
        try:
            with pytest.raises(ConcurrencyConflictError):
                with registry.hold("wf"):
                    pass
            # the timed-out waiter gave its slot back; only the holder remains
            assert len(registry) == 1
        finally:
            release.set()
            t.join()
        assert len(registry) == 0

    def test_serialises_increments(self):
        registry = WorkflowLockRegistry()
        counter = {"n": 0}

        def bump():
            for _ in range(200):
                with registry.hold("wf"):
                    value = counter["n"]
                    counter["n"] = value + 1

        threads = [threading.Thread(target=bump) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert counter["n"] == 800


class TestOptimisticVersion:

    def test_stale_version_becomes_conflict(self, engine, template):
        wf = _create(engine, template)
        assert wf.version == 1

        # Another writer commits in between our read and our write.
        db.session.execute(
            text("UPDATE procurement_workflows SET version = version + 1 WHERE id = :id"),
            {"id": wf.id},
        )
        wf.notes = "stale write"

        with pytest.raises(ConcurrencyConflictError) as exc:
            engine.repository.commit(wf.id)
        assert exc.value.workflow_id == wf.id


class TestRetry:

    def test_conflict_is_retried_once_then_succeeds(self, engine, template, monkeypatch):
        wf = _create(engine, template)
        real_commit = engine.repository.commit
        calls = []

        def flaky_commit(workflow_id=None):
            calls.append(workflow_id)
            if len(calls) == 1:
                db.session.rollback()
                raise ConcurrencyConflictError(workflow_id)
            return real_commit(workflow_id)

        monkeypatch.setattr(engine.repository, "commit", flaky_commit)
        result = engine.start_workflow(wf.id)

        assert len(calls) == 2
        assert result.activities == ["workflow_started", "stage_started"]
        assert wf.status == "in_progress"
        assert [e.activity_type for e in reversed(engine.get_activity_log(wf.id))] == [
            "workflow_created", "workflow_started", "stage_started",
        ]

    def test_gives_up_after_configured_attempts(self, app, engine, template, monkeypatch):
        wf = _create(engine, template)
        calls = []

        def always_stale(workflow_id=None):
            calls.append(workflow_id)
            db.session.rollback()
            raise ConcurrencyConflictError(workflow_id)

        monkeypatch.setattr(engine.repository, "commit", always_stale)
        with pytest.raises(ConcurrencyConflictError) as exc:
            engine.update_notes(wf.id, UpdateNotes(notes="never lands"))

        assert exc.value.attempts == app.config["WORKFLOW_CONFLICT_RETRIES"]
        assert len(calls) == app.config["WORKFLOW_CONFLICT_RETRIES"]
        monkeypatch.undo()
        assert engine.get_workflow(wf.id).notes is None


# ═════════════════════════════════════════════════════════════════════════════
# Engine under real threads
# ═════════════════════════════════════════════════════════════════════════════


class TestEngineThreads:

    @pytest.mark.parametrize("call", [
        lambda engine: engine.start_workflow("missing-wf"),
        lambda engine: engine.update_notes("missing-wf", UpdateNotes(notes="x")),
        lambda engine: engine.complete_stage("missing-stage"),
    ])
    def test_unknown_ids_take_no_lock(self, engine, call):
        for _ in range(20):
            with pytest.raises(NotFoundError):
                call(engine)
        assert len(engine.locks) == 0

    def test_completed_operations_leave_no_locks(self, engine, template):
        wf = _create(engine, template)
        engine.start_workflow(wf.id)
        engine.complete_stage(wf.stages[0].id)
        assert len(engine.locks) == 0

    def test_double_complete_from_two_threads(self, app, engine, template):
        wf = _create(engine, template)
        engine.start_workflow(wf.id)
        wf_id, stage_id = wf.id, wf.stages[0].id
        db.session.commit()

        barrier = threading.Barrier(2)
        outcomes = []

        def complete():
            with app.app_context():
                barrier.wait(5)
                try:
                    engine.complete_stage(stage_id)
                except InvalidTransitionError as exc:
                    outcomes.append(type(exc).__name__)
                else:
                    outcomes.append("ok")

        threads = [threading.Thread(target=complete) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(10)

        assert sorted(outcomes) == ["InvalidTransitionError", "ok"]
        db.session.expire_all()
        workflow = engine.get_workflow(wf_id)
        assert [s.status for s in workflow.stages] == ["completed", "in_progress", "pending"]
        assert [s.status for s in workflow.stages].count("in_progress") == 1
        assert len(engine.locks) == 0
