"""
Stage scheduling tests (pure date arithmetic, no database).

Covers:
    - chained windows: next stage starts the day after the previous ends
    - zero-day stages collapse start == end
    - stages without a duration get a start but no end and do not move the cursor
    - no planned start → no windows at all
    - negative / non-integer durations are rejected before scheduling
"""

from datetime import date

import pytest

from app.core.exceptions import ValidationError
from app.services.workflow_scheduler import (
    StageSpec,
    planned_end_of,
    schedule_stages,
    validate_durations,
)


def _specs(*days):
    return [StageSpec(f"S{i}", d, order=i) for i, d in enumerate(days, start=1)]


class TestScheduleStages:

    def test_chains_windows_from_planned_start(self):
        out = schedule_stages(date(2026, 1, 1), _specs(5, 3, 2))

        assert [(s.planned_start_date, s.planned_end_date) for s in out] == [
            (date(2026, 1, 1), date(2026, 1, 6)),
            (date(2026, 1, 7), date(2026, 1, 10)),
            (date(2026, 1, 11), date(2026, 1, 13)),
        ]
        assert planned_end_of(out) == date(2026, 1, 13)

    def test_zero_day_stage_collapses_window(self):
        out = schedule_stages(date(2026, 3, 1), _specs(0, 1))

        assert out[0].planned_start_date == out[0].planned_end_date == date(2026, 3, 1)
        assert out[1].planned_start_date == date(2026, 3, 2)
        assert out[1].planned_end_date == date(2026, 3, 3)

    def test_stage_without_duration_keeps_cursor(self):
        out = schedule_stages(date(2026, 1, 1), _specs(None, 4))

        assert out[0].planned_start_date == date(2026, 1, 1)
        assert out[0].planned_end_date is None
        assert out[1].planned_start_date == date(2026, 1, 1)
        assert out[1].planned_end_date == date(2026, 1, 5)

    def test_no_start_date_leaves_everything_unscheduled(self):
        out = schedule_stages(None, _specs(5, 3))

        assert all(s.planned_start_date is None and s.planned_end_date is None for s in out)
        assert planned_end_of(out) is None

    def test_crosses_month_and_year_boundaries(self):
        out = schedule_stages(date(2025, 12, 30), _specs(2, 1))

        assert out[0].planned_end_date == date(2026, 1, 1)
        assert out[1].planned_start_date == date(2026, 1, 2)

    def test_inputs_are_not_mutated(self):
        specs = _specs(5)
        schedule_stages(date(2026, 1, 1), specs)
        assert specs[0].planned_start_date is None

    def test_preserves_names_orders_and_milestones(self):
        spec = StageSpec("Legal", 3, order=2, milestones=("Redlines closed",))
        (out,) = schedule_stages(date(2026, 1, 1), [spec])
        assert (out.name, out.order, out.milestones) == ("Legal", 2, ("Redlines closed",))


class TestDurationValidation:

    def test_negative_duration_rejected(self):
        with pytest.raises(ValidationError) as exc:
            schedule_stages(date(2026, 1, 1), _specs(5, -1))
        assert "S2" in exc.value.details

    @pytest.mark.parametrize("bad", [1.5, "3", True])
    def test_non_integer_duration_rejected(self, bad):
        with pytest.raises(ValidationError):
            validate_durations([StageSpec("X", bad)])

    def test_valid_durations_pass(self):
        validate_durations(_specs(0, 1, None, 30))
