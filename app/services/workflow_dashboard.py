"""
Procurement Workflow — project dashboard aggregation.

Pure function over already-loaded workflows; no queries, no writes.

Rules:
    overdue              planned_end_date <= today, workflow not terminal
                         (dates are compared against now, so due today counts)
    at risk              0 < days until planned_end_date <= at_risk_days
                         and progress < at_risk_progress, workflow not terminal
    completed this week  status completed and actual_end_date within the last 7 days
    upcoming milestones  open milestones of in_progress stages, nearest due first,
                         capped at upcoming_limit
"""

from datetime import date, timedelta

from app.models.procurement_workflow import (
    MILESTONE_OPEN_STATUSES,
    WORKFLOW_STATUSES,
    WORKFLOW_TERMINAL_STATUSES,
)


def _milestone_due(milestone, stage):
    # Milestones without their own due date inherit the stage's planned end.
    return milestone.due_date or stage.planned_end_date


def compute_dashboard(
    workflows,
    *,
    today: date,
    upcoming_limit: int = 10,
    at_risk_days: int = 7,
    at_risk_progress: float = 80.0,
) -> dict:
    by_status = {status: 0 for status in sorted(WORKFLOW_STATUSES)}
    overdue, at_risk, completed_this_week = [], [], []
    upcoming = []
    progress_values = []

    week_ago = today - timedelta(days=7)

    for wf in workflows:
        by_status[wf.status] = by_status.get(wf.status, 0) + 1
        live = wf.status not in WORKFLOW_TERMINAL_STATUSES
        if wf.status != "cancelled":
            progress_values.append(wf.progress_percent)

        if live and wf.planned_end_date:
            days_left = (wf.planned_end_date - today).days
            if days_left <= 0:
                overdue.append(wf.id)
            elif 0 < days_left <= at_risk_days and wf.progress_percent < at_risk_progress:
                at_risk.append(wf.id)

        if wf.status == "completed" and wf.actual_end_date and week_ago <= wf.actual_end_date <= today:
            completed_this_week.append(wf.id)

        if wf.status in WORKFLOW_TERMINAL_STATUSES:
            continue
        for stage in wf.stages:
            if stage.status != "in_progress":
                continue
            for milestone in stage.milestones:
                if milestone.status not in MILESTONE_OPEN_STATUSES:
                    continue
                upcoming.append((_milestone_due(milestone, stage), wf, stage, milestone))

    upcoming.sort(key=lambda item: (item[0] is None, item[0] or date.max, item[2].stage_order,
                                    item[3].milestone_order))

    return {
        "stats": {
            "total": len(workflows),
            "by_status": by_status,
            "overdue": len(overdue),
            "at_risk": len(at_risk),
            "completed_this_week": len(completed_this_week),
            "average_progress": (
                round(sum(progress_values) / len(progress_values), 2) if progress_values else 0.0
            ),
        },
        "overdue_workflow_ids": overdue,
        "at_risk_workflow_ids": at_risk,
        "upcoming_milestones": [
            {
                "id": milestone.id,
                "name": milestone.name,
                "status": milestone.status,
                "due_date": due.isoformat() if due else None,
                "stage_id": stage.id,
                "stage_name": stage.name,
                "workflow_id": wf.id,
                "workflow_name": wf.name,
                "vendor_id": wf.vendor_id,
            }
            for due, wf, stage, milestone in upcoming[:upcoming_limit]
        ],
    }
