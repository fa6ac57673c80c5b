"""Procurement workflow blueprint.

REST API over the workflow engine.  Business rules live in
``app.services.workflow_engine``; this layer only parses payloads into
operation records, calls the engine and serialises results.

Endpoint groups:
  Templates          GET  /api/v1/procurement/templates[?procurement_type=]
                     GET  /api/v1/procurement/templates/<template_id>
  Project scope      POST /api/v1/procurement/projects/<project_id>/workflows
                     GET  /api/v1/procurement/projects/<project_id>/workflows
                     GET  /api/v1/procurement/projects/<project_id>/dashboard
  Workflow           GET  /api/v1/procurement/workflows/<id>[/timeline|/activity]
                     POST /api/v1/procurement/workflows/<id>/start|complete|block|unblock|cancel
                     PUT  /api/v1/procurement/workflows/<id>/owner|notes|schedule
  Stage              POST /api/v1/procurement/stages/<id>/start|complete|skip|block|unblock
                     PUT  /api/v1/procurement/stages/<id>/owner
                     POST /api/v1/procurement/stages/<id>/milestones
  Milestone          POST /api/v1/procurement/milestones/<id>/start|complete|skip

Every mutation returns ``{data, workflow, activities, warnings, audit_degraded}``.
Actor identity travels in the body as ``performed_by`` / ``performed_by_name``.
"""

from __future__ import annotations

import logging

from flask import Blueprint, current_app, jsonify, request
from werkzeug.exceptions import HTTPException

from app.core.exceptions import (
    ConcurrencyConflictError,
    ConflictError,
    DuplicateWorkflowError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from app.services import workflow_commands as cmds
from app.services.workflow_activity_log import MAX_HISTORY_LIMIT
from app.services.workflow_state_machine import allowed_events
from app.utils.errors import E, api_error

logger = logging.getLogger(__name__)

procurement_workflow_bp = Blueprint(
    "procurement_workflow", __name__, url_prefix="/api/v1/procurement",
)


def _engine():
    return current_app.extensions["workflow_engine"]


def _json_body() -> dict:
    """Parsed JSON object body; empty dict when no body was sent."""
    if not request.get_data():
        return {}
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise _MalformedBody("Request body must be a JSON object")
    return data


class _MalformedBody(Exception):
    pass


# ── Error handlers ────────────────────────────────────────────────────────────


@procurement_workflow_bp.errorhandler(_MalformedBody)
def _handle_malformed(error):
    return api_error(E.BAD_REQUEST, str(error))


@procurement_workflow_bp.errorhandler(NotFoundError)
def _handle_not_found(error: NotFoundError):
    return api_error(E.NOT_FOUND, str(error))


@procurement_workflow_bp.errorhandler(ValidationError)
def _handle_validation(error: ValidationError):
    code = E.VALIDATION_REQUIRED if "missing_fields" in error.details else E.VALIDATION_INVALID
    return api_error(code, str(error), details=error.details)


@procurement_workflow_bp.errorhandler(InvalidTransitionError)
def _handle_invalid_transition(error: InvalidTransitionError):
    details = {
        "entity": error.entity,
        "entity_id": error.entity_id,
        "event": error.event,
        "current_status": error.current_status,
    }
    if error.current_status:
        details["allowed_events"] = allowed_events(error.entity, error.current_status)
    return api_error(E.CONFLICT_STATE, str(error), details=details)


@procurement_workflow_bp.errorhandler(ConflictError)
def _handle_conflict(error: ConflictError):
    details = {"field": error.field, "value": error.value}
    if isinstance(error, DuplicateWorkflowError) and error.existing_id:
        details["existing_workflow_id"] = error.existing_id
    return api_error(E.CONFLICT_DUPLICATE, str(error), details=details)


@procurement_workflow_bp.errorhandler(ConcurrencyConflictError)
def _handle_concurrency(error: ConcurrencyConflictError):
    return api_error(E.CONFLICT_CONCURRENT, str(error), details={"retryable": True})


@procurement_workflow_bp.errorhandler(HTTPException)
def _handle_http(error: HTTPException):
    return api_error(E.BAD_REQUEST, error.description or error.name, status=error.code)


@procurement_workflow_bp.errorhandler(Exception)
def _handle_unexpected(error: Exception):
    logger.exception("Unexpected error in procurement_workflow_bp endpoint=%s", request.endpoint)
    return api_error(E.INTERNAL, "Internal server error")


# ═════════════════════════════════════════════════════════════════════════
# Templates
# ═════════════════════════════════════════════════════════════════════════


@procurement_workflow_bp.route("/templates", methods=["GET"])
def list_templates():
    """Active templates, optionally filtered by ?procurement_type=."""
    templates = _engine().list_templates(request.args.get("procurement_type") or None)
    return jsonify({"items": [t.to_dict() for t in templates], "total": len(templates)}), 200


@procurement_workflow_bp.route("/templates/<template_id>", methods=["GET"])
def get_template(template_id):
    template = _engine().templates.get_template_row(template_id)
    return jsonify(template.to_dict()), 200


# ═════════════════════════════════════════════════════════════════════════
# Project scope
# ═════════════════════════════════════════════════════════════════════════


@procurement_workflow_bp.route("/projects/<project_id>/workflows", methods=["POST"])
def create_workflow(project_id):
    """Instantiate a workflow for a selected vendor.

    Body (template):  {vendor_id, template_id, name?, description?,
                       planned_start_date?, owner_id?, owner_name?}
    Body (custom):    {vendor_id, name, stages: [...], description?,
                       planned_start_date?, owner_id?, owner_name?}
    """
    data = _json_body()
    engine = _engine()
    if "stages" in data:
        result = engine.create_custom(project_id, cmds.CreateCustom.from_payload(data))
    else:
        result = engine.create_from_template(project_id, cmds.CreateFromTemplate.from_payload(data))
    return jsonify(result.to_dict()), 201


@procurement_workflow_bp.route("/projects/<project_id>/workflows", methods=["GET"])
def list_workflows(project_id):
    workflows = _engine().get_workflows_for_project(project_id)
    return jsonify({"items": [w.to_dict() for w in workflows], "total": len(workflows)}), 200


@procurement_workflow_bp.route("/projects/<project_id>/dashboard", methods=["GET"])
def project_dashboard(project_id):
    return jsonify(_engine().get_dashboard(project_id)), 200


# ═════════════════════════════════════════════════════════════════════════
# Workflow
# ═════════════════════════════════════════════════════════════════════════


@procurement_workflow_bp.route("/workflows/<workflow_id>", methods=["GET"])
def get_workflow(workflow_id):
    workflow = _engine().get_workflow(workflow_id)
    return jsonify(workflow.to_dict(include_children=True)), 200


@procurement_workflow_bp.route("/workflows/<workflow_id>/timeline", methods=["GET"])
def get_timeline(workflow_id):
    return jsonify(_engine().get_timeline(workflow_id)), 200


@procurement_workflow_bp.route("/workflows/<workflow_id>/activity", methods=["GET"])
def get_activity(workflow_id):
    """Activity history, newest first.  Query params: limit (1..500, default 50)."""
    raw = request.args.get("limit", "50")
    try:
        limit = int(raw)
    except ValueError:
        return api_error(E.BAD_REQUEST, f"limit must be an integer between 1 and {MAX_HISTORY_LIMIT}")
    entries = _engine().get_activity_log(workflow_id, limit)
    return jsonify({"items": [e.to_dict() for e in entries], "total": len(entries)}), 200


_WORKFLOW_EVENTS = {
    "start": ("start_workflow", cmds.Start),
    "complete": ("complete_workflow", cmds.Complete),
    "block": ("block_workflow", cmds.Block),
    "unblock": ("unblock_workflow", cmds.Unblock),
    "cancel": ("cancel_workflow", cmds.Cancel),
}


@procurement_workflow_bp.route("/workflows/<workflow_id>/<event>", methods=["POST"])
def workflow_transition(workflow_id, event):
    if event not in _WORKFLOW_EVENTS:
        return api_error(E.NOT_FOUND, f"Unknown workflow event '{event}'")
    method, command = _WORKFLOW_EVENTS[event]
    result = getattr(_engine(), method)(workflow_id, command.from_payload(_json_body()))
    return jsonify(result.to_dict()), 200


@procurement_workflow_bp.route("/workflows/<workflow_id>/owner", methods=["PUT"])
def reassign_workflow_owner(workflow_id):
    result = _engine().reassign_workflow_owner(
        workflow_id, cmds.ReassignOwner.from_payload(_json_body()),
    )
    return jsonify(result.to_dict()), 200


@procurement_workflow_bp.route("/workflows/<workflow_id>/notes", methods=["PUT"])
def update_notes(workflow_id):
    result = _engine().update_notes(workflow_id, cmds.UpdateNotes.from_payload(_json_body()))
    return jsonify(result.to_dict()), 200


@procurement_workflow_bp.route("/workflows/<workflow_id>/schedule", methods=["PUT"])
def reschedule(workflow_id):
    result = _engine().reschedule(workflow_id, cmds.Reschedule.from_payload(_json_body()))
    return jsonify(result.to_dict()), 200


# ═════════════════════════════════════════════════════════════════════════
# Stage
# ═════════════════════════════════════════════════════════════════════════

_STAGE_EVENTS = {
    "start": ("start_stage", cmds.Start),
    "complete": ("complete_stage", cmds.Complete),
    "skip": ("skip_stage", cmds.Skip),
    "block": ("block_stage", cmds.Block),
    "unblock": ("unblock_stage", cmds.Unblock),
}


@procurement_workflow_bp.route("/stages/<stage_id>/<event>", methods=["POST"])
def stage_transition(stage_id, event):
    if event not in _STAGE_EVENTS:
        return api_error(E.NOT_FOUND, f"Unknown stage event '{event}'")
    method, command = _STAGE_EVENTS[event]
    result = getattr(_engine(), method)(stage_id, command.from_payload(_json_body()))
    return jsonify(result.to_dict()), 200


@procurement_workflow_bp.route("/stages/<stage_id>/owner", methods=["PUT"])
def reassign_stage_owner(stage_id):
    result = _engine().reassign_stage_owner(stage_id, cmds.ReassignOwner.from_payload(_json_body()))
    return jsonify(result.to_dict()), 200


@procurement_workflow_bp.route("/stages/<stage_id>/milestones", methods=["POST"])
def add_milestone(stage_id):
    result = _engine().add_milestone(stage_id, cmds.AddMilestone.from_payload(_json_body()))
    return jsonify(result.to_dict()), 201


# ═════════════════════════════════════════════════════════════════════════
# Milestone
# ═════════════════════════════════════════════════════════════════════════

_MILESTONE_EVENTS = {
    "start": ("start_milestone", cmds.Start),
    "complete": ("complete_milestone", cmds.Complete),
    "skip": ("skip_milestone", cmds.Skip),
}


@procurement_workflow_bp.route("/milestones/<milestone_id>/<event>", methods=["POST"])
def milestone_transition(milestone_id, event):
    if event not in _MILESTONE_EVENTS:
        return api_error(E.NOT_FOUND, f"Unknown milestone event '{event}'")
    method, command = _MILESTONE_EVENTS[event]
    result = getattr(_engine(), method)(milestone_id, command.from_payload(_json_body()))
    return jsonify(result.to_dict()), 200
