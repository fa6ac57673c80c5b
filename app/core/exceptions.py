"""
Platform-wide exception hierarchy.

Services raise these types; blueprints register handlers against them once
and get consistent HTTP status codes everywhere.

Usage:
    from app.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Workflow", resource_id="5f1c…")
    raise ValidationError("target_days must be >= 0", details={"target_days": -1})
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Maps to HTTP 404.

    Args:
        resource: Human-readable entity name (e.g. "Workflow", "WorkflowStage").
        resource_id: The PK that was looked up.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class TemplateNotFoundError(NotFoundError):
    """Raised when instantiation references an unknown or inactive template."""

    def __init__(self, template_id: str | None) -> None:
        super().__init__(resource="WorkflowTemplate", resource_id=template_id)


class ValidationError(Exception):
    """Raised when input is well-formed but violates a business rule.

    Examples: negative stage duration, empty stage list, non-contiguous
    stage orders, unknown fields in a command payload.

    Maps to HTTP 422.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation would violate a uniqueness rule.

    Maps to HTTP 409.
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} with {field}={value!r} already exists"
        super().__init__(msg)


class DuplicateWorkflowError(ConflictError):
    """A live (non-cancelled) workflow already exists for the project/vendor pair."""

    def __init__(self, evaluation_project_id: str, vendor_id: str, existing_id: str | None = None) -> None:
        self.evaluation_project_id = evaluation_project_id
        self.vendor_id = vendor_id
        self.existing_id = existing_id
        super().__init__(
            resource="Workflow",
            field="(evaluation_project_id, vendor_id)",
            value=f"{evaluation_project_id}/{vendor_id}",
        )


class InvalidTransitionError(Exception):
    """Raised when a lifecycle event is not legal from the entity's current status.

    Maps to HTTP 409.

    Args:
        entity: "workflow" | "stage" | "milestone".
        entity_id: PK of the entity.
        event: The attempted event (start, complete, block, …).
        current_status: Status the entity was in.
        reason: Optional extra explanation.
    """

    def __init__(
        self,
        entity: str,
        entity_id: str | None,
        event: str,
        current_status: str | None,
        reason: str | None = None,
    ) -> None:
        self.entity = entity
        self.entity_id = entity_id
        self.event = event
        self.current_status = current_status
        self.reason = reason
        msg = f"Cannot '{event}' {entity} {entity_id} (status={current_status})"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class ConcurrencyConflictError(Exception):
    """Raised when a concurrent writer changed a workflow during read-modify-write.

    The engine retries these internally with backoff before surfacing them.
    Maps to HTTP 409.
    """

    def __init__(self, workflow_id: str | None, attempts: int | None = None) -> None:
        self.workflow_id = workflow_id
        self.attempts = attempts
        msg = f"Workflow {workflow_id} was modified concurrently"
        if attempts:
            msg += f" (gave up after {attempts} attempts)"
        super().__init__(msg)


class ImmutableRecordError(Exception):
    """Raised when code tries to update or delete an append-only audit row."""
