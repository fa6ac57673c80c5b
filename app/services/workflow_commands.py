"""
Procurement Workflow — operation parameter records.

Each engine operation takes exactly one of these records.  ``from_payload``
builds one from a JSON body and rejects unknown keys, missing required
values and malformed dates with ``ValidationError``.  Every record accepts
``performed_by`` / ``performed_by_name`` which become its ``actor``.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import date

from app.core.exceptions import ValidationError
from app.services.workflow_activity_log import SYSTEM, Actor

_ACTOR_KEYS = {"performed_by", "performed_by_name"}


def _parse_date(name, value):
    if value is None or isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        raise ValidationError(f"{name} must be an ISO date (YYYY-MM-DD)", details={name: value}) from None


def _requires(*names):
    return field(default=names, init=False, repr=False, compare=False)


@dataclass(frozen=True)
class _Command:
    actor: Actor = field(default=SYSTEM, kw_only=True)

    # Fields that must be present and non-empty.
    _required: tuple = _requires()

    @classmethod
    def from_payload(cls, data: dict | None):
        if data is not None and not isinstance(data, dict):
            raise ValidationError("Request body must be a JSON object")
        data = dict(data or {})
        allowed = {f.name for f in fields(cls) if f.init and f.name != "actor"}
        unknown = sorted(set(data) - allowed - _ACTOR_KEYS)
        if unknown:
            raise ValidationError(
                f"Unknown field(s): {', '.join(unknown)}",
                details={"unknown_fields": unknown, "allowed": sorted(allowed | _ACTOR_KEYS)},
            )

        actor = Actor(
            id=data.pop("performed_by", None),
            name=data.pop("performed_by_name", None) or "System",
        )

        for name, value in list(data.items()):
            if isinstance(value, str):
                value = value.strip()
            if name.endswith("_date"):
                value = _parse_date(name, value or None)
            data[name] = value
        return cls(actor=actor, **data)

    def __post_init__(self):
        missing = [name for name in self._required if getattr(self, name) in (None, "")]
        if missing:
            raise ValidationError(
                f"Missing required field(s): {', '.join(missing)}",
                details={"missing_fields": missing},
            )


# ── Instantiation ────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class CreateFromTemplate(_Command):
    vendor_id: str | None = None
    template_id: str | None = None
    name: str | None = None
    description: str | None = None
    planned_start_date: date | None = None
    owner_id: str | None = None
    owner_name: str | None = None
    _required: tuple = _requires("vendor_id", "template_id")


@dataclass(frozen=True)
class CreateCustom(_Command):
    vendor_id: str | None = None
    name: str | None = None
    stages: list | None = None
    description: str | None = None
    planned_start_date: date | None = None
    owner_id: str | None = None
    owner_name: str | None = None
    _required: tuple = _requires("vendor_id", "name", "stages")


# ── Lifecycle ────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Start(_Command):
    pass


@dataclass(frozen=True)
class Complete(_Command):
    notes: str | None = None


@dataclass(frozen=True)
class Block(_Command):
    reason: str | None = None
    _required: tuple = _requires("reason")


@dataclass(frozen=True)
class Unblock(_Command):
    pass


@dataclass(frozen=True)
class Skip(_Command):
    reason: str | None = None


@dataclass(frozen=True)
class Cancel(_Command):
    reason: str | None = None


# ── Edits ────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ReassignOwner(_Command):
    owner_id: str | None = None
    owner_name: str | None = None
    _required: tuple = _requires("owner_name")


@dataclass(frozen=True)
class UpdateNotes(_Command):
    notes: str | None = None


@dataclass(frozen=True)
class Reschedule(_Command):
    planned_start_date: date | None = None
    _required: tuple = _requires("planned_start_date")


@dataclass(frozen=True)
class AddMilestone(_Command):
    name: str | None = None
    description: str | None = None
    due_date: date | None = None
    _required: tuple = _requires("name")
