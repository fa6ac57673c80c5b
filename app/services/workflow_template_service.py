"""
Procurement Workflow — Template Store.

Read-only catalogue of workflow blueprints.  The engine only ever sees a
``TemplateBlueprint`` (an immutable copy of the template's stage list), so a
template edited after instantiation can never reach existing workflows.

Also owns the default catalogue seeded by ``flask seed-workflow-templates``:
    - Standard Software Procurement   (software, 5 stages)
    - SaaS Subscription               (saas, 4 stages)
    - Professional Services           (services, 4 stages)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import select

from app.core.exceptions import TemplateNotFoundError, ValidationError
from app.models import db
from app.models.procurement_workflow import PROCUREMENT_TYPES, WorkflowTemplate
from app.services.workflow_scheduler import StageSpec, validate_durations

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TemplateBlueprint:
    id: str
    name: str
    description: str | None
    procurement_type: str
    stages: tuple[StageSpec, ...]


def normalise_stage_specs(raw_stages, *, source: str = "stages") -> list[StageSpec]:
    """Turn a JSON-ish list of stage dicts into ordered ``StageSpec`` records.

    Orders must be either all omitted (assigned positionally) or exactly the
    contiguous sequence 1..N.  Milestones may be plain names or
    ``{"name": ...}`` dicts.

    Raises:
        ValidationError: empty list, missing names, bad orders or durations.
    """
    if not raw_stages:
        raise ValidationError(f"{source} must contain at least one stage")
    if not isinstance(raw_stages, list):
        raise ValidationError(f"{source} must be a list of stages")

    specs = []
    for index, raw in enumerate(raw_stages):
        if not isinstance(raw, dict):
            raise ValidationError(f"{source}[{index}] must be an object")
        name = raw.get("name")
        if name is not None and not isinstance(name, str):
            raise ValidationError(f"{source}[{index}].name must be a string")
        name = (name or "").strip()
        if not name:
            raise ValidationError(f"{source}[{index}].name is required")
        description = raw.get("description")
        if description is not None and not isinstance(description, str):
            raise ValidationError(f"{source}[{index}].description must be a string")
        order = raw.get("order")
        if order is not None and (isinstance(order, bool) or not isinstance(order, int)):
            raise ValidationError(f"{source}[{index}].order must be an integer")

        raw_milestones = raw.get("milestones") or []
        if not isinstance(raw_milestones, list):
            raise ValidationError(f"{source}[{index}].milestones must be a list")
        milestones = []
        for m in raw_milestones:
            m_name = m.get("name") if isinstance(m, dict) else m
            if not isinstance(m_name, str) or not m_name.strip():
                raise ValidationError(f"{source}[{index}] has a milestone without a name")
            milestones.append(m_name.strip())

        specs.append(StageSpec(
            name=name,
            description=description,
            order=order,
            target_days=raw.get("target_days"),
            milestones=tuple(milestones),
        ))

    validate_durations(specs)

    orders = [s.order for s in specs]
    if all(o is None for o in orders):
        return [
            StageSpec(s.name, s.target_days, s.description, i, s.milestones)
            for i, s in enumerate(specs, start=1)
        ]
    if any(o is None for o in orders):
        raise ValidationError(f"{source}: either every stage has an order or none does")
    if sorted(orders) != list(range(1, len(specs) + 1)):
        raise ValidationError(
            f"{source}: stage orders must be the contiguous sequence 1..{len(specs)}",
            details={"orders": orders},
        )
    return sorted(specs, key=lambda s: s.order)


class TemplateStore:
    """SQLAlchemy-backed, read-only view of ``WorkflowTemplate`` rows."""

    def get_template(self, template_id: str) -> TemplateBlueprint:
        """Load an active template as an immutable blueprint.

        Raises:
            TemplateNotFoundError: unknown or inactive template id.
        """
        template = db.session.get(WorkflowTemplate, template_id) if template_id else None
        if template is None or not template.is_active:
            raise TemplateNotFoundError(template_id)
        stages = normalise_stage_specs(template.stages, source=f"template {template.name!r}")
        return TemplateBlueprint(
            id=template.id,
            name=template.name,
            description=template.description,
            procurement_type=template.procurement_type,
            stages=tuple(stages),
        )

    def list_templates(self, procurement_type: str | None = None) -> list[WorkflowTemplate]:
        """Active templates, defaults first, then by name."""
        stmt = select(WorkflowTemplate).where(WorkflowTemplate.is_active.is_(True))
        if procurement_type:
            if procurement_type not in PROCUREMENT_TYPES:
                raise ValidationError(
                    f"Unknown procurement_type '{procurement_type}'",
                    details={"allowed": sorted(PROCUREMENT_TYPES)},
                )
            stmt = stmt.where(WorkflowTemplate.procurement_type == procurement_type)
        stmt = stmt.order_by(WorkflowTemplate.is_default.desc(), WorkflowTemplate.name)
        return list(db.session.execute(stmt).scalars())

    def get_template_row(self, template_id: str) -> WorkflowTemplate:
        """Catalogue row for display; inactive templates are not found, as in ``get_template``."""
        template = db.session.get(WorkflowTemplate, template_id) if template_id else None
        if template is None or not template.is_active:
            raise TemplateNotFoundError(template_id)
        return template


# ── Default catalogue ────────────────────────────────────────────────────────

DEFAULT_TEMPLATES = [
    {
        "name": "Standard Software Procurement",
        "description": "Standard workflow for software procurement from vendor selection to go-live",
        "procurement_type": "software",
        "stages": [
            {
                "name": "Contract Negotiation", "order": 1, "target_days": 14,
                "description": "Finalize commercial terms and agreements",
                "milestones": [
                    "Commercial terms agreed",
                    "Pricing schedule finalized",
                    "Security addendum signed",
                    "SLA agreement signed",
                    "Data processing agreement signed",
                ],
            },
            {
                "name": "Reference & Background Checks", "order": 2, "target_days": 10,
                "description": "Validate vendor through references and due diligence",
                "milestones": [
                    "Reference calls completed (3-5)",
                    "Financial stability confirmed",
                    "Compliance verification done",
                    "Insurance certificates received",
                ],
            },
            {
                "name": "Legal Review", "order": 3, "target_days": 7,
                "description": "Legal review and approval of contract",
                "milestones": [
                    "Legal review completed",
                    "Redlines addressed",
                    "Regulatory approval (if required)",
                    "Final contract prepared",
                ],
            },
            {
                "name": "Contract Execution", "order": 4, "target_days": 5,
                "description": "Sign and execute the contract",
                "milestones": [
                    "Internal sign-off obtained",
                    "Contract signed by both parties",
                    "Purchase order issued",
                    "Contract filed and archived",
                ],
            },
            {
                "name": "Onboarding Kickoff", "order": 5, "target_days": 7,
                "description": "Initiate vendor onboarding and implementation",
                "milestones": [
                    "Kickoff meeting scheduled",
                    "Implementation plan agreed",
                    "Success metrics defined",
                    "Governance structure established",
                    "Communication channels set up",
                ],
            },
        ],
    },
    {
        "name": "SaaS Subscription",
        "description": "Streamlined workflow for SaaS subscription procurement",
        "procurement_type": "saas",
        "stages": [
            {
                "name": "Subscription Agreement", "order": 1, "target_days": 7,
                "description": "Review and agree subscription terms",
                "milestones": [
                    "Subscription terms reviewed",
                    "Pricing tier confirmed",
                    "User count agreed",
                    "Renewal terms confirmed",
                ],
            },
            {
                "name": "Security & Compliance", "order": 2, "target_days": 5,
                "description": "Verify security and compliance requirements",
                "milestones": [
                    "SOC 2 report reviewed",
                    "GDPR compliance confirmed",
                    "Data residency confirmed",
                    "SSO integration confirmed",
                ],
            },
            {
                "name": "Contract Sign-off", "order": 3, "target_days": 3,
                "description": "Final approval and signature",
                "milestones": [
                    "Budget approval obtained",
                    "Contract signed",
                    "Payment processed",
                ],
            },
            {
                "name": "Account Setup", "order": 4, "target_days": 5,
                "description": "Set up accounts and integrations",
                "milestones": [
                    "Admin account created",
                    "Users provisioned",
                    "SSO configured",
                    "Initial training scheduled",
                ],
            },
        ],
    },
    {
        "name": "Professional Services",
        "description": "Workflow for professional services and consulting engagements",
        "procurement_type": "services",
        "stages": [
            {
                "name": "Statement of Work", "order": 1, "target_days": 10,
                "description": "Finalize scope and deliverables",
                "milestones": [
                    "Scope definition complete",
                    "Deliverables agreed",
                    "Timeline confirmed",
                    "Resource plan approved",
                    "Acceptance criteria defined",
                ],
            },
            {
                "name": "Commercial Agreement", "order": 2, "target_days": 7,
                "description": "Agree commercial terms",
                "milestones": [
                    "Rate card agreed",
                    "Payment terms confirmed",
                    "Expense policy agreed",
                    "Change request process defined",
                ],
            },
            {
                "name": "Contract Execution", "order": 3, "target_days": 5,
                "description": "Execute the contract",
                "milestones": [
                    "MSA signed (if required)",
                    "SOW signed",
                    "NDA in place",
                    "PO issued",
                ],
            },
            {
                "name": "Engagement Kickoff", "order": 4, "target_days": 5,
                "description": "Start the engagement",
                "milestones": [
                    "Kickoff meeting held",
                    "Team introductions complete",
                    "Access provisioned",
                    "Project plan baselined",
                ],
            },
        ],
    },
]


def seed_default_templates() -> int:
    """Insert any default template whose name is not yet present.

    Idempotent.  Uses ``flush`` so the caller keeps transaction control.

    Returns:
        Number of templates created.
    """
    existing = set(db.session.execute(select(WorkflowTemplate.name)).scalars())
    created = 0
    for definition in DEFAULT_TEMPLATES:
        if definition["name"] in existing:
            continue
        normalise_stage_specs(definition["stages"], source=definition["name"])
        db.session.add(WorkflowTemplate(
            name=definition["name"],
            description=definition["description"],
            procurement_type=definition["procurement_type"],
            stages=definition["stages"],
            is_default=True,
            is_active=True,
        ))
        created += 1
    db.session.flush()
    if created:
        logger.info("Seeded %d default workflow templates", created)
    return created
