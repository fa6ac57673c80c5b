"""
Shared pytest fixtures for the Procurement Workflow Platform test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - engine: the app's WorkflowEngine
    - template: a three-stage template (5 / 3 / 2 days)
    - actor: a named Actor for attribution assertions
    - template_factory: flush-only builder for extra templates
"""

import pytest

from app import create_app
from app.models import db as _db
from app.models.procurement_workflow import WorkflowTemplate
from app.services.workflow_activity_log import Actor

PROJECT_ID = "proj-0001"
VENDOR_ID = "vendor-0001"


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture()
def engine(app):
    return app.extensions["workflow_engine"]


@pytest.fixture()
def actor():
    return Actor(id="user-42", name="Dana Buyer")


# ── Convenience fixtures ─────────────────────────────────────────────────


def _make_template(name="Three Step", stages=None, procurement_type="software", is_active=True):
    """Create and flush a WorkflowTemplate row."""
    if stages is None:
        stages = [
            {"name": "Negotiation", "order": 1, "target_days": 5,
             "milestones": ["Terms agreed", "Pricing signed"]},
            {"name": "Legal", "order": 2, "target_days": 3, "milestones": ["Redlines closed"]},
            {"name": "Signing", "order": 3, "target_days": 2, "milestones": []},
        ]
    tpl = WorkflowTemplate(
        name=name,
        procurement_type=procurement_type,
        stages=stages,
        is_active=is_active,
    )
    _db.session.add(tpl)
    _db.session.flush()
    return tpl


@pytest.fixture()
def template():
    """Return a committed three-stage template (5 / 3 / 2 days)."""
    tpl = _make_template()
    _db.session.commit()
    return tpl


@pytest.fixture()
def template_factory():
    """Return the flush-only template builder for tests that need several."""
    return _make_template
