"""
Shared pytest fixtures for the Stage Lifecycle Engine test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - make_stage / add_document / add_note: ORM helper factories
"""

import pytest

from stage_engine import create_app
from stage_engine.models import db as _db
from stage_engine.models.content import DiscussionNote, Document
from stage_engine.services.cache_service import invalidate_all
from stage_engine.services.stores import stage_store


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
        invalidate_all()
        yield
        invalidate_all()
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── ORM helper factories ─────────────────────────────────────────────────


@pytest.fixture()
def make_stage():
    """Create and commit a stage; ``current_round`` may start above 1."""

    def _make(*, current_round=1, status="not_started", allows_rounds=True,
              requires_approval=False, phase_id="phase-1", name="Draft Designs"):
        stage = stage_store.create(
            phase_id=phase_id,
            name=name,
            allows_rounds=allows_rounds,
            requires_approval=requires_approval,
        )
        stage.current_round = current_round
        stage.status = status
        _db.session.commit()
        return stage

    return _make


@pytest.fixture()
def add_document():
    def _add(stage, round_number, name=None):
        doc = Document(stage_id=stage.id, round_number=round_number,
                       name=name or f"drawing-r{round_number}.pdf")
        _db.session.add(doc)
        _db.session.commit()
        return doc

    return _add


@pytest.fixture()
def add_note():
    def _add(stage, round_number, content=None):
        note = DiscussionNote(stage_id=stage.id, round_number=round_number,
                              content=content or f"Comments on round {round_number}")
        _db.session.add(note)
        _db.session.commit()
        return note

    return _add
