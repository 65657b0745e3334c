"""
Shared pytest fixtures for the certificate workflow test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - ca, admin, client_actor, uploader, other_client: resolved Actors
"""

import pytest

from certflow import create_app
from certflow.core.identity import Actor
from certflow.models import db as _db
from certflow.services.notification import NotificationService


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
    sender = NotificationService.get_sender()
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()
    # Tests may install a failing sender
    NotificationService.set_sender(sender)


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Actors ───────────────────────────────────────────────────────────────


@pytest.fixture()
def ca():
    return Actor(user_id="ca-1", role="ca", display_name="Cora Authority")


@pytest.fixture()
def admin():
    return Actor(user_id="admin-1", role="admin", display_name="Ada Admin")


@pytest.fixture()
def client_actor():
    return Actor(user_id="client-1", role="client", display_name="Acme Corp",
                 email="certs@acme.example")


@pytest.fixture()
def other_client():
    return Actor(user_id="client-2", role="client", display_name="Globex")


@pytest.fixture()
def uploader():
    return Actor(user_id="user-1", role="user", display_name="Uma Uploader")

