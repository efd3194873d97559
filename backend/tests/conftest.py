"""
Pytest fixtures for TCMS backend tests.

Provides the in-memory test database, users for each role, citation
factories, and a test client.
"""

from decimal import Decimal

import pytest
from tcms import create_app
from tcms.extensions import db
from tcms.models import User, Citation


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'PAYMENT_FINALIZE_BACKOFF_SECONDS': 0,
        'RECEIPT_NUMBER_SOURCE': 'manual',
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


def _make_user(db_session, username: str, role: str, **kwargs) -> User:
    user = User(username=username, full_name=kwargs.pop("full_name", username.title()), role=role, **kwargs)
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def cashier(db_session):
    return _make_user(db_session, "cashier", "cashier", full_name="Maria Santos")


@pytest.fixture(scope='function')
def admin(db_session):
    return _make_user(db_session, "admin", "admin", full_name="Jose Reyes")


@pytest.fixture(scope='function')
def enforcer(db_session):
    return _make_user(db_session, "enforcer", "enforcer")


@pytest.fixture(scope='function')
def make_citation(db_session):
    """Factory: make_citation(total_fine="500.00", status="pending", ...)."""
    counter = {"n": 0}

    def _make(total_fine="500.00", status="pending", **kwargs) -> Citation:
        counter["n"] += 1
        citation = Citation(
            ticket_number=kwargs.pop("ticket_number", f"TCK-{counter['n']:05d}"),
            first_name=kwargs.pop("first_name", "Juan"),
            last_name=kwargs.pop("last_name", "Dela Cruz"),
            license_number=kwargs.pop("license_number", f"N01-{counter['n']:02d}-000123"),
            status=status,
            total_fine=Decimal(total_fine),
            **kwargs,
        )
        db_session.add(citation)
        db_session.commit()
        return citation

    return _make


@pytest.fixture(scope='function')
def citation(make_citation):
    return make_citation()


def auth_headers(user) -> dict:
    """Headers the upstream auth layer forwards for an authenticated user."""
    return {'X-User-Id': str(user.id)}


@pytest.fixture(scope='function')
def cashier_headers(cashier):
    return auth_headers(cashier)


@pytest.fixture(scope='function')
def admin_headers(admin):
    return auth_headers(admin)
