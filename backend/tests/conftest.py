"""
Pytest fixtures for modulestore tests.

Provides the application on an in-memory database, a per-test table wipe,
a controllable clock and builders for the contacts / deals schemas used
across the suite.
"""

from datetime import datetime, timedelta

import pytest

from modulestore import create_app
from modulestore.config import TestConfig
from modulestore.extensions import db
from modulestore.services import module_service, record_service, relationship_service


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TestConfig)

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    # Clear all data but keep schema
    meta = db.metadata
    for table in reversed(meta.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()

    yield db.session

    # Cleanup after test
    db.session.rollback()


@pytest.fixture(scope='function')
def clock():
    return FakeClock(datetime(2026, 1, 15, 9, 0, 0))


CONTACTS_SCHEMA = {
    "name": "Contacts",
    "singular_name": "Contact",
    "blocks": [
        {
            "name": "Basic Information",
            "fields": [
                {"type": "text", "label": "Name", "is_searchable": True},
                {"type": "email", "label": "Email", "is_required": True, "is_searchable": True},
                {
                    "type": "select",
                    "label": "Status",
                    "options": [
                        {"label": "Active", "value": "active", "is_default": True},
                        {"label": "Inactive", "value": "inactive"},
                    ],
                },
            ],
        },
        {
            "name": "Details",
            "fields": [
                {"type": "number", "label": "Age", "validation_rules": {"min": 0, "max": 150}},
                {"type": "phone", "label": "Phone"},
                {"type": "checkbox", "label": "Subscribed"},
            ],
        },
    ],
}

DEALS_SCHEMA = {
    "name": "Deals",
    "singular_name": "Deal",
    "blocks": [
        {
            "name": "Deal",
            "fields": [
                {"type": "text", "label": "Title", "is_searchable": True},
                {"type": "currency", "label": "Amount"},
                {"type": "lookup", "label": "Contact", "api_name": "contact_id"},
            ],
        },
    ],
}


@pytest.fixture(scope='function')
def contacts(db_session):
    """Contacts module: name, required email, status select (default active), age, phone, subscribed."""
    return module_service.create_module(data=CONTACTS_SCHEMA)


@pytest.fixture(scope='function')
def deals(db_session):
    """Deals module: title, amount, contact_id."""
    return module_service.create_module(data=DEALS_SCHEMA)


def make_relationship(from_module, to_module, *, api_name, type="one_to_many", cascade=False, **settings):
    """Declare from_module -> to_module with the given api_name."""
    return relationship_service.create_relationship(data={
        "from_module_id": from_module.id,
        "to_module_id": to_module.id,
        "name": api_name.replace("_", " ").title(),
        "api_name": api_name,
        "type": type,
        "settings": {"cascade_delete": cascade, **settings},
    })


def make_records(module, rows, clock):
    """Create one record per row, one second apart."""
    created = []
    for row in rows:
        clock.advance(seconds=1)
        created.append(record_service.create_record(module_id=module.id, data=row, clock=clock))
    return created
