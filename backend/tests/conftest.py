"""
Pytest fixtures for devicestock backend tests.

Provides test database setup, tenant fixtures, actors and item factories.
"""

import itertools

import pytest

from devicestock import create_app
from devicestock.extensions import db
from devicestock.identity import Actor
from devicestock.models import Company
from devicestock.services import daily_stock_service, lifecycle_service


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'LOG_LEVEL': 'DEBUG',
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


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


@pytest.fixture(scope='function')
def company(db_session):
    """Company A (first tenant)."""
    company = Company(name="Company A - Acme Devices", code="ACME", is_active=True)
    db_session.add(company)
    db_session.commit()
    return company


@pytest.fixture(scope='function')
def other_company(db_session):
    """Company B (second tenant)."""
    company = Company(name="Company B - Beta Phones", code="BETA", is_active=True)
    db_session.add(company)
    db_session.commit()
    return company


@pytest.fixture(scope='function')
def actor(company):
    return Actor(id=1, name="Alice Admin", email="alice@acme.test", company_id=company.id)


@pytest.fixture(scope='function')
def other_actor(other_company):
    return Actor(id=2, name="Bob Beta", email="bob@beta.test", company_id=other_company.id)


@pytest.fixture(scope='function')
def open_session(db_session, company, actor):
    """Today's daily stock session for company A, opened."""
    return daily_stock_service.open_day(company.id, actor)


@pytest.fixture(scope='function')
def make_item(db_session, actor):
    """Factory: create an IN_STOCK phone for company A."""
    serials = itertools.count(1)

    def _make(**overrides):
        payload = {
            "serial_number": f"SN-{next(serials):05d}",
            "device_type": "PHONE",
            "brand": "Apple",
            "model_name": "iPhone 13",
            "name": "iPhone 13 128GB",
            "color": "Midnight",
            "condition": "Used - Good",
            "specifications": {"storage_capacity": "128GB", "battery_health": "88%"},
        }
        payload.update(overrides)
        return lifecycle_service.create_item(actor, payload)

    return _make


@pytest.fixture(scope='function')
def make_available_item(make_item, actor):
    """Factory: create an item and release it for sale."""

    def _make(purchase_price_cents=20000, selling_price_cents=50000, **overrides):
        item = make_item(**overrides)
        return lifecycle_service.make_available(
            item.id, actor, purchase_price_cents, selling_price_cents,
        )

    return _make
