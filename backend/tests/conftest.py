"""
Pytest fixtures for Stitchdesk backend tests.

Provides test database setup, order fixtures, and test client.
"""

import pytest
from stitchdesk import create_app
from stitchdesk.extensions import db
from stitchdesk.services import order_service


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'INVOICE_DEPOSIT_PERCENT': 50,
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


@pytest.fixture(scope='function')
def order(db_session):
    """
    Order with two garments:
    - "Dress": Hem $40.00, Bustle $60.00
    - "Jacket": Sleeves $25.00
    """
    created = order_service.create_order({
        "client_name": "Grace Hopper",
        "client_email": "grace@example.com",
        "garments": [
            {
                "name": "Dress",
                "services": [
                    {"name": "Hem", "unit_price_cents": 4000},
                    {"name": "Bustle", "unit_price_cents": 6000},
                ],
            },
            {
                "name": "Jacket",
                "services": [{"name": "Sleeves", "unit_price_cents": 2500}],
            },
        ],
    })
    return db_session.get(type(created), created.id)


def garment_named(order, name):
    """Helper to find a garment on an order by name."""
    for garment in order.garments:
        if garment.name == name:
            return garment
    raise AssertionError(f"No garment named {name}")


def service_named(garment, name):
    """Helper to find a service on a garment by name."""
    for service in garment.services:
        if service.name == name:
            return service
    raise AssertionError(f"No service named {name}")
