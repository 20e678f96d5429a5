"""
Pytest fixtures for salon POS backend tests.

Provides the application on an in-memory database, a per-test clean
session, and builders for stock batches, service mappings and bills.
"""

from datetime import datetime, timedelta

import pytest

from salon_pos import create_app
from salon_pos.config import TestingConfig
from salon_pos.extensions import db
from salon_pos.identity import Actor, Witness
from salon_pos.models import ServiceProductMapping, StockBatch, UsageType
from salon_pos.services import billing_service


BRANCH = "branch-a"
OTHER_BRANCH = "branch-b"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TestingConfig)

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


@pytest.fixture
def cashier():
    return Actor(id="staff-1", name="Rita Receptionist")


@pytest.fixture
def manager():
    return Actor(id="manager-1", name="Mia Manager")


@pytest.fixture
def witness():
    return Witness(id="manager-2", email="m2@salon.test", name="Second Manager")


@pytest.fixture
def make_batch(db_session):
    """Create a batch received `days_ago` days ago."""
    def _make(
        product_id="P-SHAMPOO",
        quantity=10,
        *,
        branch_id=BRANCH,
        usage_type=UsageType.OTC,
        days_ago=0,
        unit_cost_cents=None,
        batch_number=None,
    ):
        batch = StockBatch(
            branch_id=branch_id,
            product_id=product_id,
            batch_number=batch_number,
            usage_type=usage_type,
            received_quantity=quantity,
            remaining_quantity=quantity,
            unit_cost_cents=unit_cost_cents,
            received_at=datetime(2026, 1, 1) + timedelta(days=30 - days_ago),
        )
        db_session.add(batch)
        db_session.commit()
        return batch
    return _make


@pytest.fixture
def map_service(db_session):
    def _map(service_id, product_id, quantity_per_service=1, product_name=None):
        mapping = ServiceProductMapping(
            service_id=service_id,
            product_id=product_id,
            product_name=product_name,
            quantity_per_service=quantity_per_service,
        )
        db_session.add(mapping)
        db_session.commit()
        return mapping
    return _map


def service_line(item_id="S-CUT", price=5000, quantity=1, staff_id="stylist-1"):
    return {
        "type": "service",
        "item_id": item_id,
        "name": f"Service {item_id}",
        "unit_price_cents": price,
        "quantity": quantity,
        "staff_id": staff_id,
        "staff_name": "Sam Stylist",
    }


def product_line(item_id="P-SHAMPOO", price=1500, quantity=1):
    return {
        "type": "product",
        "item_id": item_id,
        "name": f"Product {item_id}",
        "unit_price_cents": price,
        "quantity": quantity,
    }


def bill_payload(lines=None, **overrides):
    payload = {
        "branch_id": BRANCH,
        "client_id": "client-1",
        "client_name": "Carla Client",
        "payment_method": "cash",
        "lines": lines if lines is not None else [service_line()],
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def paid_bill(db_session, cashier):
    """A committed PAID bill for client-1 at branch-a."""
    def _create(**overrides):
        return billing_service.create_bill(bill_payload(**overrides), cashier).bill
    return _create


def actor_headers(actor_id="staff-1", name="Rita Receptionist") -> dict:
    """Helper to create actor identity headers."""
    return {"X-Actor-Id": actor_id, "X-Actor-Name": name}
