"""
Pytest fixtures for stockledger backend tests.

Provides test database setup, location/product/inventory factories and a
test client with actor headers.
"""

from decimal import Decimal

import pytest

from stockledger import create_app
from stockledger.config import Config
from stockledger.extensions import db
from stockledger.models import (
    Customer,
    InventoryRecord,
    LoyaltyProgram,
    LoyaltyTier,
    Product,
    StockLocation,
    Supplier,
)
from stockledger.services import ledger_service


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    LEDGER_RETRY_BACKOFF = 0.0


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TestConfig)

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
def actor_headers():
    return {"X-Actor-Id": "7"}


# =============================================================================
# FACTORIES
# =============================================================================


@pytest.fixture
def make_location(db_session):
    def _make(code, location_type="STORE", *, is_active=True):
        location = StockLocation(code=code, name=f"Location {code}", location_type=location_type, is_active=is_active)
        db_session.add(location)
        db_session.commit()
        return location
    return _make


@pytest.fixture
def make_product(db_session):
    def _make(sku, name=None):
        product = Product(sku=sku, name=name or f"Product {sku}")
        db_session.add(product)
        db_session.commit()
        return product
    return _make


@pytest.fixture
def stock(db_session):
    """Put quantity on hand through the ledger so every record has a movement chain."""
    def _stock(product, location, quantity, *, cost_price_cents=500, retail_price_cents=1000) -> InventoryRecord:
        delta = ledger_service.apply_delta(
            product.id,
            location.id,
            "ADD",
            quantity,
            "OPENING_BALANCE",
            cost_price_cents=cost_price_cents,
            retail_price_cents=retail_price_cents,
        )
        db_session.commit()
        return delta.record
    return _stock


@pytest.fixture
def warehouse(make_location):
    return make_location("WH1", "WAREHOUSE")


@pytest.fixture
def store(make_location):
    return make_location("ST1", "STORE")


@pytest.fixture
def product(make_product):
    return make_product("SKU-1")


@pytest.fixture
def supplier(db_session):
    supplier = Supplier(name="Acme Supply")
    db_session.add(supplier)
    db_session.commit()
    return supplier


@pytest.fixture
def customer(db_session):
    customer = Customer(name="Pat Doe", email="pat@example.com", loyalty_points=0)
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture
def loyalty_program(db_session):
    """1 point per currency unit with Bronze (0), Silver (100) and Gold (1000) tiers."""
    program = LoyaltyProgram(name="Rewards", points_per_unit=Decimal("1"), is_active=True)
    db_session.add(program)
    db_session.flush()
    for name, required in (("Bronze", 0), ("Silver", 100), ("Gold", 1000)):
        db_session.add(LoyaltyTier(program_id=program.id, name=name, required_points=required))
    db_session.commit()
    return program
