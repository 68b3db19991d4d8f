"""
Test configuration and fixtures for Storefront
"""
import os

from cryptography.fernet import Fernet

# Configuration is read once on first import, so the environment comes first
os.environ["SECRET_KEY"] = "test-secret-key-for-storefront"
os.environ["ENCRYPTION_MASTER_KEY"] = Fernet.generate_key().decode()
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["LOG_TO_FILE"] = "false"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ.pop("SELLBRITE_API_KEY", None)
os.environ.pop("SELLBRITE_API_SECRET", None)

from datetime import datetime
from typing import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from storefront.api.main import app
from storefront.auth.jwt_manager import create_access_token
from storefront.database.connection import get_db
from storefront.database.models import Affiliate, Base
from storefront.marketplaces.base import (
    MarketplaceClient,
    MarketplaceCredentials,
    MarketplaceOrderInput,
    MarketplaceOrderItemInput,
    ProviderOrdersResult,
)
from storefront.services.marketplace_store import ChannelInput, MarketplaceOrderStore


# =============================================================================
# Test Database Setup
# =============================================================================

@pytest.fixture(scope="function")
def engine():
    """In-memory SQLite engine shared by every connection of a test"""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def _foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def db_session(engine) -> Generator[Session, None, None]:
    """Create a new database session for each test"""
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


# =============================================================================
# FastAPI Test Client
# =============================================================================

@pytest.fixture(scope="function")
def client(db_session) -> TestClient:
    """Create FastAPI test client with overridden dependencies"""

    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture
def admin_headers() -> dict:
    token = create_access_token("admin-1", "admin", email="admin@example.com", name="Store Admin")
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def customer_headers() -> dict:
    token = create_access_token("user-1", "customer", email="jane@example.com", name="Jane Doe")
    return {"Authorization": f"Bearer {token}"}


# =============================================================================
# Test Data Fixtures
# =============================================================================

@pytest.fixture
def affiliate(db_session) -> Affiliate:
    """Active percentage affiliate at 10%"""
    affiliate = Affiliate(
        user_id="user-aff",
        affiliate_code="JANE10",
        company_name="Jane's Filters Blog",
        website="https://janes-filters.example.com",
        promotional_methods=["blog"],
        commission_type="percentage",
        commission_rate=10.0,
        status="active",
        minimum_payout_threshold=50.0,
    )
    db_session.add(affiliate)
    db_session.commit()
    db_session.refresh(affiliate)
    return affiliate


@pytest.fixture
def channel(db_session):
    """Active Amazon channel with stored Sellbrite credentials"""
    return MarketplaceOrderStore(db_session).create_channel(
        ChannelInput(
            name="Amazon US",
            slug="amazon-us",
            platform="amazon",
            status="active",
            sync_frequency_minutes=15,
            credentials={"apiKey": "sb-key", "apiSecret": "sb-secret", "sellerId": "A1B2C3"},
        )
    )


def make_order(external_id: str = "111-0001", **overrides) -> MarketplaceOrderInput:
    """Normalized order with one line item"""
    values = dict(
        external_id=external_id,
        external_number=f"#{external_id}",
        purchase_date=datetime(2025, 1, 15, 12, 0, 0),
        status="pending",
        financial_status="paid",
        customer_name="John Buyer",
        customer_email="john@example.com",
        subtotal=40.0,
        shipping=5.0,
        tax=3.2,
        total=48.2,
        marketplace_fees=6.0,
        items=[
            MarketplaceOrderItemInput(
                title="MERV 13 Air Filter 20x25x1",
                sku="AF-20251",
                quantity=2,
                unit_price=20.0,
                total_price=40.0,
                marketplace_fee=6.0,
            )
        ],
    )
    values.update(overrides)
    return MarketplaceOrderInput(**values)


class FakeMarketplaceClient(MarketplaceClient):
    """Provider returning a fixed set of orders"""

    def __init__(self, orders=None, warnings=None, error: Exception = None):
        super().__init__(MarketplaceCredentials())
        self.orders = orders or []
        self.warnings = warnings or []
        self.error = error
        self.calls = []

    @property
    def marketplace_name(self) -> str:
        return "fake"

    def fetch_orders(self, options):
        self.calls.append(options)
        if self.error:
            raise self.error
        return ProviderOrdersResult(orders=list(self.orders), warnings=list(self.warnings))

    def test_connection(self):
        return {"success": self.error is None, "marketplace": self.marketplace_name}


@pytest.fixture
def order_factory():
    return make_order


@pytest.fixture
def fake_client():
    return FakeMarketplaceClient
