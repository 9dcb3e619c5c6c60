"""
Shared fixtures: in-memory database, API client, users and storefronts.
"""
import os

os.environ.setdefault("ENABLE_SCHEDULER", "false")
os.environ.setdefault("LOG_TO_FILE", "false")
os.environ.setdefault("DATABASE_URL", "sqlite:///./test_backoffice.db")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import app.models  # noqa: F401  registers every table
from app.config import get_settings
from app.models.base import Base, get_db
from app.models.woocommerce import Tour, WooCommerceCredential
from app.services import auth_service
from app.services.site_config import WooSite

WOO_API_URL = "https://branshop.example/wp-json/wc/v3"


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def settings(monkeypatch):
    """Cached settings with every delay and external secret neutralised."""
    settings = get_settings()
    monkeypatch.setattr(settings, "woo_request_delay_seconds", 0.0)
    monkeypatch.setattr(settings, "woo_rate_limit_backoff_seconds", 0.0)
    monkeypatch.setattr(settings, "profit_delay_between_updates_ms", 0)
    monkeypatch.setattr(settings, "profit_delay_between_batches_ms", 0)
    monkeypatch.setattr(settings, "woocommerce_webhook_secret", None)
    monkeypatch.setattr(settings, "ad_spend_webhook_secret", None)
    monkeypatch.setattr(settings, "email_webhook_secret", None)
    monkeypatch.setattr(settings, "sendgrid_api_key", "SG.test-key")
    monkeypatch.setattr(settings, "google_drive_access_token", None)
    monkeypatch.setattr(settings, "stripe_secret_key", None)
    monkeypatch.setattr(settings, "stripe_publishable_key", None)
    return settings


@pytest.fixture
def client(db, settings):
    from app.main import app

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def _user_token(db, email: str, role: str) -> str:
    user = auth_service.create_user(db, email, "correct-horse-battery", role=role)
    return auth_service.create_session(db, user.id)


@pytest.fixture
def admin_headers(db):
    return {"Authorization": f"Bearer {_user_token(db, 'admin@example.com', 'admin')}"}


@pytest.fixture
def staff_headers(db):
    return {"Authorization": f"Bearer {_user_token(db, 'staff@example.com', 'staff')}"}


@pytest.fixture
def user_headers(db):
    return {"Authorization": f"Bearer {_user_token(db, 'viewer@example.com', 'user')}"}


@pytest.fixture
def bran_site(db):
    """One active storefront with its tour metadata stored."""
    db.add(Tour(
        name="Bran Castle Tour",
        timezone="Europe/Bucharest",
        official_ticketing_url="https://bran-castle.example/tickets",
        physical_address="Strada General Traian Mosoiu 24, Bran",
    ))
    db.add(WooCommerceCredential(
        site_name="BranCastle",
        tour_name="Bran Castle Tour",
        api_url=WOO_API_URL,
        website_url="https://branshop.example",
        consumer_key="ck_test",
        consumer_secret="cs_test",
        webhook_secret="whsec-bran",
        is_active=True,
    ))
    db.commit()
    return WooSite(
        site_name="BranCastle",
        tour_name="Bran Castle Tour",
        api_url=WOO_API_URL,
        website_url="https://branshop.example",
        consumer_key="ck_test",
        consumer_secret="cs_test",
        timezone="Europe/Bucharest",
        official_site_url="https://bran-castle.example/tickets",
        webhook_secret="whsec-bran",
    )


def build_woo_order(order_id: int, status: str = "processing", total: str = "100.00", **overrides) -> dict:
    """A WooCommerce order payload as returned by /wp-json/wc/v3/orders."""
    order = {
        "id": order_id,
        "status": status,
        "currency": "usd",
        "total": total,
        "date_created": "2025-06-01T10:15:00",
        "date_created_gmt": "2025-06-01T08:15:00",
        "payment_method": "stripe",
        "payment_method_title": "Credit Card (Stripe)",
        "transaction_id": f"pi_{order_id}",
        "billing": {
            "first_name": "Ana",
            "last_name": "Popescu",
            "email": "ana@example.com",
            "phone": "+40 700 000 000",
            "address_1": "Strada Lunga 5",
            "city": "Brasov",
            "state": "BV",
            "postcode": "500001",
            "country": "RO",
        },
        "line_items": [
            {
                "name": "Adult Ticket x2",
                "quantity": 1,
                "meta_data": [
                    {"key": "date", "value": "June 12, 2025"},
                    {"key": "time", "value": "Entry at 9:30 am"},
                ],
            }
        ],
    }
    order.update(overrides)
    return order


@pytest.fixture
def woo_order():
    """Factory for WooCommerce order payloads."""
    return build_woo_order
