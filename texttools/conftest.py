# texttools/conftest.py
import os
import pytest
from unittest.mock import Mock, patch


ISOLATED_SETTINGS = (
    "STRIPE_SECRET_KEY",
    "STRIPE_WEBHOOK_SECRET",
    "STRIPE_MONTHLY_PRICE_ID",
    "STRIPE_YEARLY_PRICE_ID",
    "INTERNAL_API_KEY",
)


@pytest.fixture(scope="function", autouse=True)
def isolated_settings(monkeypatch):
    """
    Strip Stripe and internal-key configuration for every test.

    Tests opt back in through `billing_env` / `internal_key` or by
    monkeypatching settings directly.
    """
    from texttools.core.config import settings

    for name in ISOLATED_SETTINGS:
        monkeypatch.delenv(name, raising=False)
        monkeypatch.setattr(settings, name, None)
    monkeypatch.setattr(settings, "GATE_FAILURE_POLICY", "open")
    monkeypatch.setattr(settings, "BILLING_REJECT_STALE_EVENTS", False)
    monkeypatch.setattr(settings, "FREE_DETECTION_LIMIT", 5)
    monkeypatch.setattr(settings, "FREE_HUMANIZATION_LIMIT", 3)
    yield


@pytest.fixture(scope="function", autouse=True)
def reset_db():
    """
    Fresh schema for each test.

    Uses TEST_DATABASE_URL when set, otherwise a shared in-memory SQLite
    database, so the suite runs without Postgres.
    """
    from texttools.core.database import init_engine, reset_database, drop_all_tables

    init_engine(os.getenv("TEST_DATABASE_URL") or "sqlite://")
    reset_database()
    yield
    drop_all_tables()


@pytest.fixture
def billing_env(monkeypatch):
    """Configure Stripe keys and price ids (no network calls are made)."""
    monkeypatch.setenv("STRIPE_SECRET_KEY", "sk_test_123")
    monkeypatch.setenv("STRIPE_WEBHOOK_SECRET", "whsec_test123")
    monkeypatch.setenv("STRIPE_MONTHLY_PRICE_ID", "price_monthly")
    monkeypatch.setenv("STRIPE_YEARLY_PRICE_ID", "price_yearly")
    yield


@pytest.fixture
def internal_key(monkeypatch):
    monkeypatch.setenv("INTERNAL_API_KEY", "internal-secret")
    yield "internal-secret"


@pytest.fixture
def mock_provider(billing_env):
    """Replace the Stripe provider returned by the billing service."""
    with patch("texttools.features.billing.service.get_provider") as mock_get:
        provider = Mock()
        mock_get.return_value = provider
        yield provider
