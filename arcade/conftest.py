# arcade/conftest.py
import os
import sys
from pathlib import Path
from unittest.mock import Mock

import pytest

# Add project root to PYTHONPATH
PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

os.environ.setdefault("SKIP_ENV_VALIDATION", "1")

from arcade.core.config import settings
from arcade.core.database import build_engine, create_all_tables
from arcade.core.ratelimit import limiter
from arcade.features.billing.provider import CheckoutSession
from arcade.features.saves.store import SqlSaveStore
from arcade.tests.mocks import CONTINUE_SECRET, JWT_SECRET, SAVE_SECRET, WEBHOOK_SECRET, make_jwt


@pytest.fixture(autouse=True)
def configured_secrets(monkeypatch):
    """Every test runs with known signing secrets and default credit settings."""
    monkeypatch.setattr(settings, "AUTH_JWT_SECRET", JWT_SECRET)
    monkeypatch.setattr(settings, "SAVE_HMAC_SECRET", SAVE_SECRET)
    monkeypatch.setattr(settings, "CONTINUE_TOKEN_SECRET", CONTINUE_SECRET)
    monkeypatch.setattr(settings, "STRIPE_WEBHOOK_SECRET", WEBHOOK_SECRET)
    monkeypatch.setattr(settings, "FREE_CREDITS_DEFAULT", 3)
    monkeypatch.setattr(settings, "CREDITS_PER_PURCHASE", 10)
    monkeypatch.setattr(settings, "CHECKOUT_ALLOWED_HOSTS", "game.example")
    yield


@pytest.fixture(autouse=True)
def reset_rate_limiter():
    limiter.reset()
    yield
    limiter.reset()


@pytest.fixture
def engine():
    """Fresh in-memory SQLite store per test."""
    eng = build_engine("sqlite+pysqlite://")
    create_all_tables(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def saves(engine):
    return SqlSaveStore(engine)


@pytest.fixture
def payment_provider():
    """Mock payment provider; checkout returns a canned session."""
    provider = Mock()
    provider.create_checkout_session.return_value = CheckoutSession(
        url="https://checkout.stripe.com/c/pay/cs_test_123",
        session_id="cs_test_123",
    )
    return provider


@pytest.fixture
def client(engine, payment_provider):
    """TestClient wired to the in-memory store and the mock provider."""
    from fastapi.testclient import TestClient

    from arcade.api.deps import get_payment_provider, get_store
    from arcade.main import app

    app.dependency_overrides[get_store] = lambda: engine
    app.dependency_overrides[get_payment_provider] = lambda: payment_provider
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    """Build Authorization headers for a user id."""

    def _headers(user_id: str = "user_alice", email: str = None):
        return {"Authorization": f"Bearer {make_jwt(user_id, email)}"}

    return _headers
