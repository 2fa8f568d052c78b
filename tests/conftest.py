import asyncio

import pytest

from storefront.core.config import get_settings
from storefront.services.admin import reset_admin_policy
from storefront.services.auth import InMemoryAuthService, reset_auth_service
from storefront.services.backend import reset_backend_client
from storefront.services.backend.mock import InMemoryBackendClient
from storefront.services.cart import reset_cart_store
from storefront.services.profiles import ProfileService
from storefront.services.realtime import reset_realtime_service
from storefront.services.seed import initialize_database
from storefront.session import reset_session_registry


def reset_providers():
    reset_session_registry()
    reset_realtime_service()
    reset_auth_service()
    reset_backend_client()
    reset_cart_store()
    reset_admin_policy()
    get_settings.cache_clear()


@pytest.fixture(autouse=True)
def development_env(monkeypatch):
    monkeypatch.setattr("storefront.services.auth.mock.BCRYPT_ROUNDS", 4)
    monkeypatch.setenv("ENV_MODE", "development")
    monkeypatch.setenv("SEED_ON_STARTUP", "true")
    monkeypatch.setenv("REDIS_URL", "redis://localhost:6399/0")
    for name in ("BACKEND_PROVIDER", "BACKEND_URL", "BACKEND_ANON_KEY", "BACKEND_SERVICE_KEY", "ADMIN_POLICY",
                 "DEMO_ADMIN_EMAIL", "DEMO_ADMIN_PASSWORD", "LOYALTY_RATE"):
        monkeypatch.delenv(name, raising=False)
    reset_providers()
    yield
    reset_providers()


@pytest.fixture
def backend():
    """In-memory backend holding the seed menu."""
    client = InMemoryBackendClient()
    asyncio.run(initialize_database(client))
    return client


@pytest.fixture
def auth():
    return InMemoryAuthService()


@pytest.fixture
def products(backend):
    """Seed products keyed by name."""
    return {row["name"]: row for row in backend.rows("products")}


@pytest.fixture
def customer(backend):
    """Profile of a customer with a saved delivery address."""
    return asyncio.run(ProfileService(backend).create({
        "id": "user-1",
        "email": "jane@example.com",
        "full_name": "Jane Doe",
        "address": "12 MG Road, Bengaluru",
        "pincode": "560001",
    }))
