"""
Test configuration and fixtures for the ChooseMyPower routing API test suite.

Tests run against an in-memory SQLite database; the environment is set
before the application package is imported so the engine binds to it.
"""

import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["PRICING_API_RETRY_BACKOFF_SECONDS"] = "0"
os.environ.setdefault("API_KEYS", "test-key-123,admin-key-456")
os.environ.setdefault("LOG_FORMAT", "console")

from datetime import datetime
from typing import Any, Dict, List, Optional

import pytest
from fastapi.testclient import TestClient

from choosemypower.config import settings
from choosemypower.database import Base, SessionLocal, engine, get_db
from choosemypower.errors import UpstreamFetchError
from choosemypower.main import app
from choosemypower.models.zip_mapping import ZipMapping
from choosemypower.ratelimit import limiter
from choosemypower.services.plan_cache import inflight_fetches
from choosemypower.services.pricing_api import get_pricing_client


DOMAIN_MARKER_PATTERNS = {
    "api": ("tests/api", "_api"),
    "routing": ("tests/routing", "zip_routing"),
    "cache": ("tests/cache", "plan_cache", "pricing_api"),
    "analytics": ("tests/analytics", "analytics", "api_log"),
}

DALLAS_DUNS = "1039940674000"


class FakePricingClient:
    """Stand-in for PricingAPIClient that records calls"""

    def __init__(self, plans: Optional[List[Dict[str, Any]]] = None, error: Optional[Exception] = None):
        self.plans = plans if plans is not None else sample_plans(3)
        self.error = error
        self.calls: List[Dict[str, Any]] = []
        self.last_status: Optional[int] = None

    async def fetch_plans(self, tdsp_duns: str, usage_params: Dict[str, Any]):
        self.calls.append({"tdsp_duns": tdsp_duns, **usage_params})
        if self.error is not None:
            self.last_status = getattr(self.error, "upstream_status", None)
            raise self.error
        self.last_status = 200
        return [dict(plan) for plan in self.plans]

    async def health_check(self) -> bool:
        return self.error is None


def sample_plans(count: int, base_rate: float = 11.5) -> List[Dict[str, Any]]:
    return [
        {
            "id": f"plan-{i}",
            "name": f"Simple Saver {i}",
            "provider": {"name": f"Provider {i}", "logo": None, "rating": 4, "review_count": 10},
            "pricing": {"rate": base_rate + i, "total": 100.0 + i},
        }
        for i in range(count)
    ]


@pytest.fixture(scope="function")
def db_session():
    """Fresh schema per test"""
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        inflight_fetches.clear()


@pytest.fixture(scope="function")
def api_key() -> str:
    """Provide a valid API key for authenticated requests"""
    keys = settings.get_api_keys()
    if not keys:
        raise RuntimeError("No API keys configured for tests")
    return keys[0]


@pytest.fixture(scope="function")
def fake_pricing_client() -> FakePricingClient:
    return FakePricingClient()


@pytest.fixture(scope="function")
def client(db_session, fake_pricing_client) -> TestClient:
    """FastAPI TestClient bound to the test session and fake pricing client"""

    def _override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_pricing_client] = lambda: fake_pricing_client
    limiter.reset()

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.pop(get_db, None)
    app.dependency_overrides.pop(get_pricing_client, None)


@pytest.fixture(scope="function")
def add_mapping(db_session):
    """Factory inserting ZipMapping rows"""

    def _add(zip_code: str = "75201", city_slug: str = "dallas-tx", **overrides) -> ZipMapping:
        values = {
            "zip_code": zip_code,
            "city_slug": city_slug,
            "city_name": city_slug.rsplit("-", 1)[0].replace("-", " ").title(),
            "county_name": "Dallas",
            "tdsp_territory": "Oncor Electric Delivery",
            "tdsp_duns": DALLAS_DUNS,
            "is_deregulated": True,
            "market_zone": "North",
            "priority": 1.0,
            "data_source": "USPS",
            "created_at": datetime(2026, 1, 1),
            "updated_at": datetime(2026, 1, 1),
        }
        values.update(overrides)
        row = ZipMapping(**values)
        db_session.add(row)
        db_session.commit()
        return row

    return _add


@pytest.fixture(scope="function")
def upstream_error() -> UpstreamFetchError:
    return UpstreamFetchError("Pricing API returned HTTP 503", upstream_status=503)


# Pytest configuration
def pytest_configure(config):
    """Configure pytest with custom markers"""
    config.addinivalue_line("markers", "unit: mark test as unit test")
    config.addinivalue_line("markers", "integration: mark test as integration test")
    config.addinivalue_line("markers", "api: HTTP endpoint tests")
    config.addinivalue_line("markers", "routing: ZIP routing tests")
    config.addinivalue_line("markers", "cache: plan cache and pricing client tests")
    config.addinivalue_line("markers", "analytics: navigation analytics and API log tests")


def pytest_collection_modifyitems(config, items):
    """Add markers based on file paths"""
    for item in items:
        fspath = str(item.fspath)

        if "integration" in fspath:
            item.add_marker(pytest.mark.integration)
        else:
            item.add_marker(pytest.mark.unit)

        for marker_name, patterns in DOMAIN_MARKER_PATTERNS.items():
            if any(pattern in fspath for pattern in patterns):
                item.add_marker(getattr(pytest.mark, marker_name))


@pytest.fixture(scope="function")
def pricing_client_cls():
    """FakePricingClient class for tests that need several clients"""
    return FakePricingClient


@pytest.fixture(scope="function")
def make_plans():
    return sample_plans
