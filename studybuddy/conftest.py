# studybuddy/conftest.py
from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from studybuddy.core.config import settings
from studybuddy.core.database import init_engine, create_all_tables, dispose_engine
from studybuddy.features.limits.service import reset_quota_enforcer
from studybuddy.features.tiers.catalog import CatalogProvider, TierCatalog
from studybuddy.features.tiers.defaults import default_feature_flags, default_tiers
from studybuddy.features.tiers.service import (
    clear_last_known_tiers,
    reset_catalog_provider,
    seed_catalog,
    set_catalog_provider,
)
from studybuddy.features.usage.store import reset_usage_store


ADMIN_KEY = "test-admin-key"


@pytest.fixture(scope="function", autouse=True)
def sqlite_db(tmp_path):
    """
    Fresh SQLite database per test.

    Every test gets its own file so state never leaks, and nothing ever
    touches the developer's local mirror.
    """
    url = f"sqlite:///{tmp_path / 'studybuddy-test.db'}"
    init_engine(url)
    create_all_tables()
    yield url
    dispose_engine()


@pytest.fixture(scope="function", autouse=True)
def reset_singletons():
    """Forget process-wide stores/providers/caches between tests."""
    reset_usage_store()
    reset_quota_enforcer()
    reset_catalog_provider()
    clear_last_known_tiers()
    yield
    reset_usage_store()
    reset_quota_enforcer()
    reset_catalog_provider()
    clear_last_known_tiers()


@pytest.fixture
def catalog(sqlite_db):
    """Default catalog, seeded into the database and installed as the provider."""
    seed_catalog()
    snapshot = TierCatalog(default_tiers(), default_feature_flags(), source="defaults")
    set_catalog_provider(CatalogProvider(lambda: snapshot))
    return snapshot


@pytest.fixture
def fixed_now():
    return datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def admin_headers(monkeypatch):
    monkeypatch.setattr(settings, "ADMIN_KEY", ADMIN_KEY)
    return {"X-Admin-Key": ADMIN_KEY}


@pytest.fixture
def client(catalog):
    from studybuddy.main import app

    return TestClient(app)
