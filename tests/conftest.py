"""
Test configuration and fixtures for Catalog Sync
"""
import os
import tempfile

from cryptography.fernet import Fernet

# Environment must be in place before catalog_sync reads configuration
os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="catalog_sync_logs_"))
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["SYNC_LOCK_BACKEND"] = "local"
os.environ["MARKETPLACE_API_KEY"] = "app-level-test-key"
os.environ["ENCRYPTION_MASTER_KEY"] = Fernet.generate_key().decode()

from typing import Any, Dict, Generator, List, Optional

import pytest
from sqlalchemy.orm import sessionmaker, Session

from catalog_sync.database.connection import create_db_engine, init_db
from catalog_sync.database.models import Tenant
from catalog_sync.marketplaces.base import MarketplaceClient, MarketplaceCredentials
from catalog_sync.security.encryption import reset_encryptor
from catalog_sync.services.locks import LocalTenantLock, set_tenant_lock
from catalog_sync.services.pagination import Page
from catalog_sync.utils.config import SyncConfig, reload_config


# =============================================================================
# Test Database Setup
# =============================================================================

@pytest.fixture(scope="function")
def engine():
    """Fresh in-memory SQLite database per test"""
    engine = create_db_engine("sqlite:///:memory:")
    init_db(engine)
    yield engine
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


@pytest.fixture(autouse=True)
def isolated_runtime():
    """Reset process-wide caches between tests"""
    reload_config()
    reset_encryptor()
    set_tenant_lock(LocalTenantLock())
    yield
    set_tenant_lock(None)


@pytest.fixture
def sync_config() -> SyncConfig:
    """Small pages so multi-page behavior shows up with few records"""
    return SyncConfig(catalog_page_size=2, plan_page_size=2, page_limit=20, lock_backend="local")


# =============================================================================
# Tenants and upstream records
# =============================================================================

@pytest.fixture
def make_tenant(db_session):
    """Factory for committed tenants"""
    def _make(tenant_id: str, upstream_id: Optional[str], name: Optional[str] = None,
              is_active: bool = True) -> Tenant:
        tenant = Tenant(
            id=tenant_id,
            name=name or f"Tenant {tenant_id}",
            upstream_id=upstream_id,
            is_active=is_active,
        )
        db_session.add(tenant)
        db_session.commit()
        return tenant
    return _make


@pytest.fixture
def tenant_a(make_tenant) -> Tenant:
    return make_tenant("tenant-a", "biz_a", name="Alpha Academy")


@pytest.fixture
def tenant_b(make_tenant) -> Tenant:
    return make_tenant("tenant-b", "biz_b", name="Beta Builders")


@pytest.fixture
def product_record():
    """Factory for raw upstream product records"""
    def _make(product_id: str, owner: Optional[str] = "biz_a", **fields) -> Dict[str, Any]:
        record = {
            "id": product_id,
            "title": f"Product {product_id}",
            "description": f"Description of {product_id}",
            "price": 1999,
            "currency": "USD",
        }
        if owner is not None:
            record["company_id"] = owner
        record.update(fields)
        return record
    return _make


@pytest.fixture
def plan_record():
    """Factory for raw upstream pricing plan records"""
    def _make(plan_id: str, product_id: Optional[str] = None, owner: Optional[str] = "biz_a",
              **fields) -> Dict[str, Any]:
        record = {
            "id": plan_id,
            "title": f"Plan {plan_id}",
            "initial_price": 0,
            "renewal_price": 2900,
            "currency": "USD",
            "billing_period": 30,
            "plan_type": "renewal",
            "visibility": "visible",
        }
        if product_id is not None:
            record["product"] = {"id": product_id}
        if owner is not None:
            record["company"] = {"id": owner}
        record.update(fields)
        return record
    return _make


class FakeMarketplaceClient(MarketplaceClient):
    """In-memory marketplace serving fixed product and plan lists with offset cursors"""

    def __init__(self, products: Optional[List[Dict[str, Any]]] = None,
                 plans: Optional[List[Dict[str, Any]]] = None):
        super().__init__(MarketplaceCredentials(api_key="fake"))
        self.products = list(products or [])
        self.plans = list(plans or [])
        self.calls: List[tuple] = []

    @property
    def marketplace_name(self) -> str:
        return "fake"

    @staticmethod
    def _page(records, cursor, page_size) -> Page:
        start = int(cursor) if cursor else 0
        end = start + page_size
        next_cursor = str(end) if end < len(records) else None
        return Page(records=records[start:end], next_cursor=next_cursor)

    def fetch_catalog_page(self, owner_id, cursor, page_size) -> Page:
        self.calls.append(("catalog", owner_id, cursor))
        return self._page(self.products, cursor, page_size)

    def fetch_plan_page(self, owner_id, cursor, page_size) -> Page:
        self.calls.append(("plans", owner_id, cursor))
        return self._page(self.plans, cursor, page_size)

    def test_connection(self, owner_id) -> Dict[str, Any]:
        return {"success": True, "message": "ok", "sample": self.products[:5]}


@pytest.fixture
def fake_client_factory():
    return FakeMarketplaceClient
