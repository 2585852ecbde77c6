"""
Integration tests for full tenant syncs against an in-memory marketplace
"""
import pytest
import requests
from unittest.mock import MagicMock, patch

from celery.exceptions import SoftTimeLimitExceeded

from catalog_sync.database.models import CatalogItem, PricingPlan, SyncLog
from catalog_sync.database.repository import CatalogRepository
from catalog_sync.marketplaces.base import MarketplaceCredentials
from catalog_sync.marketplaces.whop_client import WhopMarketplaceClient
from catalog_sync.services.locks import LocalTenantLock
from catalog_sync.services.normalization import normalize_catalog_item
from catalog_sync.services.sync_service import SyncService, run_all_tenant_syncs, run_tenant_sync
from catalog_sync.utils.config import SyncConfig
from catalog_sync.utils.exceptions import PermanentFetchError


def _items(db_session, tenant_id):
    return {i.upstream_id: i for i in CatalogRepository(db_session, CatalogItem).list_for_tenant(tenant_id)}


def _plans(db_session, tenant_id):
    return {p.upstream_id: p for p in CatalogRepository(db_session, PricingPlan).list_for_tenant(tenant_id)}


@pytest.fixture
def catalog(product_record, plan_record):
    """Five products over three pages and two linked plans"""
    products = [product_record(f"prod_{i}") for i in range(1, 6)]
    plans = [plan_record("plan_1", product_id="prod_1"), plan_record("plan_2", product_id="prod_2")]
    return products, plans


@pytest.fixture
def run_sync(db_session, fake_client_factory, sync_config):
    def _run(tenant, products, plans, config=None):
        client = fake_client_factory(products, plans)
        outcome = SyncService(tenant, db_session, client=client, sync_config=config or sync_config).sync_tenant()
        return outcome, client
    return _run


class TestTenantSync:
    """Converging a tenant's store onto the upstream catalog"""

    def test_first_sync_stores_everything(self, db_session, tenant_a, catalog, run_sync):
        products, plans = catalog

        outcome, client = run_sync(tenant_a, products, plans)

        assert outcome.success is True
        assert outcome.synced_count == 7
        assert outcome.deleted_count == 0
        assert outcome.errors == []
        assert set(_items(db_session, tenant_a.id)) == {f"prod_{i}" for i in range(1, 6)}
        assert set(_plans(db_session, tenant_a.id)) == {"plan_1", "plan_2"}
        assert [call for call in client.calls if call[0] == "catalog"] == [
            ("catalog", "biz_a", None), ("catalog", "biz_a", "2"), ("catalog", "biz_a", "4"),
        ]
        assert tenant_a.last_sync_at is not None

    def test_second_identical_sync_changes_nothing(self, db_session, tenant_a, catalog, run_sync):
        products, plans = catalog
        run_sync(tenant_a, products, plans)
        before = {k: v.id for k, v in _items(db_session, tenant_a.id).items()}

        outcome, _ = run_sync(tenant_a, products, plans)

        assert outcome.success is True
        assert outcome.synced_count == 7
        assert outcome.deleted_count == 0
        assert {k: v.id for k, v in _items(db_session, tenant_a.id).items()} == before

    def test_removed_upstream_entities_are_deleted(self, db_session, tenant_a, catalog, run_sync):
        products, plans = catalog
        run_sync(tenant_a, products, plans)

        outcome, _ = run_sync(tenant_a, products[:4], plans[:1])

        assert outcome.deleted_count == 2
        assert "prod_5" not in _items(db_session, tenant_a.id)
        assert set(_plans(db_session, tenant_a.id)) == {"plan_1"}

    def test_plans_are_linked_to_local_items(self, db_session, tenant_a, catalog, run_sync, plan_record):
        products, plans = catalog
        plans = plans + [plan_record("plan_orphan", product_id="prod_unknown")]

        outcome, _ = run_sync(tenant_a, products, plans)

        items = _items(db_session, tenant_a.id)
        stored = _plans(db_session, tenant_a.id)
        assert stored["plan_1"].catalog_item_id == items["prod_1"].id
        assert stored["plan_2"].catalog_item_id == items["prod_2"].id
        assert stored["plan_orphan"].catalog_item_id is None
        assert stored["plan_orphan"].upstream_product_id == "prod_unknown"
        assert any("without a local catalog item" in w for w in outcome.warnings)

    def test_record_without_owner_is_skipped(self, db_session, tenant_a, catalog, run_sync, product_record):
        products, plans = catalog
        products = products + [product_record("prod_anon", owner=None)]

        outcome, _ = run_sync(tenant_a, products, plans)

        assert outcome.success is True
        assert "prod_anon" not in _items(db_session, tenant_a.id)
        assert any("prod_anon" in w for w in outcome.warnings)

    def test_failing_record_does_not_fail_the_run(self, db_session, tenant_a, catalog, run_sync):
        products, plans = catalog

        def flaky(record):
            if record["id"] == "prod_3":
                raise ValueError("cannot parse")
            return normalize_catalog_item(record)

        with patch("catalog_sync.services.sync_service.normalize_catalog_item", flaky):
            outcome, _ = run_sync(tenant_a, products, plans)

        assert outcome.success is True
        assert outcome.synced_count == 6
        assert len(outcome.errors) == 1
        assert "prod_3" in outcome.errors[0]

    def test_truncated_fetch_keeps_stale_entries(self, db_session, tenant_a, catalog, run_sync):
        products, plans = catalog
        run_sync(tenant_a, products, plans)
        one_page = SyncConfig(catalog_page_size=2, plan_page_size=2, page_limit=1, lock_backend="local")

        outcome, _ = run_sync(tenant_a, products, plans, config=one_page)

        assert outcome.success is True
        assert outcome.deleted_count == 0
        assert len(_items(db_session, tenant_a.id)) == 5
        assert any("truncated" in w for w in outcome.warnings)

    def test_contract_shape(self, tenant_a, catalog, run_sync):
        products, plans = catalog

        outcome, _ = run_sync(tenant_a, products, plans)

        assert outcome.to_contract() == {
            "success": True, "syncedCount": 7, "deletedCount": 0, "errors": [],
        }
        assert outcome.to_dict()["entities"]["catalog_items"]["synced_count"] == 5


class TestTenantIsolation:
    """One tenant's run never touches another tenant's data"""

    def test_other_tenant_unchanged(self, db_session, tenant_a, tenant_b, catalog, run_sync,
                                    product_record, plan_record):
        products, plans = catalog
        b_products = [product_record("prod_1", owner="biz_b"), product_record("prod_b", owner="biz_b")]
        b_plans = [plan_record("plan_b", product_id="prod_b", owner="biz_b")]
        run_sync(tenant_a, products, plans)
        run_sync(tenant_b, b_products, b_plans)
        b_before = {k: (v.id, v.title) for k, v in _items(db_session, tenant_b.id).items()}

        run_sync(tenant_a, [], [])

        assert _items(db_session, tenant_a.id) == {}
        assert {k: (v.id, v.title) for k, v in _items(db_session, tenant_b.id).items()} == b_before
        assert set(_plans(db_session, tenant_b.id)) == {"plan_b"}

    def test_registry_conflict_refuses_sync(self, db_session, tenant_a, make_tenant, catalog, run_sync):
        make_tenant("tenant-dup", "biz_a")
        products, plans = catalog

        outcome, client = run_sync(tenant_a, products, plans)

        assert outcome.success is False
        assert outcome.synced_count == 0
        assert outcome.deleted_count == 0
        assert len(outcome.errors) == 1
        assert "tenant-a" in outcome.errors[0] and "tenant-dup" in outcome.errors[0]
        assert client.calls == []
        assert _items(db_session, tenant_a.id) == {}

    def test_foreign_records_abort_before_any_write(self, db_session, tenant_a, catalog, run_sync,
                                                    product_record):
        products, plans = catalog
        run_sync(tenant_a, products, plans)
        before = {k: (v.id, v.title) for k, v in _items(db_session, tenant_a.id).items()}

        poisoned = [product_record("prod_1", title="Changed")] + [product_record("prod_x", owner="biz_b")]
        outcome, _ = run_sync(tenant_a, poisoned, plans)

        assert outcome.success is False
        assert outcome.error_type == "OwnershipAnomalyError"
        assert outcome.synced_count == outcome.deleted_count == 0
        assert {k: (v.id, v.title) for k, v in _items(db_session, tenant_a.id).items()} == before
        assert CatalogRepository(db_session, CatalogItem).list_outdated(tenant_a.id) == []

    def test_foreign_plans_abort_before_catalog_writes(self, db_session, tenant_a, catalog, run_sync,
                                                       plan_record):
        products, _ = catalog

        outcome, _ = run_sync(tenant_a, products, [plan_record("plan_x", owner="biz_b")])

        assert outcome.success is False
        assert _items(db_session, tenant_a.id) == {}

    def test_permanent_fetch_error_aborts(self, db_session, tenant_a, fake_client_factory, sync_config):
        client = fake_client_factory()
        client.fetch_plan_page = MagicMock(side_effect=PermanentFetchError(
            "Marketplace API rejected credentials (401)", status_code=401,
        ))

        outcome = SyncService(tenant_a, db_session, client=client, sync_config=sync_config).sync_tenant()

        assert outcome.success is False
        assert outcome.error_type == "PermanentFetchError"
        assert "401" in outcome.errors[0]


class TestRunTenantSync:
    """Locked runs with run history"""

    def test_completed_run_is_logged(self, db_session, tenant_a, catalog, fake_client_factory):
        products, plans = catalog

        outcome = run_tenant_sync(tenant_a.id, session=db_session, client=fake_client_factory(products, plans))

        assert outcome.success is True
        log = db_session.query(SyncLog).filter(SyncLog.tenant_id == tenant_a.id).one()
        assert log.status == "completed"
        assert log.synced_count == 7
        assert log.trigger == "manual"
        assert log.completed_at is not None

    def test_aborted_run_is_logged_as_failed(self, db_session, tenant_a, make_tenant, fake_client_factory):
        make_tenant("tenant-dup", "biz_a")

        outcome = run_tenant_sync(tenant_a.id, session=db_session, client=fake_client_factory())

        assert outcome.success is False
        log = db_session.query(SyncLog).filter(SyncLog.tenant_id == tenant_a.id).one()
        assert log.status == "failed"
        assert log.error_count == 1

    def test_overlapping_run_is_rejected(self, db_session, tenant_a, fake_client_factory):
        lock = LocalTenantLock()

        with lock.hold(tenant_a.id):
            outcome = run_tenant_sync(tenant_a.id, session=db_session, lock=lock,
                                      client=fake_client_factory())

        assert outcome.success is False
        assert outcome.error_type == "SyncInProgressError"
        assert outcome.to_contract()["syncedCount"] == 0
        statuses = [log.status for log in db_session.query(SyncLog).all()]
        assert statuses == ["rejected"]

    def test_unexpected_error_is_logged_as_failed(self, db_session, tenant_a, fake_client_factory):
        client = fake_client_factory()
        client.fetch_catalog_page = MagicMock(side_effect=RuntimeError("decoder exploded"))

        outcome = run_tenant_sync(tenant_a.id, session=db_session, client=client)

        assert outcome.success is False
        assert outcome.error_type == "RuntimeError"
        assert outcome.to_contract() == {
            "success": False, "syncedCount": 0, "deletedCount": 0, "errors": ["decoder exploded"],
        }
        log = db_session.query(SyncLog).filter(SyncLog.tenant_id == tenant_a.id).one()
        assert log.status == "failed"
        assert log.message == "decoder exploded"
        assert log.completed_at is not None

    @patch("catalog_sync.utils.retry.time.sleep")
    def test_broken_transport_ends_as_failed_run(self, mock_sleep, db_session, tenant_a):
        session = MagicMock()
        session.get.side_effect = requests.exceptions.ChunkedEncodingError("incomplete read")
        client = WhopMarketplaceClient(MarketplaceCredentials(api_key="key"), session=session)

        outcome = run_tenant_sync(tenant_a.id, session=db_session, client=client)

        assert outcome.success is False
        assert outcome.error_type == "TransientFetchError"
        log = db_session.query(SyncLog).filter(SyncLog.tenant_id == tenant_a.id).one()
        assert log.status == "failed"

    def test_soft_time_limit_is_logged_then_raised(self, db_session, tenant_a, catalog, fake_client_factory):
        products, plans = catalog
        lock = LocalTenantLock()

        with patch("catalog_sync.services.sync_service.normalize_catalog_item",
                   MagicMock(side_effect=SoftTimeLimitExceeded())):
            with pytest.raises(SoftTimeLimitExceeded):
                run_tenant_sync(tenant_a.id, session=db_session, lock=lock,
                                client=fake_client_factory(products, plans))

        log = db_session.query(SyncLog).filter(SyncLog.tenant_id == tenant_a.id).one()
        assert log.status == "failed"
        assert not lock.is_locked(tenant_a.id)
        assert _items(db_session, tenant_a.id) == {}

    def test_unknown_tenant(self, db_session):
        outcome = run_tenant_sync("missing", session=db_session)

        assert outcome.success is False
        assert "missing" in outcome.errors[0]

    def test_lock_released_after_run(self, db_session, tenant_a, fake_client_factory):
        lock = LocalTenantLock()

        run_tenant_sync(tenant_a.id, session=db_session, lock=lock, client=fake_client_factory())

        assert not lock.is_locked(tenant_a.id)

    @patch("catalog_sync.services.sync_service.create_marketplace_client")
    def test_all_tenants_keep_going_after_failure(self, mock_factory, db_session, tenant_a, tenant_b,
                                                  make_tenant, fake_client_factory, product_record):
        make_tenant("tenant-dup", "biz_b")
        make_tenant("tenant-off", "biz_off", is_active=False)
        mock_factory.return_value = fake_client_factory([product_record("prod_1")], [])

        outcomes = run_all_tenant_syncs(session=db_session)

        assert set(outcomes) == {"tenant-a", "tenant-b", "tenant-dup"}
        assert outcomes["tenant-a"].success is True
        assert outcomes["tenant-b"].success is False
        assert outcomes["tenant-dup"].success is False
