"""
Integration tests for Celery tasks
"""
import pytest
from unittest.mock import patch
from datetime import datetime, timedelta

from celery.exceptions import Retry

from catalog_sync.database.models import SyncLog
from catalog_sync.services.sync_service import SyncOutcome
from catalog_sync.utils.exceptions import PermanentFetchError, TransientFetchError
from catalog_sync.workers.tasks import cleanup_old_logs, sync_all_tenants, sync_tenant_catalog


@pytest.fixture
def task_session(db_session, monkeypatch):
    """Hand the test session to every DatabaseTask"""
    for task in (sync_tenant_catalog, sync_all_tenants, cleanup_old_logs):
        monkeypatch.setattr(task, "_db", db_session)
    return db_session


class TestSyncTenantCatalog:
    """Per-tenant sync task"""

    @patch("catalog_sync.workers.tasks.run_tenant_sync")
    def test_returns_contract(self, mock_run, task_session):
        mock_run.return_value = SyncOutcome(tenant_id="t1", success=True, synced_count=4, deleted_count=1)

        result = sync_tenant_catalog("t1", credential="key")

        assert result == {
            "success": True, "syncedCount": 4, "deletedCount": 1, "errors": [], "tenantId": "t1",
        }
        mock_run.assert_called_once_with("t1", credential="key", trigger="manual", session=task_session)

    @patch("catalog_sync.workers.tasks.run_tenant_sync")
    def test_upstream_outage_is_retried(self, mock_run, task_session):
        mock_run.return_value = SyncOutcome.aborted("t1", TransientFetchError("Request failed after 3 attempts"))

        with pytest.raises(Retry):
            sync_tenant_catalog("t1")

    @patch("catalog_sync.workers.tasks.run_tenant_sync")
    def test_permanent_failure_is_not_retried(self, mock_run, task_session):
        mock_run.return_value = SyncOutcome.aborted("t1", PermanentFetchError("rejected", status_code=401))

        result = sync_tenant_catalog("t1")

        assert result["success"] is False
        assert result["syncedCount"] == 0
        assert result["errors"] == ["rejected"]


class TestSyncAllTenants:
    """Periodic fan-out"""

    @patch("catalog_sync.workers.tasks.sync_tenant_catalog.delay")
    def test_only_due_tenants_are_queued(self, mock_delay, task_session, tenant_a, tenant_b, make_tenant):
        tenant_b.last_sync_at = datetime.utcnow()
        make_tenant("tenant-off", "biz_off", is_active=False)
        task_session.commit()

        result = sync_all_tenants()

        assert result["scheduled_count"] == 1
        assert result["tenants"] == ["tenant-a"]
        mock_delay.assert_called_once_with("tenant-a", trigger="scheduled")

    @patch("catalog_sync.workers.tasks.sync_tenant_catalog.delay")
    def test_stale_tenants_are_due(self, mock_delay, task_session, tenant_a):
        tenant_a.last_sync_at = datetime.utcnow() - timedelta(hours=2)
        task_session.commit()

        assert sync_all_tenants()["scheduled_count"] == 1

    @patch("catalog_sync.workers.tasks.sync_tenant_catalog.delay")
    def test_force_queues_every_active_tenant(self, mock_delay, task_session, tenant_a, tenant_b):
        tenant_a.last_sync_at = tenant_b.last_sync_at = datetime.utcnow()
        task_session.commit()

        result = sync_all_tenants(force=True)

        assert sorted(result["tenants"]) == ["tenant-a", "tenant-b"]
        assert mock_delay.call_count == 2


class TestCleanupOldLogs:
    """Run history retention"""

    def test_deletes_only_old_rows(self, task_session, tenant_a):
        old_date = datetime.utcnow() - timedelta(days=35)
        for _ in range(5):
            task_session.add(SyncLog(tenant_id=tenant_a.id, status="completed", started_at=old_date))
        task_session.add(SyncLog(tenant_id=tenant_a.id, status="completed"))
        task_session.commit()

        result = cleanup_old_logs(days=30)

        assert result["deleted_count"] == 5
        assert task_session.query(SyncLog).count() == 1
