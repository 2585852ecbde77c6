"""
Celery tasks for background processing.

Tasks:
- sync_tenant_catalog: Sync catalog items and pricing plans for one tenant
- sync_all_tenants: Periodic fan-out to tenants whose sync interval elapsed
- cleanup_old_logs: Clean up old sync logs
"""

from datetime import datetime, timedelta
from typing import Optional

from celery import Task
from sqlalchemy.orm import Session

from catalog_sync.database.connection import get_session_factory
from catalog_sync.database.repository import delete_sync_logs_before, list_tenants
from catalog_sync.services.sync_service import run_tenant_sync
from catalog_sync.utils.config import get_config
from catalog_sync.utils.logger import get_logger
from catalog_sync.workers.celery_app import celery_app

logger = get_logger(__name__)


class DatabaseTask(Task):
    """
    Base task class that provides database session management.

    Automatically creates and closes database sessions for tasks.
    """
    _db: Optional[Session] = None

    @property
    def db(self) -> Session:
        if self._db is None:
            self._db = get_session_factory()()
        return self._db

    def after_return(self, *args, **kwargs):
        """Close database session after task completion."""
        if self._db is not None:
            self._db.close()
            self._db = None


@celery_app.task(
    bind=True,
    base=DatabaseTask,
    name="catalog_sync.workers.tasks.sync_tenant_catalog",
    max_retries=3,
    default_retry_delay=300,  # 5 minutes
)
def sync_tenant_catalog(self, tenant_id: str, credential: Optional[str] = None,
                        trigger: str = "manual") -> dict:
    """
    Sync catalog items and pricing plans for one tenant.

    Args:
        tenant_id: Local id of the tenant to sync
        credential: Optional tenant-scoped API key for this run only
        trigger: "manual" or "scheduled"

    Returns:
        dict: ``{success, syncedCount, deletedCount, errors}`` plus ``tenantId``
    """
    outcome = run_tenant_sync(tenant_id, credential=credential, trigger=trigger, session=self.db)

    # Upstream outages are worth another try later; every other abort is not
    if outcome.error_type == "TransientFetchError" and self.request.retries < self.max_retries:
        logger.info(
            f"Retrying sync for tenant {tenant_id} after upstream failure "
            f"(attempt {self.request.retries + 1})"
        )
        raise self.retry(kwargs={"tenant_id": tenant_id, "credential": credential,
                                 "trigger": trigger})

    result = outcome.to_contract()
    result["tenantId"] = tenant_id
    return result


@celery_app.task(
    bind=True,
    base=DatabaseTask,
    name="catalog_sync.workers.tasks.sync_all_tenants",
)
def sync_all_tenants(self, force: bool = False) -> dict:
    """
    Queue a sync for every active tenant that is due.

    A tenant is due when it has never synced or its last sync is older than
    the configured interval. ``force`` queues every active tenant.

    Returns:
        dict: Scheduling statistics (scheduled_count, tenants)
    """
    db: Session = self.db
    interval = timedelta(minutes=get_config().sync.interval_minutes)
    now = datetime.utcnow()

    scheduled = []
    for tenant in list_tenants(db, active_only=True):
        if not force and tenant.last_sync_at and now - tenant.last_sync_at < interval:
            continue
        sync_tenant_catalog.delay(tenant.id, trigger="scheduled")
        scheduled.append(tenant.id)
        logger.info(f"Scheduled sync for tenant {tenant.id} ({tenant.name})")

    return {
        "scheduled_count": len(scheduled),
        "tenants": scheduled,
        "timestamp": now.isoformat(),
    }


@celery_app.task(
    bind=True,
    base=DatabaseTask,
    name="catalog_sync.workers.tasks.cleanup_old_logs",
)
def cleanup_old_logs(self, days: int = 30) -> dict:
    """
    Clean up sync logs older than specified days.

    Args:
        days: Number of days to keep logs (default: 30)

    Returns:
        dict: Cleanup statistics (deleted_count)
    """
    db: Session = self.db
    cutoff_date = datetime.utcnow() - timedelta(days=days)

    deleted_count = delete_sync_logs_before(db, cutoff_date)
    db.commit()

    logger.info(f"Cleaned up {deleted_count} sync logs older than {days} days")

    return {
        "deleted_count": deleted_count,
        "cutoff_date": cutoff_date.isoformat(),
    }
