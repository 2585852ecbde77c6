"""
Sync service - one tenant's catalog and pricing-plan synchronization.

Run order:
    registry guard -> fetch + validate catalog items -> fetch + validate plans
    -> reconcile catalog items -> link + reconcile plans -> commit

Everything that can abort a run (registry conflict, missing credentials,
permanent or exhausted fetch failures, ownership anomalies) happens before
the first write, so an aborted run leaves the tenant's data untouched.
"""

import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from celery.exceptions import SoftTimeLimitExceeded
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from catalog_sync.database.connection import get_session_factory
from catalog_sync.database.models import CatalogItem, PricingPlan, SyncLog, Tenant
from catalog_sync.database.repository import CatalogRepository, get_tenant, list_tenants
from catalog_sync.marketplaces.base import MarketplaceClient
from catalog_sync.marketplaces.factory import create_marketplace_client
from catalog_sync.services.linker import CrossEntityLinker
from catalog_sync.services.locks import TenantLock, get_tenant_lock
from catalog_sync.services.normalization import normalize_catalog_item, normalize_pricing_plan
from catalog_sync.services.ownership import OwnershipReport, TenantOwnershipValidator
from catalog_sync.services.pagination import PaginatedCollector
from catalog_sync.services.reconciliation import ReconciliationEngine
from catalog_sync.services.registry_guard import TenantRegistryGuard
from catalog_sync.utils.config import SyncConfig, get_config
from catalog_sync.utils.exceptions import (
    CatalogSyncError,
    ConfigurationError,
    SyncInProgressError,
)
from catalog_sync.utils.logger import get_logger, tenant_context

logger = get_logger(__name__)


@dataclass
class SyncOutcome:
    """Result of one tenant run, as reported to the scheduler."""

    tenant_id: str
    success: bool
    synced_count: int = 0
    deleted_count: int = 0
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    entities: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    error_type: Optional[str] = None
    duration_ms: int = 0

    @classmethod
    def aborted(cls, tenant_id: str, error: Exception, duration_ms: int = 0) -> "SyncOutcome":
        """A refused or aborted run: zero counts, one explanatory error."""
        message = error.message if isinstance(error, CatalogSyncError) else (str(error) or type(error).__name__)
        return cls(
            tenant_id=tenant_id,
            success=False,
            errors=[message],
            error_type=type(error).__name__,
            duration_ms=duration_ms,
        )

    def to_contract(self) -> Dict[str, Any]:
        """Scheduler-facing shape."""
        return {
            "success": self.success,
            "syncedCount": self.synced_count,
            "deletedCount": self.deleted_count,
            "errors": list(self.errors),
        }

    def to_dict(self) -> Dict[str, Any]:
        """Full report including the per-entity breakdown."""
        report = self.to_contract()
        report.update({
            "tenantId": self.tenant_id,
            "warnings": list(self.warnings),
            "entities": self.entities,
            "errorType": self.error_type,
            "durationMs": self.duration_ms,
        })
        return report


@dataclass
class _ValidatedFetch:
    report: OwnershipReport
    truncated: bool


class SyncService:
    """
    Synchronous catalog sync for one tenant.

    Provides blocking methods suitable for Celery workers and the CLI.
    """

    def __init__(self, tenant: Tenant, db_session: Session,
                 credential: Optional[str] = None,
                 client: Optional[MarketplaceClient] = None,
                 sync_config: Optional[SyncConfig] = None):
        """
        Initialize sync service with tenant context.

        Args:
            tenant: Tenant instance
            db_session: Database session
            credential: Optional tenant-scoped API key for this run
            client: Pre-built marketplace client (created lazily otherwise)
            sync_config: Paging settings; defaults to the global configuration
        """
        self.tenant = tenant
        self.db = db_session
        self.credential = credential
        self._client = client
        self.sync_config = sync_config or get_config().sync
        self.guard = TenantRegistryGuard()
        self.validator = TenantOwnershipValidator()

    @property
    def client(self) -> MarketplaceClient:
        if self._client is None:
            self._client = create_marketplace_client(self.tenant, self.credential)
        return self._client

    def sync_tenant(self) -> SyncOutcome:
        """
        Synchronize catalog items and pricing plans for the tenant.

        Returns:
            SyncOutcome. Per-record failures leave ``success`` True and are
            listed in ``errors``; run-level failures give ``success`` False.
        """
        started = time.monotonic()
        tenant_id = self.tenant.id
        logger.info(f"Starting catalog sync for tenant {tenant_id} ({self.tenant.name})")

        try:
            upstream_id = self.guard.assert_unique_owner(tenant_id, list_tenants(self.db))
            items = self._fetch_validated(
                "catalog_items", self.client.fetch_catalog_page,
                upstream_id, self.sync_config.catalog_page_size,
            )
            plans = self._fetch_validated(
                "pricing_plans", self.client.fetch_plan_page,
                upstream_id, self.sync_config.plan_page_size,
            )
        except CatalogSyncError as e:
            self.db.rollback()
            logger.error(f"Sync aborted for tenant {tenant_id} before any write: {e.message}")
            return SyncOutcome.aborted(tenant_id, e, self._elapsed_ms(started))

        try:
            outcome = self._reconcile(items, plans)
            self.tenant.last_sync_at = datetime.utcnow()
            self.db.commit()
        except (CatalogSyncError, SQLAlchemyError) as e:
            self.db.rollback()
            logger.error(f"Sync failed for tenant {tenant_id}, changes rolled back: {e}")
            return SyncOutcome.aborted(tenant_id, e, self._elapsed_ms(started))

        outcome.duration_ms = self._elapsed_ms(started)
        logger.info(
            f"Sync completed for tenant {tenant_id}: synced={outcome.synced_count}, "
            f"deleted={outcome.deleted_count}, errors={len(outcome.errors)} "
            f"in {outcome.duration_ms}ms"
        )
        return outcome

    def _fetch_validated(self, entity: str, fetch_page: Callable, upstream_id: str,
                         page_size: int) -> _ValidatedFetch:
        collector = PaginatedCollector(page_size, self.sync_config.page_limit, label=entity)
        collected = collector.collect_all(
            lambda cursor, size: fetch_page(upstream_id, cursor, size)
        )
        report = self.validator.validate(collected.records, upstream_id, entity=entity)
        return _ValidatedFetch(report=report, truncated=collected.truncated)

    def _reconcile(self, items: _ValidatedFetch, plans: _ValidatedFetch) -> SyncOutcome:
        tenant_id = self.tenant.id
        catalog_repo = CatalogRepository(self.db, CatalogItem)
        plan_repo = CatalogRepository(self.db, PricingPlan)

        catalog_result = ReconciliationEngine(
            catalog_repo, tenant_id, normalize_catalog_item,
        ).run(items.report.accepted, complete=not items.truncated)

        linker = CrossEntityLinker.from_catalog_items(catalog_repo.list_for_tenant(tenant_id))
        plan_result = ReconciliationEngine(
            plan_repo, tenant_id, normalize_pricing_plan, field_hook=linker.link,
        ).run(plans.report.accepted, complete=not plans.truncated)

        warnings: List[str] = []
        for fetch in (items, plans):
            warnings.extend(fetch.report.anomalies)
            if fetch.truncated:
                warnings.append(
                    f"{fetch.report.entity} fetch truncated at {self.sync_config.page_limit} "
                    "pages; stale entries were kept"
                )
        if linker.unresolved_count:
            warnings.append(
                f"{linker.unresolved_count} pricing plan(s) stored without a local catalog item"
            )

        return SyncOutcome(
            tenant_id=tenant_id,
            success=True,
            synced_count=catalog_result.synced_count + plan_result.synced_count,
            deleted_count=catalog_result.deleted_count + plan_result.deleted_count,
            errors=catalog_result.errors + plan_result.errors,
            warnings=warnings,
            entities={
                "catalog_items": catalog_result.to_dict(),
                "pricing_plans": plan_result.to_dict(),
            },
        )

    def test_connection(self) -> Dict[str, Any]:
        """
        Verify credentials against the tenant's marketplace company.

        Writes nothing; the registry guard still runs first.
        """
        try:
            upstream_id = self.guard.assert_unique_owner(self.tenant.id, list_tenants(self.db))
            return self.client.test_connection(upstream_id)
        except CatalogSyncError as e:
            return {"success": False, "message": e.message, "sample": []}

    @staticmethod
    def _elapsed_ms(started: float) -> int:
        return int((time.monotonic() - started) * 1000)


def _write_log(db: Session, tenant_id: str, status: str, trigger: str,
               outcome: Optional[SyncOutcome] = None, log: Optional[SyncLog] = None) -> SyncLog:
    if log is None:
        log = SyncLog(tenant_id=tenant_id, status=status, trigger=trigger)
        db.add(log)
    log.status = status
    if outcome is not None:
        log.synced_count = outcome.synced_count
        log.deleted_count = outcome.deleted_count
        log.error_count = len(outcome.errors)
        log.duration_ms = outcome.duration_ms
        log.message = "\n".join(outcome.errors)[:4000] or None
        log.completed_at = datetime.utcnow()
    db.commit()
    return log


def run_tenant_sync(tenant_id: str, credential: Optional[str] = None,
                    trigger: str = "manual", session: Optional[Session] = None,
                    lock: Optional[TenantLock] = None,
                    client: Optional[MarketplaceClient] = None) -> SyncOutcome:
    """
    Run one tenant's sync under its lock and record it in the run history.

    Args:
        tenant_id: Local tenant id
        credential: Optional tenant-scoped API key for this run only
        trigger: "manual" or "scheduled", stored on the SyncLog row
        session: Session to use; a new one is opened (and closed) otherwise
        lock: Tenant lock; defaults to the configured backend
        client: Pre-built marketplace client

    Returns:
        SyncOutcome; overlapping runs and runs that raise come back as
        ``success=False`` with a "failed" or "rejected" log row

    Raises:
        SoftTimeLimitExceeded: Re-raised after the run is logged as failed
    """
    lock = lock or get_tenant_lock()
    owns_session = session is None
    db = session or get_session_factory()()

    try:
        try:
            with tenant_context(tenant_id), lock.hold(tenant_id):
                tenant = get_tenant(db, tenant_id)
                if tenant is None:
                    return SyncOutcome.aborted(
                        tenant_id, ConfigurationError(f"Tenant {tenant_id} not found")
                    )

                log = _write_log(db, tenant_id, "in_progress", trigger)
                started = time.monotonic()
                try:
                    outcome = SyncService(tenant, db, credential=credential, client=client).sync_tenant()
                except Exception as e:
                    db.rollback()
                    logger.error(f"Sync for tenant {tenant_id} stopped unexpectedly: {e!r}", exc_info=True)
                    outcome = SyncOutcome.aborted(
                        tenant_id, e, duration_ms=int((time.monotonic() - started) * 1000)
                    )
                    _write_log(db, tenant_id, "failed", trigger, outcome, log)
                    if isinstance(e, SoftTimeLimitExceeded):
                        raise
                    return outcome
                _write_log(db, tenant_id, "completed" if outcome.success else "failed",
                           trigger, outcome, log)
                return outcome
        except SyncInProgressError as e:
            outcome = SyncOutcome.aborted(tenant_id, e)
            if get_tenant(db, tenant_id) is not None:
                _write_log(db, tenant_id, "rejected", trigger, outcome)
            return outcome
    finally:
        if owns_session:
            db.close()


def run_all_tenant_syncs(trigger: str = "scheduled", session: Optional[Session] = None,
                         lock: Optional[TenantLock] = None) -> Dict[str, SyncOutcome]:
    """
    Sync every active tenant one after another.

    A failing tenant never stops the others.
    """
    owns_session = session is None
    db = session or get_session_factory()()
    try:
        tenant_ids = [tenant.id for tenant in list_tenants(db, active_only=True)]
        db.commit()

        outcomes: Dict[str, SyncOutcome] = {}
        for tenant_id in tenant_ids:
            outcomes[tenant_id] = run_tenant_sync(tenant_id, trigger=trigger, session=db, lock=lock)

        succeeded = sum(1 for outcome in outcomes.values() if outcome.success)
        logger.info(f"Synced {succeeded}/{len(outcomes)} active tenants")
        return outcomes
    finally:
        if owns_session:
            db.close()


def check_tenant_connection(tenant_id: str, credential: Optional[str] = None,
                           session: Optional[Session] = None) -> Dict[str, Any]:
    """Connection test for one tenant; writes nothing."""
    owns_session = session is None
    db = session or get_session_factory()()
    try:
        tenant = get_tenant(db, tenant_id)
        if tenant is None:
            return {"success": False, "message": f"Tenant {tenant_id} not found", "sample": []}
        return SyncService(tenant, db, credential=credential).test_connection()
    finally:
        if owns_session:
            db.close()
