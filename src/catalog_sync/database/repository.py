"""
Tenant-scoped persistence for synced marketplace entities.

The reconciliation engine only ever talks to ``CatalogRepository``: get,
insert, patch and delete by id, plus the indexed lookup by
``(tenant_id, upstream_id)``. Every query is filtered by tenant.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Type, Union

from sqlalchemy.orm import Session, SessionTransaction

from catalog_sync.database.models import CatalogItem, PricingPlan, SyncLog, Tenant
from catalog_sync.utils.logger import get_logger

logger = get_logger(__name__)


SyncedModel = Union[Type[CatalogItem], Type[PricingPlan]]


class CatalogRepository:
    """Persistence operations for one synced entity type."""

    def __init__(self, session: Session, model: SyncedModel):
        self.session = session
        self.model = model

    @property
    def entity_name(self) -> str:
        return self.model.__tablename__

    def get(self, entity_id: str):
        """Get an entity by local id."""
        return self.session.get(self.model, entity_id)

    def find_by_upstream(self, tenant_id: str, upstream_id: str):
        """Indexed lookup by (tenant_id, upstream_id)."""
        return self.session.query(self.model).filter(
            self.model.tenant_id == tenant_id,
            self.model.upstream_id == upstream_id,
        ).first()

    def list_for_tenant(self, tenant_id: str) -> List[Any]:
        """All entities owned by the tenant."""
        return self.session.query(self.model).filter(
            self.model.tenant_id == tenant_id
        ).all()

    def list_active(self, tenant_id: str) -> List[Any]:
        """Entities not currently flagged outdated."""
        return self.session.query(self.model).filter(
            self.model.tenant_id == tenant_id,
            self.model.outdated.is_(False),
        ).all()

    def list_outdated(self, tenant_id: str) -> List[Any]:
        """Entities still flagged outdated."""
        return self.session.query(self.model).filter(
            self.model.tenant_id == tenant_id,
            self.model.outdated.is_(True),
        ).all()

    def insert(self, tenant_id: str, fields: Dict[str, Any]):
        """Insert a new entity for the tenant."""
        entity = self.model(tenant_id=tenant_id, **fields)
        self.session.add(entity)
        self.session.flush()
        return entity

    def patch(self, entity, fields: Dict[str, Any]):
        """Overwrite the given columns on an existing entity."""
        for key, value in fields.items():
            if key in ("id", "tenant_id"):
                continue
            setattr(entity, key, value)
        self.session.flush()
        return entity

    def delete(self, entity) -> None:
        """Delete an entity."""
        self.session.delete(entity)
        self.session.flush()

    def savepoint(self) -> SessionTransaction:
        """Open a nested transaction for one record's writes."""
        return self.session.begin_nested()


def get_tenant(session: Session, tenant_id: str) -> Optional[Tenant]:
    """Load one tenant by local id."""
    return session.get(Tenant, tenant_id)


def list_tenants(session: Session, active_only: bool = False) -> List[Tenant]:
    """
    Read the tenant registry.

    Args:
        session: Database session
        active_only: Skip deactivated tenants

    Returns:
        Tenants ordered by creation time
    """
    query = session.query(Tenant)
    if active_only:
        query = query.filter(Tenant.is_active.is_(True))
    return query.order_by(Tenant.created_at, Tenant.id).all()


def delete_sync_logs_before(session: Session, cutoff: datetime) -> int:
    """Delete run history rows that started before ``cutoff``."""
    deleted = session.query(SyncLog).filter(
        SyncLog.started_at < cutoff
    ).delete(synchronize_session=False)
    logger.info(f"Deleted {deleted} sync log rows older than {cutoff.isoformat()}")
    return deleted
