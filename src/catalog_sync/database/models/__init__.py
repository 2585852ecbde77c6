"""
SQLAlchemy database models for multi-tenant Catalog Sync.

Models:
- Tenant: Local account mapped to one marketplace company
- CatalogItem: Marketplace product synced for a tenant
- PricingPlan: Marketplace pricing plan, optionally linked to a CatalogItem
- SyncLog: Sync run history
"""

from .base import Base, new_id
from .tenant import Tenant
from .catalog_item import CatalogItem
from .pricing_plan import PricingPlan
from .sync_log import SyncLog

__all__ = [
    "Base",
    "new_id",
    "Tenant",
    "CatalogItem",
    "PricingPlan",
    "SyncLog",
]
