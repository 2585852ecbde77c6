"""
Celery workers module for background task processing.
"""

from .celery_app import celery_app
from .tasks import sync_tenant_catalog, sync_all_tenants, cleanup_old_logs

__all__ = [
    "celery_app",
    "sync_tenant_catalog",
    "sync_all_tenants",
    "cleanup_old_logs",
]
