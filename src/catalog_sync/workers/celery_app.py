"""
Celery application configuration for Catalog Sync.

This module configures Celery for:
- Per-tenant catalog synchronization (manual and scheduled)
- Scheduled periodic tasks (Celery Beat)
"""

import os
from pathlib import Path

# Worker processes read the broker URL before any settings object exists
from dotenv import load_dotenv
_env_file = Path(__file__).parent.parent.parent.parent / ".env"
if _env_file.exists():
    load_dotenv(_env_file, encoding="utf-8")

from celery import Celery
from celery.schedules import crontab
from kombu import Queue

# Get Redis URL from environment
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
CELERY_RESULT_BACKEND = os.getenv("CELERY_RESULT_BACKEND", "redis://localhost:6379/1")

# Create Celery application
celery_app = Celery(
    "catalog_sync",
    broker=REDIS_URL,
    backend=CELERY_RESULT_BACKEND,
    include=["catalog_sync.workers.tasks"]
)

celery_app.conf.update(
    task_routes={
        "catalog_sync.workers.tasks.sync_tenant_catalog": {"queue": "sync"},
        "catalog_sync.workers.tasks.sync_all_tenants": {"queue": "sync"},
        "catalog_sync.workers.tasks.cleanup_old_logs": {"queue": "maintenance"},
    },

    task_queues=(
        Queue("sync", routing_key="sync"),
        Queue("maintenance", routing_key="maintenance"),
        Queue("default", routing_key="default"),
    ),
    task_default_queue="default",
    task_default_routing_key="default",

    # Task execution settings
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_time_limit=900,  # must stay below the tenant lock timeout (1200s default)
    task_soft_time_limit=840,
    worker_prefetch_multiplier=1,

    result_expires=3600,

    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],

    timezone="UTC",
    enable_utc=True,

    beat_schedule={
        # Fan out syncs for tenants whose interval has elapsed
        "sync-all-tenants": {
            "task": "catalog_sync.workers.tasks.sync_all_tenants",
            "schedule": crontab(minute="*/5"),
            "options": {"queue": "sync"},
        },
        # Cleanup old sync logs every day at 3 AM
        "cleanup-old-logs": {
            "task": "catalog_sync.workers.tasks.cleanup_old_logs",
            "schedule": crontab(hour=3, minute=0),
            "options": {"queue": "maintenance"},
        },
    },

    worker_max_tasks_per_child=1000,
    worker_hijack_root_logger=False,
)
