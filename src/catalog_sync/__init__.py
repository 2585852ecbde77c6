"""
Catalog Sync

Periodic, tenant-isolated synchronization of marketplace products and pricing
plans into a local store. Each run converges one tenant's catalog to exactly
what the marketplace reports for that tenant, and refuses to run when tenant
ownership is ambiguous.
"""

__version__ = "1.0.0"
__author__ = "Catalog Sync Team"
