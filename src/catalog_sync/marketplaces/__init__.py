"""
Marketplace integrations.
"""

from catalog_sync.marketplaces.base import MarketplaceClient, MarketplaceCredentials
from catalog_sync.marketplaces.factory import create_marketplace_client

__all__ = [
    "MarketplaceClient",
    "MarketplaceCredentials",
    "create_marketplace_client",
]
