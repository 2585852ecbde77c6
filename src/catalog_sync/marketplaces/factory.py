"""
Factory for creating marketplace clients based on tenant configuration.
"""

from typing import Optional

from catalog_sync.database.models import Tenant
from catalog_sync.marketplaces.base import MarketplaceClient, MarketplaceCredentials
from catalog_sync.marketplaces.whop_client import WhopMarketplaceClient
from catalog_sync.security.encryption import decrypt_credential
from catalog_sync.utils.config import MarketplaceAPIConfig, get_config
from catalog_sync.utils.exceptions import ConfigurationError
from catalog_sync.utils.logger import get_logger

logger = get_logger(__name__)


def resolve_credentials(tenant: Tenant, credential: Optional[str] = None,
                        config: Optional[MarketplaceAPIConfig] = None) -> MarketplaceCredentials:
    """
    Pick the API key for a tenant's run.

    Precedence: explicit per-run credential, the tenant's stored (encrypted)
    key, then the app-level key.

    Raises:
        ConfigurationError: If no key is available
    """
    if credential and credential.strip():
        return MarketplaceCredentials(api_key=credential.strip())

    if tenant.api_credential:
        return MarketplaceCredentials(api_key=decrypt_credential(tenant.api_credential))

    config = config or get_config().marketplace
    if config.api_key:
        return MarketplaceCredentials(api_key=config.api_key)

    raise ConfigurationError(
        f"No marketplace API key for tenant {tenant.id}",
        {"tenant_id": tenant.id},
    )


def create_marketplace_client(tenant: Tenant, credential: Optional[str] = None,
                              config: Optional[MarketplaceAPIConfig] = None) -> MarketplaceClient:
    """
    Create the marketplace client for a tenant.

    Args:
        tenant: Tenant model instance
        credential: Optional tenant-scoped key supplied for this run only
        config: API settings; defaults to the global configuration

    Returns:
        MarketplaceClient implementation

    Raises:
        ConfigurationError: If no credentials are available
    """
    config = config or get_config().marketplace
    credentials = resolve_credentials(tenant, credential, config)
    logger.info(f"Creating Whop client for tenant {tenant.id}")
    return WhopMarketplaceClient(credentials, config=config)
