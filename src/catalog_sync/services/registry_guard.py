"""
Pre-flight check of the tenant registry.

Upstream ids are expected to map to exactly one local tenant, but the schema
does not enforce it. Before any network call the guard reads the whole
registry (inactive tenants included) and refuses to sync a tenant whose
upstream id is claimed by another tenant.
"""

from collections import defaultdict
from typing import Dict, Iterable, List

from catalog_sync.database.models import Tenant
from catalog_sync.utils.exceptions import ConfigurationError, TenantRegistryConflictError
from catalog_sync.utils.logger import get_logger


logger = get_logger(__name__)


def find_duplicate_upstream_ids(tenants: Iterable[Tenant]) -> Dict[str, List[str]]:
    """
    Audit the registry for shared upstream ids.

    Returns:
        Mapping of upstream id -> sorted local tenant ids, only for ids
        claimed by more than one tenant
    """
    claims: Dict[str, List[str]] = defaultdict(list)
    for tenant in tenants:
        upstream_id = (tenant.upstream_id or "").strip()
        if upstream_id:
            claims[upstream_id].append(tenant.id)

    return {
        upstream_id: sorted(tenant_ids)
        for upstream_id, tenant_ids in sorted(claims.items())
        if len(tenant_ids) > 1
    }


class TenantRegistryGuard:
    """Refuses syncs for tenants whose upstream id is not unique."""

    def assert_unique_owner(self, tenant_id: str, all_tenants: Iterable[Tenant]) -> str:
        """
        Check that the tenant's upstream id belongs to it alone.

        Args:
            tenant_id: Local id of the tenant about to sync
            all_tenants: Full registry snapshot

        Returns:
            The tenant's upstream id

        Raises:
            ConfigurationError: Tenant unknown or without an upstream id
            TenantRegistryConflictError: Upstream id shared with another tenant
        """
        tenants = list(all_tenants)
        tenant = next((t for t in tenants if t.id == tenant_id), None)
        if tenant is None:
            raise ConfigurationError(f"Tenant {tenant_id} not found", {"tenant_id": tenant_id})

        upstream_id = (tenant.upstream_id or "").strip()
        if not upstream_id:
            raise ConfigurationError(
                f"Tenant {tenant_id} has no marketplace company id configured",
                {"tenant_id": tenant_id},
            )

        claimants = [t.id for t in tenants if (t.upstream_id or "").strip() == upstream_id]
        if len(claimants) > 1:
            error = TenantRegistryConflictError(upstream_id, claimants)
            logger.error(f"Registry conflict for tenant {tenant_id}: {error.message}")
            raise error

        logger.debug(f"Registry check passed for tenant {tenant_id} ({upstream_id})")
        return upstream_id
