"""
Custom exceptions for Catalog Sync.

Run-aborting conditions (configuration, registry conflicts, ownership
anomalies, permanent fetch failures) are raised before any write. Per-record
failures are collected by the reconciliation engine and never escape a run.
"""

from typing import Optional, Dict, Any, List


class CatalogSyncError(Exception):
    """Base exception for all Catalog Sync errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        """
        Initialize exception with message and optional details.

        Args:
            message: Error message
            details: Additional error details
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ConfigurationError(CatalogSyncError):
    """Raised when configuration is invalid or missing."""
    pass


class APIError(CatalogSyncError):
    """Base class for upstream API errors."""

    def __init__(self, message: str, status_code: Optional[int] = None,
                 response_data: Optional[Any] = None,
                 endpoint: Optional[str] = None):
        """
        Initialize API error.

        Args:
            message: Error message
            status_code: HTTP status code
            response_data: API response body (parsed JSON or text)
            endpoint: API endpoint that failed
        """
        details = {}
        if status_code:
            details["status_code"] = status_code
        if response_data:
            details["response_data"] = response_data
        if endpoint:
            details["endpoint"] = endpoint

        super().__init__(message, details)
        self.status_code = status_code
        self.response_data = response_data
        self.endpoint = endpoint


class TransientFetchError(APIError):
    """5xx or network failure that outlived the retry budget."""

    def __init__(self, message: str, attempts: int = 0, **kwargs):
        super().__init__(message, **kwargs)
        self.attempts = attempts
        self.details["attempts"] = attempts


class PermanentFetchError(APIError):
    """4xx response. Never retried; aborts the page loop."""

    @property
    def is_auth_error(self) -> bool:
        return self.status_code in (401, 403)


class OwnershipAnomalyError(CatalogSyncError):
    """
    Raised when a fetched batch carries records owned by another tenant.

    The whole batch is rejected; nothing from it may be written.
    """

    def __init__(self, message: str, expected_owner_id: str,
                 owner_ids: Optional[List[str]] = None,
                 anomalies: Optional[List[str]] = None,
                 entity: Optional[str] = None):
        details: Dict[str, Any] = {
            "expected_owner_id": expected_owner_id,
            "owner_ids": sorted(owner_ids or []),
        }
        if entity:
            details["entity"] = entity
        super().__init__(message, details)
        self.expected_owner_id = expected_owner_id
        self.owner_ids = sorted(owner_ids or [])
        self.anomalies = list(anomalies or [])
        self.entity = entity


class TenantRegistryConflictError(CatalogSyncError):
    """Raised when several local tenants claim the same upstream id."""

    def __init__(self, upstream_id: str, tenant_ids: List[str]):
        tenant_ids = sorted(tenant_ids)
        message = (
            f"Upstream id {upstream_id!r} is shared by tenants "
            f"{', '.join(tenant_ids)}; sync refused"
        )
        super().__init__(message, {"upstream_id": upstream_id, "tenant_ids": tenant_ids})
        self.upstream_id = upstream_id
        self.tenant_ids = tenant_ids


class RecordUpsertError(CatalogSyncError):
    """A single fetched record could not be written."""

    def __init__(self, message: str, entity: str, upstream_id: Optional[str] = None):
        super().__init__(message, {"entity": entity, "upstream_id": upstream_id})
        self.entity = entity
        self.upstream_id = upstream_id


class SyncInProgressError(CatalogSyncError):
    """Raised when a run is requested for a tenant that is already syncing."""

    def __init__(self, tenant_id: str):
        super().__init__(
            f"A sync is already running for tenant {tenant_id}",
            {"tenant_id": tenant_id},
        )
        self.tenant_id = tenant_id


class ReconciliationStateError(CatalogSyncError):
    """Raised when reconciliation phases are invoked out of order."""
    pass


def handle_api_error(response, endpoint: Optional[str] = None) -> None:
    """
    Convert an unsuccessful HTTP response into the matching exception.

    Args:
        response: requests.Response with a non-2xx status
        endpoint: Endpoint URL for error context

    Raises:
        PermanentFetchError: for 4xx responses
        TransientFetchError: for 5xx responses
    """
    status_code = response.status_code

    try:
        response_data = response.json()
    except ValueError:
        response_data = response.text[:500] if response.text else None

    if 400 <= status_code < 500:
        if status_code in (401, 403):
            message = (
                f"Marketplace API rejected credentials ({status_code}); "
                "check the API key configured for this tenant"
            )
        elif status_code == 404:
            message = f"Marketplace endpoint not found ({status_code})"
        else:
            message = f"Marketplace API client error ({status_code})"
        raise PermanentFetchError(
            message, status_code=status_code,
            response_data=response_data, endpoint=endpoint,
        )

    raise TransientFetchError(
        f"Marketplace API server error ({status_code})",
        status_code=status_code, response_data=response_data, endpoint=endpoint,
    )
