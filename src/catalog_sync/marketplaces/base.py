"""
Abstract base class for marketplace API clients.

Every client exposes page fetchers for the two synced collections. The
records it returns are raw upstream dicts: normalization and ownership checks
happen later, never inside the client.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional

from catalog_sync.services.pagination import Page


@dataclass
class MarketplaceCredentials:
    """Credentials for marketplace authentication."""
    api_key: str

    def __repr__(self) -> str:
        return "MarketplaceCredentials(api_key='***')"


class MarketplaceClient(ABC):
    """
    Abstract marketplace client interface.

    All marketplace integrations must implement this interface
    so the sync service can drive them through the same collector.
    """

    def __init__(self, credentials: MarketplaceCredentials):
        self.credentials = credentials

    @abstractmethod
    def fetch_catalog_page(self, owner_id: str, cursor: Optional[str], page_size: int) -> Page:
        """
        Fetch one page of catalog items (products) for a marketplace company.

        Args:
            owner_id: Marketplace company id to list for
            cursor: Opaque cursor from the previous page, None for the first
            page_size: Maximum records to request

        Returns:
            Page of raw product records
        """

    @abstractmethod
    def fetch_plan_page(self, owner_id: str, cursor: Optional[str], page_size: int) -> Page:
        """
        Fetch one page of pricing plans for a marketplace company.

        Args:
            owner_id: Marketplace company id to list for
            cursor: Opaque cursor from the previous page, None for the first
            page_size: Maximum records to request

        Returns:
            Page of raw plan records
        """

    @abstractmethod
    def test_connection(self, owner_id: str) -> Dict[str, Any]:
        """
        Fetch a small sample to verify credentials and reachability.

        Returns:
            Dict with ``success``, ``message`` and ``sample`` keys
        """

    @property
    @abstractmethod
    def marketplace_name(self) -> str:
        """Get marketplace name."""
