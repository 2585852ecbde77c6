"""
Whop marketplace client implementation.

Products are listed with page-number paging (``page``/``per_page``), pricing
plans with GraphQL-style cursor paging (``first``/``after`` and a
``page_info`` block). Both are exposed through the same ``Page`` shape so the
collector does not care which style an endpoint uses.
"""

from typing import Any, Dict, List, Optional

import requests

from catalog_sync.marketplaces.base import MarketplaceClient, MarketplaceCredentials
from catalog_sync.services.pagination import Page
from catalog_sync.utils.config import MarketplaceAPIConfig, get_config
from catalog_sync.utils.exceptions import APIError, TransientFetchError, handle_api_error
from catalog_sync.utils.logger import get_logger
from catalog_sync.utils.retry import RetryConfig, fetch_with_retry

logger = get_logger(__name__)


class WhopMarketplaceClient(MarketplaceClient):
    """
    Whop marketplace integration.

    One instance serves one credential; the company (owner) id is passed per
    call so the same key can be audited across companies.
    """

    def __init__(self, credentials: MarketplaceCredentials,
                 config: Optional[MarketplaceAPIConfig] = None,
                 session: Optional[requests.Session] = None):
        """
        Initialize Whop client.

        Args:
            credentials: Marketplace API credentials
            config: API settings; defaults to the global configuration
            session: Optional pre-built HTTP session
        """
        super().__init__(credentials)
        self.config = config or get_config().marketplace
        self.base_url = self.config.base_url.rstrip("/")
        self.retry_config = RetryConfig(
            max_attempts=self.config.max_attempts,
            base_delay=self.config.base_delay,
            exponential_base=self.config.backoff_multiplier,
        )

        self.session = session or requests.Session()
        self.session.headers.update({
            "Authorization": f"Bearer {credentials.api_key}",
            "Accept": "application/json",
            "User-Agent": "CatalogSync/1.0",
        })
        logger.debug("Initialized Whop marketplace client")

    @property
    def marketplace_name(self) -> str:
        return "whop"

    def _get(self, path: str, params: Dict[str, Any]) -> Dict[str, Any]:
        """
        GET a JSON document with retry for transient failures.

        Raises:
            PermanentFetchError: 4xx response
            TransientFetchError: 5xx/network failure after the retry budget,
                or a body that is not a JSON object
        """
        url = f"{self.base_url}{path}"

        def request() -> requests.Response:
            return self.session.get(url, params=params, timeout=self.config.timeout)

        response = fetch_with_retry(request, config=self.retry_config, endpoint=url)

        if not response.ok:
            handle_api_error(response, endpoint=url)

        try:
            payload = response.json()
        except ValueError:
            raise TransientFetchError(
                "Marketplace API returned a non-JSON body",
                status_code=response.status_code, endpoint=url,
            )

        if not isinstance(payload, dict):
            raise TransientFetchError(
                f"Marketplace API returned {type(payload).__name__}, expected an object",
                status_code=response.status_code, endpoint=url,
            )
        return payload

    @staticmethod
    def _records(payload: Dict[str, Any]) -> List[Dict[str, Any]]:
        data = payload.get("data")
        if data is None:
            data = payload.get("products") or payload.get("plans") or []
        return [record for record in data if isinstance(record, dict)]

    def fetch_catalog_page(self, owner_id: str, cursor: Optional[str], page_size: int) -> Page:
        """
        Fetch one page of products for a company.

        The cursor is the page number as a string. A page shorter than
        ``page_size`` is the last one unless the response carries explicit
        pagination totals.
        """
        page_number = int(cursor) if cursor else 1
        payload = self._get("/v2/products", {
            "company_id": owner_id,
            "page": page_number,
            "per_page": page_size,
        })
        records = self._records(payload)

        pagination = payload.get("pagination") or {}
        total_pages = pagination.get("total_page") or pagination.get("total_pages")
        if total_pages is not None:
            has_next = page_number < int(total_pages)
        else:
            has_next = len(records) >= page_size

        logger.debug(
            f"Whop products page {page_number} for {owner_id}: "
            f"{len(records)} records, has_next={has_next}"
        )
        return Page(records=records, next_cursor=str(page_number + 1) if has_next else None)

    def fetch_plan_page(self, owner_id: str, cursor: Optional[str], page_size: int) -> Page:
        """Fetch one page of pricing plans for a company."""
        params: Dict[str, Any] = {"company_id": owner_id, "first": page_size}
        if cursor:
            params["after"] = cursor

        payload = self._get("/v1/plans", params)
        records = self._records(payload)

        page_info = payload.get("page_info") or payload.get("pageInfo") or {}
        has_next = bool(page_info.get("has_next_page") or page_info.get("hasNextPage"))
        end_cursor = page_info.get("end_cursor") or page_info.get("endCursor")

        if has_next and not end_cursor:
            logger.warning(
                f"Whop plans for {owner_id} report a next page without a cursor; stopping"
            )
            has_next = False

        logger.debug(
            f"Whop plans page for {owner_id} (after={cursor}): "
            f"{len(records)} records, has_next={has_next}"
        )
        return Page(records=records, next_cursor=end_cursor if has_next else None)

    def test_connection(self, owner_id: str) -> Dict[str, Any]:
        """
        Test connection to the Whop API.

        Returns:
            Dict with connection status; never raises for API failures
        """
        try:
            page = self.fetch_catalog_page(owner_id, None, 5)
            sample = [
                {
                    "id": record.get("id"),
                    "title": record.get("title") or record.get("name"),
                }
                for record in page.records
            ]
            return {
                "success": True,
                "message": f"Connected to Whop; {len(page.records)} product(s) in sample",
                "marketplace": self.marketplace_name,
                "sample": sample,
            }
        except APIError as e:
            logger.error(f"Whop connection test failed for {owner_id}: {e.message}")
            return {
                "success": False,
                "message": e.message,
                "marketplace": self.marketplace_name,
                "status_code": e.status_code,
                "sample": [],
            }
