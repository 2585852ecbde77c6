"""
Paginated collection of upstream records.

A page fetcher is any callable ``(cursor, page_size) -> Page``. The collector
follows ``Page.next_cursor`` until the upstream reports no further page or the
page limit is reached. Hitting the limit truncates the collection with a
warning instead of failing: a scheduled run that syncs partial data is
preferred to one that never finishes.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from catalog_sync.utils.logger import get_logger


logger = get_logger(__name__)


@dataclass
class Page:
    """One page of upstream records."""

    records: List[Dict[str, Any]]
    next_cursor: Optional[str] = None

    @property
    def has_next(self) -> bool:
        return self.next_cursor is not None


@dataclass
class CollectionResult:
    """Records accumulated across pages."""

    records: List[Dict[str, Any]] = field(default_factory=list)
    pages: int = 0
    truncated: bool = False

    def __len__(self) -> int:
        return len(self.records)


PageFetcher = Callable[[Optional[str], int], Page]


class PaginatedCollector:
    """Drives a page fetcher across a paginated collection endpoint."""

    def __init__(self, page_size_max: int = 50, page_limit: int = 20, label: str = "records"):
        if page_size_max <= 0:
            raise ValueError("page_size_max must be positive")
        if page_limit <= 0:
            raise ValueError("page_limit must be positive")
        self.page_size_max = page_size_max
        self.page_limit = page_limit
        self.label = label

    def collect_all(self, page_fetcher: PageFetcher) -> CollectionResult:
        """
        Fetch pages until the upstream is exhausted or the page limit is hit.

        Fetch errors propagate unchanged; nothing collected so far is returned
        in that case.
        """
        result = CollectionResult()
        cursor: Optional[str] = None
        seen_cursors = set()

        while True:
            if result.pages >= self.page_limit:
                result.truncated = True
                logger.warning(
                    f"Stopped collecting {self.label} at page limit {self.page_limit} "
                    f"({len(result.records)} records); upstream reports more pages"
                )
                break

            logger.debug(f"Fetching {self.label} page {result.pages + 1} (cursor={cursor})")
            page = page_fetcher(cursor, self.page_size_max)
            result.pages += 1
            result.records.extend(page.records)

            if not page.has_next:
                break

            if page.next_cursor in seen_cursors:
                logger.warning(
                    f"Cursor {page.next_cursor!r} repeated while collecting {self.label}; "
                    "upstream may be ignoring the cursor, stopping"
                )
                break
            seen_cursors.add(page.next_cursor)
            cursor = page.next_cursor

        logger.info(
            f"Collected {len(result.records)} {self.label} in {result.pages} page(s)"
            + (" (truncated)" if result.truncated else "")
        )
        return result


def collect_all(page_fetcher: PageFetcher, page_size_max: int = 50,
                page_limit: int = 20, label: str = "records") -> CollectionResult:
    """Functional shortcut for ``PaginatedCollector(...).collect_all(...)``."""
    return PaginatedCollector(page_size_max, page_limit, label).collect_all(page_fetcher)
