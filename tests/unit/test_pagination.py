"""
Unit tests for the paginated collector
"""
import logging

import pytest
from unittest.mock import MagicMock

from catalog_sync.services.pagination import Page, PaginatedCollector, collect_all
from catalog_sync.utils.exceptions import PermanentFetchError


def _records(*ids):
    return [{"id": record_id} for record_id in ids]


class TestPaginatedCollector:
    """Test cursor following and the page safety bound"""

    def test_follows_cursor_until_last_page(self):
        pages = {
            None: Page(_records("p1", "p2"), next_cursor="c1"),
            "c1": Page(_records("p3", "p4"), next_cursor="c2"),
            "c2": Page(_records("p5")),
        }
        fetcher = MagicMock(side_effect=lambda cursor, size: pages[cursor])

        result = collect_all(fetcher, page_size_max=2, page_limit=20)

        assert [r["id"] for r in result.records] == ["p1", "p2", "p3", "p4", "p5"]
        assert result.pages == 3
        assert not result.truncated
        assert [call.args for call in fetcher.call_args_list] == [(None, 2), ("c1", 2), ("c2", 2)]

    def test_empty_collection(self):
        result = collect_all(lambda cursor, size: Page([]), page_size_max=50)

        assert result.records == []
        assert result.pages == 1
        assert len(result) == 0

    def test_page_limit_truncates_without_failing(self, caplog):
        counter = {"n": 0}

        def endless(cursor, size):
            counter["n"] += 1
            return Page(_records(f"p{counter['n']}"), next_cursor=f"c{counter['n']}")

        with caplog.at_level(logging.WARNING, logger="catalog_sync"):
            result = PaginatedCollector(page_size_max=1, page_limit=3, label="catalog_items").collect_all(endless)

        assert result.truncated
        assert result.pages == 3
        assert len(result.records) == 3
        assert any("page limit 3" in message for message in caplog.messages)

    def test_repeated_cursor_stops_paging(self, caplog):
        fetcher = MagicMock(return_value=Page(_records("p1"), next_cursor="same"))

        with caplog.at_level(logging.WARNING, logger="catalog_sync"):
            result = collect_all(fetcher, page_size_max=1, page_limit=20)

        assert fetcher.call_count == 2
        assert not result.truncated
        assert any("repeated" in message for message in caplog.messages)

    def test_fetch_errors_propagate(self):
        fetcher = MagicMock(side_effect=[
            Page(_records("p1"), next_cursor="c1"),
            PermanentFetchError("forbidden", status_code=403),
        ])

        with pytest.raises(PermanentFetchError):
            collect_all(fetcher, page_size_max=1)

    @pytest.mark.parametrize("size, limit", [(0, 20), (50, 0)])
    def test_rejects_non_positive_bounds(self, size, limit):
        with pytest.raises(ValueError):
            PaginatedCollector(page_size_max=size, page_limit=limit)
