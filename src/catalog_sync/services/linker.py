"""
Resolution of pricing plans to their parent catalog items.
"""

from typing import Any, Dict, Iterable, Optional

from catalog_sync.database.models import CatalogItem
from catalog_sync.utils.logger import get_logger


logger = get_logger(__name__)


class CrossEntityLinker:
    """
    Maps parent upstream product ids to local catalog item ids.

    A plan whose parent cannot be resolved is still stored, with
    ``catalog_item_id`` left empty; consumers treat that as unlinked.
    """

    def __init__(self, parent_ids: Optional[Dict[str, str]] = None):
        self.parent_ids: Dict[str, str] = dict(parent_ids or {})
        self.linked_count = 0
        self.unresolved: Dict[str, int] = {}

    @classmethod
    def from_catalog_items(cls, items: Iterable[CatalogItem]) -> "CrossEntityLinker":
        """Build the map from already-synced catalog items."""
        return cls({item.upstream_id: item.id for item in items})

    def resolve(self, upstream_product_id: Optional[str]) -> Optional[str]:
        """Local catalog item id for an upstream product id, or None."""
        if not upstream_product_id:
            return None
        return self.parent_ids.get(upstream_product_id)

    def link(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        """
        Set ``catalog_item_id`` on normalized plan fields.

        Intended as the reconciliation engine's field hook.
        """
        parent = fields.get("upstream_product_id") or ""
        local_id = self.resolve(parent)
        fields["catalog_item_id"] = local_id

        if local_id:
            self.linked_count += 1
        else:
            key = parent or "<none>"
            self.unresolved[key] = self.unresolved.get(key, 0) + 1
            logger.debug(
                f"Plan {fields.get('upstream_id')} has no local parent "
                f"(product {key}); storing unlinked"
            )
        return fields

    @property
    def unresolved_count(self) -> int:
        return sum(self.unresolved.values())
