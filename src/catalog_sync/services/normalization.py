"""
Normalization of loosely-typed upstream records.

Upstream records mix naming styles (``title`` vs ``name``, ``company_id`` vs
``companyId``) and omit optional fields freely. Each entity type has one
total normalization function: display fields get fallbacks, but the
ownership field never does. ``extract_owner_id`` returns None when ownership
cannot be read, and the ownership validator decides what that means.
"""

import re
from typing import Any, Dict, Iterable, List, Optional

from catalog_sync.utils.logger import get_logger


logger = get_logger(__name__)

UNTITLED_PRODUCT = "Untitled Product"
UNTITLED_PLAN = "Untitled Plan"
MAX_EXTRACTED_LINES = 10

_BULLET_RE = re.compile(r"^\s*[•\-\*]\s*(.+?)\s*$", re.MULTILINE)
_FEATURES_RE = re.compile(r"features?:\s*\n?(.*?)(?:\n\n|benefits?:|$)", re.IGNORECASE | re.DOTALL)
_BENEFITS_RE = re.compile(r"benefits?:\s*\n?(.*?)(?:\n\n|features?:|$)", re.IGNORECASE | re.DOTALL)
_BULLET_PREFIX_RE = re.compile(r"^[•\-\*]\s*")


def _clean_id(value: Any) -> Optional[str]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, str)):
        text = str(value).strip()
        return text or None
    return None


def _owner_value(value: Any) -> Optional[str]:
    # Owner ids are compared verbatim; only integers are rendered as text
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return str(value)
    if isinstance(value, str) and value.strip():
        return value
    return None


def extract_owner_ids(record: Dict[str, Any]) -> List[str]:
    """
    Read every ownership value a record carries.

    Accepts ``company_id``, ``companyId`` and a nested ``company.id``. Blank
    and non-scalar values are ignored. Returns the distinct values in field
    order, so more than one entry means the record's ownership is ambiguous.
    """
    candidates = [record.get("company_id"), record.get("companyId")]
    company = record.get("company")
    if isinstance(company, dict):
        candidates.append(company.get("id"))

    owners: List[str] = []
    for candidate in candidates:
        owner = _owner_value(candidate)
        if owner is not None and owner not in owners:
            owners.append(owner)
    return owners


def extract_owner_id(record: Dict[str, Any]) -> Optional[str]:
    """
    Read the marketplace company id that owns a record.

    Returns None when no field holds a usable value or when the fields
    disagree; never guesses.
    """
    owners = extract_owner_ids(record)
    if len(owners) != 1:
        return None
    return owners[0]


def extract_upstream_id(record: Dict[str, Any]) -> Optional[str]:
    """Read the record's own upstream id."""
    return _clean_id(record.get("id"))


def extract_parent_product_id(plan: Dict[str, Any]) -> str:
    """Upstream product id a plan belongs to, or "" when absent."""
    product = plan.get("product")
    if isinstance(product, dict):
        parent = _clean_id(product.get("id"))
        if parent:
            return parent
    return _clean_id(plan.get("product_id")) or _clean_id(plan.get("productId")) or ""


def _to_cents(value: Any) -> Optional[int]:
    """Round a numeric (or numeric string) price; None when unusable."""
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(round(float(value)))
    except (TypeError, ValueError):
        return None


def _to_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _string_list(value: Any) -> List[str]:
    if not isinstance(value, (list, tuple)):
        return []
    return [str(item).strip() for item in value if item is not None and str(item).strip()]


def _dedupe(lines: Iterable[str]) -> List[str]:
    seen = set()
    result = []
    for line in lines:
        if line and line not in seen:
            seen.add(line)
            result.append(line)
    return result


def _section_lines(match: Optional["re.Match"]) -> List[str]:
    if not match or not match.group(1):
        return []
    lines = [
        _BULLET_PREFIX_RE.sub("", line.strip()).strip()
        for line in match.group(1).split("\n")
    ]
    return [line for line in lines if line][:MAX_EXTRACTED_LINES]


def extract_features_from_text(description: Optional[str]) -> List[str]:
    """
    Pull feature lines out of a product description.

    Bullet lines and the lines of a "Features:" section are collected,
    de-duplicated in order and capped at ten.
    """
    if not description:
        return []

    features = [match.strip() for match in _BULLET_RE.findall(description)]
    features.extend(_section_lines(_FEATURES_RE.search(description)))
    return _dedupe(features)[:MAX_EXTRACTED_LINES]


def extract_benefits_from_text(description: Optional[str]) -> List[str]:
    """Pull the lines of a "Benefits:" section out of a product description."""
    if not description:
        return []
    return _dedupe(_section_lines(_BENEFITS_RE.search(description)))


def map_product_type(raw_type: Optional[str]) -> str:
    """Map an upstream category/type label to a local product type."""
    if not raw_type or not isinstance(raw_type, str):
        return "other"

    label = raw_type.lower()
    if "membership" in label or "subscription" in label:
        return "membership"
    if "course" in label or "training" in label or "education" in label:
        return "course"
    if "community" in label or "discord" in label or "telegram" in label:
        return "community"
    if "software" in label or "app" in label or "tool" in label:
        return "software"
    if "digital" in label or "download" in label or "ebook" in label or "template" in label:
        return "digital_product"
    return "other"


def map_access_type(record: Dict[str, Any]) -> str:
    """Derive subscription / lifetime / one_time access from product flags."""
    if (record.get("recurring") or record.get("subscription")
            or record.get("billing_period") or record.get("interval")):
        return "subscription"

    access_type = record.get("access_type")
    if (record.get("lifetime") or record.get("permanent")
            or (isinstance(access_type, str) and "lifetime" in access_type.lower())):
        return "lifetime"
    return "one_time"


def map_billing_period(record: Dict[str, Any]) -> Optional[str]:
    """Map a product's billing interval to monthly/yearly/weekly/daily."""
    period = record.get("billing_period") or record.get("interval") or record.get("frequency")
    if not period or not isinstance(period, str):
        return None

    period = period.lower()
    if "month" in period:
        return "monthly"
    if "year" in period or "annual" in period:
        return "yearly"
    if "week" in period:
        return "weekly"
    if "day" in period:
        return "daily"
    return None


def normalize_catalog_item(record: Dict[str, Any]) -> Dict[str, Any]:
    """
    Map an upstream product record onto CatalogItem columns.

    Ownership and id are copied as read; callers must only pass records the
    ownership validator accepted.

    Args:
        record: Raw upstream product

    Returns:
        Column values for CatalogItem (``include_in_ai`` is local-only and
        deliberately absent)
    """
    description = _text(record.get("description"))
    features = _string_list(record.get("features")) or extract_features_from_text(description)
    benefits = _string_list(record.get("benefits")) or extract_benefits_from_text(description)

    return {
        "upstream_id": extract_upstream_id(record),
        "upstream_owner_id": extract_owner_id(record),
        "title": _text(record.get("title")) or _text(record.get("name")) or UNTITLED_PRODUCT,
        "description": description,
        "price": _to_cents(record.get("price")),
        "currency": _text(record.get("currency")) or "USD",
        "product_type": map_product_type(record.get("category") or record.get("type")),
        "access_type": map_access_type(record),
        "billing_period": map_billing_period(record),
        "is_active": record.get("is_active") is not False,
        "is_visible": record.get("is_visible") is not False,
        "category": _text(record.get("category")),
        "tags": _string_list(record.get("tags")),
        "image_url": (_text(record.get("image_url")) or _text(record.get("image"))
                      or _text(record.get("thumbnail"))),
        "features": features,
        "benefits": benefits,
        "target_audience": _text(record.get("target_audience")) or _text(record.get("audience")),
        "raw_data": record,
    }


def normalize_pricing_plan(record: Dict[str, Any]) -> Dict[str, Any]:
    """
    Map an upstream plan record onto PricingPlan columns.

    ``catalog_item_id`` is not set here; the cross-entity linker resolves it.
    Prices of 0 stay 0 (free plans); missing prices stay None.
    """
    visibility = _text(record.get("visibility")) or "visible"
    unlimited_stock = record.get("unlimited_stock")

    return {
        "upstream_id": extract_upstream_id(record),
        "upstream_owner_id": extract_owner_id(record),
        "upstream_product_id": extract_parent_product_id(record),
        "title": _text(record.get("title")) or _text(record.get("name")) or UNTITLED_PLAN,
        "description": _text(record.get("description")),
        "initial_price": _to_cents(record.get("initial_price")),
        "renewal_price": _to_cents(record.get("renewal_price")),
        "currency": (_text(record.get("currency")) or "usd").lower(),
        "billing_period": _to_int(record.get("billing_period")) or None,
        "plan_type": "one_time" if record.get("plan_type") == "one_time" else "renewal",
        "trial_period_days": _to_int(record.get("trial_period_days")) or None,
        "expiration_days": _to_int(record.get("expiration_days")) or None,
        "visibility": visibility,
        "is_visible": visibility == "visible",
        "stock": _to_int(record.get("stock")),
        "unlimited_stock": unlimited_stock if isinstance(unlimited_stock, bool) else None,
        "member_count": _to_int(record.get("member_count")),
        "purchase_url": _text(record.get("purchase_url")),
        "raw_data": record,
    }


NORMALIZERS = {
    "catalog_items": normalize_catalog_item,
    "pricing_plans": normalize_pricing_plan,
}
