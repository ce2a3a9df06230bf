"""
Coercion of loosely-shaped product and category records into canonical form.

Every function here is total: malformed input is defaulted or dropped,
never raised on.
"""

from __future__ import annotations

import math
import re
from typing import Any, Dict, Iterable, List, Optional

PLACEHOLDER_IMAGE = "https://via.placeholder.com/400x300"
DEFAULT_COLOR_NAME = "Default"
DEFAULT_PRODUCT_TITLE = "untitled"
DEFAULT_PRODUCT_CATEGORY = "general"
PRODUCT_STATUSES = ("active", "inactive")
PLACEHOLDER_SIZES = ("S", "M", "L", "XL")

# Keys of the legacy single-color product shape that get folded into colors[0].
LEGACY_PRODUCT_KEYS = ("sizes", "color")

DEFAULT_CATEGORIES: List[Dict[str, str]] = [
    {
        "id": "shirts",
        "name": "Shirts",
        "description": "Shirts in a range of cuts and styles",
    },
    {
        "id": "shorts",
        "name": "Shorts",
        "description": "Shorts for everyday wear and sport",
    },
]

_NON_SLUG_CHARS = re.compile(r"[^a-z0-9]+")


def _to_int(value: Any, default: int = 0) -> int:
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value == value and abs(value) != float("inf") else default
    if isinstance(value, str):
        text = value.strip()
        try:
            return int(text)
        except ValueError:
            try:
                return _to_int(float(text), default)
            except ValueError:
                return default
    return default


def _to_price(value: Any) -> float:
    if isinstance(value, bool) or value is None:
        return 0.0
    try:
        price = float(value)
    except (TypeError, ValueError, OverflowError):
        return 0.0
    if not math.isfinite(price) or price < 0:
        return 0.0
    return price


def _to_text(value: Any, default: str) -> str:
    if value is None:
        return default
    text = value if isinstance(value, str) else str(value)
    return text if text.strip() else default


def capitalize(value: str) -> str:
    """Uppercase the first character and leave the rest untouched."""
    return value[:1].upper() + value[1:]


def slugify(value: Any) -> str:
    return _NON_SLUG_CHARS.sub("", str(value).lower())


def placeholder_color() -> Dict[str, Any]:
    return {
        "name": DEFAULT_COLOR_NAME,
        "image": PLACEHOLDER_IMAGE,
        "sizes": [{"name": name, "stock": 0} for name in PLACEHOLDER_SIZES],
    }


def normalize_size(raw: Any) -> Optional[Dict[str, Any]]:
    if isinstance(raw, str):
        return {"name": raw, "stock": 0}
    if not isinstance(raw, dict):
        return None
    stock = _to_int(raw.get("stock"), 0)
    return {"name": _to_text(raw.get("name"), ""), "stock": max(stock, 0)}


def _normalize_sizes(raw: Any) -> List[Dict[str, Any]]:
    if not isinstance(raw, list):
        return []
    sizes = (normalize_size(item) for item in raw)
    return [size for size in sizes if size is not None]


def normalize_color(raw: Any) -> Optional[Dict[str, Any]]:
    if isinstance(raw, str):
        raw = {"name": raw}
    if not isinstance(raw, dict):
        return None
    return {
        "name": _to_text(raw.get("name"), DEFAULT_COLOR_NAME),
        "image": _to_text(raw.get("image"), PLACEHOLDER_IMAGE),
        "sizes": _normalize_sizes(raw.get("sizes")),
    }


def normalize_product(raw: Any) -> Optional[Dict[str, Any]]:
    """
    Canonicalize one product record, or return None when it is not an object.

    Products in the legacy shape (``sizes`` at the top level, no ``colors``)
    are wrapped into a single color named after ``product.color``. A product
    left with no colors gets the placeholder color so that every product
    carries at least one.
    """
    if not isinstance(raw, dict):
        return None

    raw_colors = raw.get("colors")
    if isinstance(raw_colors, list):
        colors = [c for c in (normalize_color(item) for item in raw_colors) if c]
    elif isinstance(raw.get("sizes"), list):
        colors = [
            {
                "name": _to_text(raw.get("color"), DEFAULT_COLOR_NAME),
                "image": _to_text(raw.get("image"), PLACEHOLDER_IMAGE),
                "sizes": _normalize_sizes(raw.get("sizes")),
            }
        ]
    else:
        colors = []
    if not colors:
        colors = [placeholder_color()]

    status = str(raw.get("status") or "").lower()
    product = {
        key: value
        for key, value in raw.items()
        if key not in LEGACY_PRODUCT_KEYS
    }
    product.update(
        {
            "id": _to_int(raw.get("id"), 1),
            "title": _to_text(raw.get("title"), DEFAULT_PRODUCT_TITLE),
            "category": _to_text(raw.get("category"), DEFAULT_PRODUCT_CATEGORY),
            "price": _to_price(raw.get("price")),
            "description": _to_text(raw.get("description"), ""),
            "status": status if status in PRODUCT_STATUSES else "active",
            "colors": colors,
        }
    )
    return product


def normalize_products(raw: Any) -> List[Dict[str, Any]]:
    if not isinstance(raw, list):
        return []
    products = (normalize_product(item) for item in raw)
    return [product for product in products if product is not None]


def normalize_category(raw: Any) -> Optional[Dict[str, str]]:
    """
    Canonicalize one category, or return None when it cannot be salvaged.

    A bare string is promoted to a full category; an object needs at least an
    ``id`` and gets ``name``/``description`` synthesized when missing.
    """
    if isinstance(raw, str):
        category_id = slugify(raw)
        if not category_id:
            return None
        label = raw.strip()
        return {
            "id": category_id,
            "name": capitalize(label),
            "description": f"Category of {label}",
        }
    if not isinstance(raw, dict) or raw.get("id") in (None, ""):
        return None
    category_id = slugify(raw["id"])
    if not category_id:
        return None
    name = _to_text(raw.get("name"), capitalize(category_id))
    return {
        "id": category_id,
        "name": name,
        "description": _to_text(raw.get("description"), f"Category of {name}"),
    }


def normalize_categories(raw: Any) -> List[Dict[str, str]]:
    if not isinstance(raw, list):
        return []
    seen: set[str] = set()
    categories: List[Dict[str, str]] = []
    for item in raw:
        category = normalize_category(item)
        if category is None or category["id"] in seen:
            continue
        seen.add(category["id"])
        categories.append(category)
    return categories


def find_duplicate_ids(records: Iterable[Dict[str, Any]]) -> List[Any]:
    """Return ids that appear more than once, in first-seen order."""
    seen: set = set()
    duplicates: List[Any] = []
    for record in records:
        record_id = record.get("id")
        if record_id in seen and record_id not in duplicates:
            duplicates.append(record_id)
        seen.add(record_id)
    return duplicates
