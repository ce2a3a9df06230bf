"""
Catalog reads and writes on top of the store, the cache and the normalizer.

Reads go cache -> store -> normalize -> cache. Writes validate, normalize,
load the current dataset strictly, overwrite it and invalidate the affected
cache entries.
"""

from __future__ import annotations

import copy
import logging
import math
import threading
from typing import Any, Dict, List, Optional

from storefront.cache import Cache
from storefront.errors import NotFoundError, ValidationError
from storefront.normalize import (
    DEFAULT_CATEGORIES,
    find_duplicate_ids,
    normalize_categories,
    normalize_category,
    normalize_products,
    slugify,
)
from storefront.store import Dataset, DatasetStore, SaveResult

logger = logging.getLogger(__name__)

PRODUCTS_CACHE_KEY = "products"
CATEGORIES_CACHE_KEY = "categories"


def _as_price(value: Any) -> Optional[float]:
    """Return ``value`` as a finite float, or None when it is not a usable price."""
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        return None
    try:
        price = float(value)
    except (ValueError, OverflowError):
        return None
    return price if math.isfinite(price) else None


def validate_product_payload(raw_products: Any) -> None:
    """Reject write payloads missing the fields the storefront cannot default."""
    if not isinstance(raw_products, list):
        raise ValidationError("'products' must be a list")
    for index, product in enumerate(raw_products):
        if not isinstance(product, dict):
            raise ValidationError(f"products[{index}] must be an object")
        title = product.get("title")
        if not isinstance(title, str) or not title.strip():
            raise ValidationError(f"products[{index}] is missing a title")
        price = _as_price(product.get("price"))
        if price is None:
            raise ValidationError(f"products[{index}] is missing a numeric price")
        if price < 0:
            raise ValidationError(f"products[{index}] has a negative price")
        if not isinstance(product.get("colors"), list) and not isinstance(
            product.get("sizes"), list
        ):
            raise ValidationError(f"products[{index}] is missing colors")


class CatalogService:
    """Owns the store and the cache; every route goes through here."""

    def __init__(
        self,
        store: DatasetStore,
        cache: Cache,
        *,
        products_ttl_seconds: float = 300.0,
        categories_ttl_seconds: float = 60.0,
    ):
        self.store = store
        self.cache = cache
        self.products_ttl_seconds = products_ttl_seconds
        self.categories_ttl_seconds = categories_ttl_seconds
        # Bumped by every write so a read that loaded before it does not
        # repopulate the cache with what the write replaced.
        self._generation = 0
        self._generation_lock = threading.Lock()

    def _load_normalized(self) -> Dataset:
        dataset = self.store.load()
        dataset.products = normalize_products(dataset.products)
        dataset.categories = normalize_categories(dataset.categories)
        return dataset

    def _read_through(self) -> Dataset:
        with self._generation_lock:
            generation = self._generation
        dataset = self._load_normalized()
        # Fallback data must not hide the store coming back.
        if dataset.fallback:
            return dataset
        with self._generation_lock:
            if generation != self._generation:
                logger.debug("Dataset changed during read; not caching it")
                return dataset
            self.cache.put(
                PRODUCTS_CACHE_KEY, dataset.products, self.products_ttl_seconds
            )
            self.cache.put(
                CATEGORIES_CACHE_KEY, dataset.categories, self.categories_ttl_seconds
            )
        return dataset

    def get_products(self) -> List[Dict[str, Any]]:
        cached = self.cache.get(PRODUCTS_CACHE_KEY)
        if cached is not None:
            return cached
        return self._read_through().products

    def list_products(
        self, page: Optional[int] = None, limit: Optional[int] = None
    ) -> Dict[str, Any]:
        products = self.get_products()
        if limit is None:
            return {"products": products}
        page = page or 1
        start = (page - 1) * limit
        return {
            "products": products[start : start + limit],
            "page": page,
            "limit": limit,
            "total": len(products),
        }

    def list_categories(self) -> Dict[str, Any]:
        categories = self.cache.get(CATEGORIES_CACHE_KEY)
        if categories is None:
            categories = self._read_through().categories
        if not categories:
            categories = copy.deepcopy(DEFAULT_CATEGORIES)
        return {"categories": categories}

    def _save(self, dataset: Dataset, *cache_keys: str) -> SaveResult:
        dataset.touch()
        result = self.store.save(dataset)
        with self._generation_lock:
            self._generation += 1
            if cache_keys:
                for key in cache_keys:
                    self.cache.invalidate(key)
            else:
                self.cache.invalidate()
        return result

    def replace_products(self, raw_products: Any) -> List[Dict[str, Any]]:
        validate_product_payload(raw_products)
        products = normalize_products(raw_products)
        duplicates = find_duplicate_ids(products)
        if duplicates:
            raise ValidationError(
                "Duplicate product ids: " + ", ".join(str(d) for d in duplicates)
            )
        dataset = self.store.load(allow_fallback=False)
        dataset.products = products
        self._save(dataset, PRODUCTS_CACHE_KEY)
        logger.info("Replaced product set with %d products", len(products))
        return products

    def replace_categories(self, raw_categories: Any) -> List[Dict[str, str]]:
        if not isinstance(raw_categories, list):
            raise ValidationError("'categories' must be a list")
        categories = normalize_categories(raw_categories)
        dataset = self.store.load(allow_fallback=False)
        dataset.categories = categories
        self._save(dataset, CATEGORIES_CACHE_KEY)
        logger.info("Replaced category set with %d categories", len(categories))
        return categories

    def add_category(self, raw_category: Any) -> Dict[str, str]:
        """Insert a category, or replace the one with the same id in place."""
        category = normalize_category(raw_category)
        if category is None:
            raise ValidationError("Category must be a name or an object with an id")

        dataset = self.store.load(allow_fallback=False)
        categories = normalize_categories(dataset.categories)
        for index, existing in enumerate(categories):
            if existing["id"] == category["id"]:
                categories[index] = category
                break
        else:
            categories.append(category)
        dataset.categories = categories
        self._save(dataset, CATEGORIES_CACHE_KEY)
        return category

    def delete_category(self, category_id: str) -> Dict[str, Any]:
        """
        Remove a category and move its products to the first remaining category.

        Products keep their category when no other category exists.
        """
        category_id = slugify(category_id)
        dataset = self.store.load(allow_fallback=False)
        categories = normalize_categories(dataset.categories)
        remaining = [c for c in categories if c["id"] != category_id]
        if len(remaining) == len(categories):
            raise NotFoundError(f"Category '{category_id}' not found")

        products = normalize_products(dataset.products)
        target = remaining[0]["id"] if remaining else None
        reassigned = 0
        if target is not None:
            for product in products:
                if product.get("category") == category_id:
                    product["category"] = target
                    reassigned += 1

        dataset.categories = remaining
        dataset.products = products
        self._save(dataset, PRODUCTS_CACHE_KEY, CATEGORIES_CACHE_KEY)
        logger.info(
            "Deleted category %s; reassigned %d products to %s",
            category_id,
            reassigned,
            target,
        )
        return {
            "success": True,
            "removed": category_id,
            "reassigned": reassigned,
            "reassignedTo": target,
        }

    def export_dataset(self) -> Dict[str, Any]:
        """Normalized dataset for admin clients, without the stored credential."""
        dataset = self._load_normalized()
        return {
            "products": dataset.products,
            "categories": dataset.categories,
            "lastUpdated": dataset.last_updated,
        }

    def import_dataset(self, payload: Any) -> SaveResult:
        """
        Overwrite products and categories from a dataset-shaped body.

        Missing sections keep their stored value; the admin credential is
        never taken from the payload.
        """
        if not isinstance(payload, dict):
            raise ValidationError("Dataset payload must be a JSON object")

        products = categories = None
        if "products" in payload:
            validate_product_payload(payload["products"])
            products = normalize_products(payload["products"])
            duplicates = find_duplicate_ids(products)
            if duplicates:
                raise ValidationError(
                    "Duplicate product ids: " + ", ".join(str(d) for d in duplicates)
                )
        if "categories" in payload:
            if not isinstance(payload["categories"], list):
                raise ValidationError("'categories' must be a list")
            categories = normalize_categories(payload["categories"])

        dataset = self.store.load(allow_fallback=False)
        if products is not None:
            dataset.products = products
        if categories is not None:
            dataset.categories = categories
        return self._save(dataset)
