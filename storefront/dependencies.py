"""
Dependency wiring for the FastAPI app.
"""

from __future__ import annotations

import logging
import secrets
from typing import Optional

from fastapi import Depends, Header

from storefront.auth import AuthGate, TokenSigner, parse_bearer
from storefront.cache import Cache, InMemoryTtlCache, RedisTtlCache
from storefront.config import Settings, get_settings
from storefront.db import SqlDatasetStore
from storefront.errors import AuthError
from storefront.service import CatalogService
from storefront.store import (
    DatasetStore,
    InMemoryDatasetStore,
    JsonBinDatasetStore,
    ObjectStorageDatasetStore,
)

logger = logging.getLogger(__name__)

_dataset_store: DatasetStore | None = None
_cache: Cache | None = None
_catalog_service: CatalogService | None = None
_auth_gate: AuthGate | None = None


def build_dataset_store(settings: Settings) -> DatasetStore:
    retry_options = {
        "max_attempts": settings.store_max_attempts,
        "backoff_step_seconds": settings.store_backoff_step_seconds,
        "backoff_max_seconds": settings.store_backoff_max_seconds,
        "max_payload_bytes": settings.max_payload_bytes,
    }
    backend = settings.resolved_store_backend()
    if backend == "memory":
        return InMemoryDatasetStore(**retry_options)
    if backend == "sql":
        return SqlDatasetStore(settings.database_url or "", **retry_options)
    if backend == "jsonbin":
        return JsonBinDatasetStore(
            settings.jsonbin_bin_id or "",
            settings.jsonbin_api_key or "",
            base_url=settings.jsonbin_base_url,
            timeout_seconds=settings.store_request_timeout_seconds,
            **retry_options,
        )
    if backend == "object":
        return ObjectStorageDatasetStore(
            settings.s3_bucket or "",
            settings.s3_object_key,
            region=settings.s3_region or "",
            endpoint=settings.s3_endpoint or "",
            access_key_id=settings.aws_access_key_id or "",
            secret_access_key=settings.aws_secret_access_key or "",
            timeout_seconds=settings.store_request_timeout_seconds,
            **retry_options,
        )
    raise ValueError(f"Unknown store backend: {backend}")


def get_dataset_store() -> DatasetStore:
    """
    Return a singleton store so in-memory state persists across requests.
    """
    global _dataset_store
    if _dataset_store:
        return _dataset_store

    _dataset_store = build_dataset_store(get_settings())
    logger.info("Using %s dataset store", _dataset_store.backend_name)
    return _dataset_store


def get_cache() -> Cache:
    global _cache
    if _cache:
        return _cache

    settings = get_settings()
    if settings.redis_url:
        _cache = RedisTtlCache(
            url=settings.redis_url,
            prefix=settings.redis_cache_prefix,
            default_ttl_seconds=settings.products_cache_ttl_seconds,
        )
    else:
        _cache = InMemoryTtlCache(
            default_ttl_seconds=settings.products_cache_ttl_seconds
        )
    return _cache


def get_catalog_service() -> CatalogService:
    global _catalog_service
    if _catalog_service:
        return _catalog_service

    settings = get_settings()
    _catalog_service = CatalogService(
        get_dataset_store(),
        get_cache(),
        products_ttl_seconds=settings.products_cache_ttl_seconds,
        categories_ttl_seconds=settings.categories_cache_ttl_seconds,
    )
    return _catalog_service


def get_auth_gate() -> AuthGate:
    global _auth_gate
    if _auth_gate:
        return _auth_gate

    settings = get_settings()
    secret = settings.session_secret
    if not secret:
        logger.warning(
            "SESSION_SECRET is not set; issued tokens will not survive a restart"
        )
        secret = secrets.token_urlsafe(32)
    _auth_gate = AuthGate(
        get_dataset_store(),
        TokenSigner(secret, ttl_seconds=settings.token_ttl_seconds),
        default_username=settings.default_admin_username,
        default_password=settings.default_admin_password,
        allow_legacy_token=settings.allow_legacy_token,
    )
    return _auth_gate


def require_admin(
    authorization: Optional[str] = Header(None),
    auth: AuthGate = Depends(get_auth_gate),
) -> dict:
    """Resolve the bearer token to its claims or reject the request."""
    claims = auth.claims(parse_bearer(authorization))
    if claims is None:
        raise AuthError("Not authorized")
    return claims


def reset_dependencies() -> None:
    """Drop all singletons so the next request rebuilds them (useful in tests)."""
    global _dataset_store, _cache, _catalog_service, _auth_gate
    _dataset_store = None
    _cache = None
    _catalog_service = None
    _auth_gate = None
