"""
HTTP routes for the storefront API.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, Header, Query

from storefront.auth import AuthGate, parse_bearer
from storefront.config import get_settings
from storefront.dependencies import (
    get_auth_gate,
    get_catalog_service,
    get_dataset_store,
    require_admin,
)
from storefront.schemas import (
    AddCategoryRequest,
    AddCategoryResponse,
    CategoriesResponse,
    ChangePasswordRequest,
    DatasetResponse,
    DeleteCategoryResponse,
    HealthResponse,
    LoginRequest,
    LoginResponse,
    ProductsResponse,
    ReplaceCategoriesRequest,
    ReplaceProductsRequest,
    SaveDataResponse,
    VerifyResponse,
    WriteResponse,
)
from storefront.service import CatalogService
from storefront.store import DatasetStore

logger = logging.getLogger(__name__)

router = APIRouter()
root_router = APIRouter()


@router.get(
    "/products", response_model=ProductsResponse, response_model_exclude_none=True
)
def list_products(
    page: Optional[int] = Query(None, ge=1),
    limit: Optional[int] = Query(None, ge=1, le=500),
    service: CatalogService = Depends(get_catalog_service),
):
    return service.list_products(page=page, limit=limit)


@router.post("/products", response_model=WriteResponse, response_model_exclude_none=True)
def replace_products(
    payload: ReplaceProductsRequest,
    _claims: dict = Depends(require_admin),
    service: CatalogService = Depends(get_catalog_service),
):
    """
    Replace the entire product set.
    """
    products = service.replace_products(payload.products)
    return WriteResponse(success=True, count=len(products))


@router.get("/categories", response_model=CategoriesResponse)
def list_categories(service: CatalogService = Depends(get_catalog_service)):
    return service.list_categories()


@router.post(
    "/categories", response_model=WriteResponse, response_model_exclude_none=True
)
def replace_categories(
    payload: ReplaceCategoriesRequest,
    _claims: dict = Depends(require_admin),
    service: CatalogService = Depends(get_catalog_service),
):
    categories = service.replace_categories(payload.categories)
    return WriteResponse(success=True, count=len(categories))


@router.post("/categories/add", response_model=AddCategoryResponse)
def add_category(
    payload: AddCategoryRequest,
    _claims: dict = Depends(require_admin),
    service: CatalogService = Depends(get_catalog_service),
):
    category = service.add_category(payload.category)
    return AddCategoryResponse(success=True, category=category)


@router.delete("/categories/{category_id}", response_model=DeleteCategoryResponse)
def delete_category(
    category_id: str,
    _claims: dict = Depends(require_admin),
    service: CatalogService = Depends(get_catalog_service),
):
    return service.delete_category(category_id)


@router.post("/auth/login", response_model=LoginResponse)
def login(payload: LoginRequest, auth: AuthGate = Depends(get_auth_gate)):
    username = payload.username or ""
    token = auth.login(username, payload.password or "")
    return LoginResponse(
        success=True,
        token=token,
        user={"username": username},
        expiresIn=auth.signer.ttl_seconds,
    )


@router.get("/auth/verify", response_model=VerifyResponse, response_model_exclude_none=True)
def verify(
    authorization: Optional[str] = Header(None),
    auth: AuthGate = Depends(get_auth_gate),
):
    claims = auth.claims(parse_bearer(authorization))
    if claims is None:
        return VerifyResponse(valid=False)
    return VerifyResponse(valid=True, user={"username": claims.get("sub")})


@router.post("/auth/change-password", response_model=WriteResponse, response_model_exclude_none=True)
def change_password(
    payload: ChangePasswordRequest,
    _claims: dict = Depends(require_admin),
    auth: AuthGate = Depends(get_auth_gate),
):
    auth.change_password(payload.currentPassword or "", payload.newPassword or "")
    return WriteResponse(success=True, message="Password changed")


@root_router.get("/", response_model=HealthResponse)
def health(store: DatasetStore = Depends(get_dataset_store)):
    prefix = get_settings().api_prefix
    return HealthResponse(
        message="Storefront backend is running",
        status="OK",
        backend=store.backend_name,
        endpoints={
            "saveData": "POST /save-data",
            "loadData": "GET /load-data",
            "products": f"GET {prefix}/products",
            "categories": f"GET {prefix}/categories",
            "login": f"POST {prefix}/auth/login",
        },
    )


@root_router.get("/load-data", response_model=DatasetResponse)
def load_data(
    _claims: dict = Depends(require_admin),
    service: CatalogService = Depends(get_catalog_service),
):
    return service.export_dataset()


@root_router.post("/save-data", response_model=SaveDataResponse)
def save_data(
    payload: Any = Body(...),
    _claims: dict = Depends(require_admin),
    service: CatalogService = Depends(get_catalog_service),
):
    result = service.import_dataset(payload)
    return SaveDataResponse(success=True, result=result.as_dict())
