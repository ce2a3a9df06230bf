"""
Pydantic schemas for the storefront API.

Write bodies are typed loosely on purpose: the catalog service owns
validation so malformed records get the same 400 error shape everywhere.
"""

from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class Size(BaseModel):
    name: str
    stock: int = Field(0, ge=0)


class Color(BaseModel):
    name: str = "Default"
    image: str
    sizes: list[Size] = Field(default_factory=list)


class Product(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: int = 1
    title: str = "untitled"
    category: str = "general"
    price: float = Field(0.0, ge=0)
    description: str = ""
    status: Literal["active", "inactive"] = "active"
    colors: list[Color] = Field(..., min_length=1)


class Category(BaseModel):
    id: str
    name: str
    description: str


class ProductsResponse(BaseModel):
    products: list[Product]
    page: Optional[int] = None
    limit: Optional[int] = None
    total: Optional[int] = None


class CategoriesResponse(BaseModel):
    categories: list[Category]


class ReplaceProductsRequest(BaseModel):
    products: Any = None


class ReplaceCategoriesRequest(BaseModel):
    categories: Any = None


class AddCategoryRequest(BaseModel):
    category: Any = None


class WriteResponse(BaseModel):
    success: bool
    count: Optional[int] = None
    message: Optional[str] = None


class AddCategoryResponse(BaseModel):
    success: bool
    category: Category


class DeleteCategoryResponse(BaseModel):
    success: bool
    removed: str
    reassigned: int
    reassignedTo: Optional[str] = None


class LoginRequest(BaseModel):
    username: Optional[str] = None
    password: Optional[str] = None


class LoginResponse(BaseModel):
    success: bool
    token: str
    user: dict
    expiresIn: int


class VerifyResponse(BaseModel):
    valid: bool
    user: Optional[dict] = None


class ChangePasswordRequest(BaseModel):
    currentPassword: Optional[str] = None
    newPassword: Optional[str] = None


class DatasetResponse(BaseModel):
    products: list[Product]
    categories: list[Category]
    lastUpdated: Optional[str] = None


class SaveDataResponse(BaseModel):
    success: bool
    result: dict


class HealthResponse(BaseModel):
    message: str
    status: str
    backend: str
    endpoints: dict
