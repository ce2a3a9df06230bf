"""
Relational persistence backend (Postgres, or SQLite in tests).

Products, categories and the admin credential live in separate tables.
A save upserts rows by id and deletes rows missing from the new set, all in
one transaction, so a failure part-way leaves the previous dataset intact.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON, Column, Integer, String, create_engine, delete, select
from sqlalchemy.exc import (
    DBAPIError,
    InterfaceError,
    OperationalError,
    SQLAlchemyError,
)
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from storefront.errors import StoreError, StoreTimeoutError, TransientStoreError
from storefront.store import BaseDatasetStore

logger = logging.getLogger(__name__)

CREDENTIAL_ROW_ID = 1
LAST_UPDATED_KEY = "lastUpdated"


class SqlDatasetStore(BaseDatasetStore):
    """
    SQLAlchemy-backed implementation. Accepts any SQLAlchemy URL (e.g., Postgres or SQLite for tests).
    """

    backend_name = "sql"

    def __init__(self, database_url: str, **kwargs):
        if not database_url:
            raise ValueError("DATABASE_URL is required for SqlDatasetStore")
        super().__init__(**kwargs)
        self.engine = create_engine(
            database_url,
            future=True,
            pool_pre_ping=True,
            pool_recycle=1800,
        )
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        Base.metadata.create_all(self.engine)

    def _translate(self, exc: SQLAlchemyError, operation: str) -> StoreError:
        if isinstance(exc, PoolTimeoutError):
            return StoreTimeoutError(f"{operation} timed out waiting for a connection")
        if isinstance(exc, (OperationalError, InterfaceError)) or (
            isinstance(exc, DBAPIError) and exc.connection_invalidated
        ):
            return TransientStoreError(f"{operation} failed: {exc.__class__.__name__}")
        return StoreError(f"{operation} failed: {exc.__class__.__name__}: {exc}")

    def _fetch(self) -> Any:
        try:
            with self.Session() as session:
                products = session.execute(
                    select(ProductRow).order_by(ProductRow.position.asc())
                ).scalars().all()
                categories = session.execute(
                    select(CategoryRow).order_by(CategoryRow.position.asc())
                ).scalars().all()
                credential = session.get(AdminCredentialRow, CREDENTIAL_ROW_ID)
                last_updated = session.get(StoreMetaRow, LAST_UPDATED_KEY)
                return {
                    "products": [row.data for row in products],
                    "categories": [row.as_dict() for row in categories],
                    "admin_credentials": credential.data if credential else None,
                    "lastUpdated": last_updated.value if last_updated else None,
                }
        except SQLAlchemyError as exc:
            raise self._translate(exc, "load") from exc

    def _write(self, payload: dict, body: bytes) -> None:
        products = payload.get("products") or []
        categories = payload.get("categories") or []
        try:
            with self.Session.begin() as session:
                self._replace_products(session, products)
                self._replace_categories(session, categories)
                self._save_credential(session, payload.get("admin_credentials"))
                self._save_meta(session, LAST_UPDATED_KEY, payload.get("lastUpdated"))
        except SQLAlchemyError as exc:
            raise self._translate(exc, "save") from exc

    def _replace_products(self, session: Session, products: List[Dict[str, Any]]) -> None:
        ids = [_row_id(product) for product in products]
        if len(set(ids)) != len(ids):
            raise StoreError("Product ids must be unique")
        session.execute(delete(ProductRow).where(ProductRow.id.not_in(ids)))
        for position, (product_id, product) in enumerate(zip(ids, products)):
            row = session.get(ProductRow, product_id)
            if row:
                row.position = position
                row.category = product.get("category")
                row.data = product
            else:
                session.add(
                    ProductRow(
                        id=product_id,
                        position=position,
                        category=product.get("category"),
                        data=product,
                    )
                )

    def _replace_categories(self, session: Session, categories: List[Dict[str, Any]]) -> None:
        ids = [str(category.get("id")) for category in categories]
        session.execute(delete(CategoryRow).where(CategoryRow.id.not_in(ids)))
        for position, (category_id, category) in enumerate(zip(ids, categories)):
            row = session.get(CategoryRow, category_id)
            if row:
                row.name = category.get("name", "")
                row.description = category.get("description", "")
                row.position = position
            else:
                session.add(
                    CategoryRow(
                        id=category_id,
                        name=category.get("name", ""),
                        description=category.get("description", ""),
                        position=position,
                    )
                )

    def _save_credential(self, session: Session, credential: Optional[dict]) -> None:
        row = session.get(AdminCredentialRow, CREDENTIAL_ROW_ID)
        if credential is None:
            if row:
                session.delete(row)
            return
        if row:
            row.data = credential
        else:
            session.add(AdminCredentialRow(id=CREDENTIAL_ROW_ID, data=credential))

    def _save_meta(self, session: Session, key: str, value: Optional[str]) -> None:
        row = session.get(StoreMetaRow, key)
        if row:
            row.value = value
        else:
            session.add(StoreMetaRow(key=key, value=value))


def _row_id(product: Dict[str, Any]) -> int:
    try:
        return int(product.get("id"))
    except (TypeError, ValueError) as exc:
        raise StoreError(f"Product id {product.get('id')!r} is not an integer") from exc


Base = declarative_base()


class ProductRow(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, autoincrement=False)
    position = Column(Integer, nullable=False, default=0)
    category = Column(String, nullable=True, index=True)
    data = Column(JSON, nullable=False)


class CategoryRow(Base):
    __tablename__ = "categories"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    description = Column(String, nullable=False, default="")
    position = Column(Integer, nullable=False, default=0)

    def as_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "description": self.description}


class AdminCredentialRow(Base):
    __tablename__ = "admin_credentials"

    id = Column(Integer, primary_key=True, autoincrement=False)
    data = Column(JSON, nullable=False)


class StoreMetaRow(Base):
    __tablename__ = "store_meta"

    key = Column(String, primary_key=True)
    value = Column(String, nullable=True)
