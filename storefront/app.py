"""
FastAPI application entry point for the storefront backend.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from storefront.config import get_settings
from storefront.dependencies import get_auth_gate
from storefront.errors import (
    SizeLimitError,
    StoreError,
    StorefrontError,
    UnknownError,
    ValidationError,
)
from storefront.routes import root_router, router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    if settings.provision_credentials_on_startup:
        try:
            await run_in_threadpool(get_auth_gate().ensure_credentials)
        except StoreError as exc:
            # Login provisions lazily when the store is back.
            logger.warning("Could not provision admin credentials at startup: %s", exc)
    yield


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(StorefrontError)
    async def storefront_error_handler(request: Request, exc: StorefrontError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=exc.status_code, content=exc.as_dict())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        error = ValidationError("Invalid request body")
        content = error.as_dict()
        content["details"] = jsonable_encoder(exc.errors(), custom_encoder={Exception: str})
        return JSONResponse(status_code=error.status_code, content=content)

    @app.exception_handler(Exception)
    async def unknown_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        error = UnknownError("Unexpected server error")
        return JSONResponse(status_code=error.status_code, content=error.as_dict())


def create_app() -> FastAPI:
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    app = FastAPI(title="Storefront Admin Backend", version="0.1.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def limit_payload_size(request: Request, call_next):
        length = request.headers.get("content-length")
        if length and length.isdigit() and int(length) > settings.max_payload_bytes:
            error = SizeLimitError(
                f"Request body exceeds {settings.max_payload_bytes} bytes"
            )
            return JSONResponse(status_code=error.status_code, content=error.as_dict())
        return await call_next(request)

    _register_error_handlers(app)
    app.include_router(router, prefix=settings.api_prefix)
    app.include_router(root_router)
    return app


app = create_app()
