"""
Error taxonomy shared by the service, the stores and the HTTP layer.

Every error carries the HTTP status it maps to and a short machine-readable
code, so route handlers can simply let them propagate.
"""

from __future__ import annotations

from typing import Optional


class StorefrontError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code: int = 500
    code: str = "internal_error"

    def __init__(self, message: str, *, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code

    def as_dict(self) -> dict:
        return {"success": False, "error": self.code, "message": self.message}


class ValidationError(StorefrontError):
    """Malformed write payload."""

    status_code = 400
    code = "validation_error"


class AuthError(StorefrontError):
    """Missing or invalid bearer token or credentials."""

    status_code = 401
    code = "unauthorized"


class CredentialsNotReadyError(AuthError):
    """No admin credential existed; a default one has just been provisioned."""

    status_code = 503
    code = "credentials_provisioning"


class NotFoundError(StorefrontError):
    status_code = 404
    code = "not_found"


class SizeLimitError(StorefrontError):
    """Payload exceeds the configured byte ceiling."""

    status_code = 413
    code = "payload_too_large"


class StoreError(StorefrontError):
    """Remote store rejected the request; retrying will not help."""

    status_code = 502
    code = "store_error"


class TransientStoreError(StoreError):
    """Network failure or 5xx from the remote store; safe to retry."""

    status_code = 503
    code = "store_unavailable"


class StoreTimeoutError(TransientStoreError):
    status_code = 408
    code = "store_timeout"


class UnknownError(StorefrontError):
    status_code = 500
    code = "internal_error"
