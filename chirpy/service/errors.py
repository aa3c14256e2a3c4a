from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Base class for service-layer exceptions mapped to HTTP responses.

    Each subclass pins an HTTP ``status_code`` and a stable ``error_code``
    that the API layer places in the error envelope:
    - validation_error (400)
    - unauthorized (401)
    - not_found (404)
    - conflict (409)
    - server_error (500)

    The message is client-facing. Never put internal diagnostics in it.
    """

    status_code: int = 400
    error_code: str = "validation_error"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        detail: Optional[dict] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.detail = detail or {}


class BadRequestError(ServiceError):
    """Request is malformed or carries an invalid value (400)."""
    status_code = 400
    error_code = "validation_error"


class AuthenticationError(ServiceError):
    """Credentials missing or rejected (401)."""
    status_code = 401
    error_code = "unauthorized"


class NotFoundError(ServiceError):
    status_code = 404
    error_code = "not_found"


class ConflictError(ServiceError):
    status_code = 409
    error_code = "conflict"


class ServerError(ServiceError):
    """Internal failure unrelated to the caller's credentials (500)."""
    status_code = 500
    error_code = "server_error"


__all__ = [
    "ServiceError",
    "BadRequestError",
    "AuthenticationError",
    "NotFoundError",
    "ConflictError",
    "ServerError",
]
