from __future__ import annotations

from typing import Any, Dict, Optional


class ServiceError(Exception):
    """An error that already knows how it should look on the wire.

    Subclasses pin ``status_code`` and the stable ``error_code`` the client
    sees in the error body; ``detail`` is optional extra context.
    """

    status_code: int = 400
    error_code: str = "validation_error"

    def __init__(
        self,
        message: str,
        *,
        detail: Optional[Any] = None,
        status_code: Optional[int] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code

    def log_fields(self) -> Dict[str, Any]:
        return {
            "status_code": self.status_code,
            "error_code": self.error_code,
            "message": self.message,
            "detail": self.detail,
        }


class BadRequestError(ServiceError):
    """Missing or malformed input."""


class AuthenticationError(ServiceError):
    status_code = 401
    error_code = "unauthorized"


class NotFoundError(ServiceError):
    status_code = 404
    error_code = "not_found"


class ConflictError(ServiceError):
    status_code = 409
    error_code = "conflict"


class ServerError(ServiceError):
    """Configuration or data-integrity failure on our side."""

    status_code = 500
    error_code = "server_error"


class UpstreamError(ServiceError):
    """The quiz API failed or answered with something unusable."""

    status_code = 502
    error_code = "bad_gateway"


__all__ = [
    "AuthenticationError",
    "BadRequestError",
    "ConflictError",
    "NotFoundError",
    "ServerError",
    "ServiceError",
    "UpstreamError",
]
