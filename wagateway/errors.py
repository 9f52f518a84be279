from __future__ import annotations


class GatewayError(Exception):
    """Base class for failures that map onto an HTTP status."""

    status_code = 500
    code = "internal_error"

    def __init__(self, message: str | None = None, *, code: str | None = None) -> None:
        super().__init__(message or self.code)
        self.message = message or self.code
        if code is not None:
            self.code = code

    def to_payload(self) -> dict[str, str]:
        return {"status": "error", "message": self.message, "error": self.code}


class ValidationError(GatewayError):
    status_code = 400
    code = "invalid_request"


class AuthError(GatewayError):
    status_code = 403
    code = "forbidden"


class NotFoundError(GatewayError):
    status_code = 404
    code = "not_found"


class ConflictError(GatewayError):
    status_code = 409
    code = "conflict"


class NotReadyError(GatewayError):
    status_code = 503
    code = "not_ready"


class TransportError(GatewayError):
    """Raised when the driver fails to deliver a message."""

    status_code = 500
    code = "transport_failed"


class StoreError(GatewayError):
    """Raised when the session store cannot be reached or queried."""

    status_code = 500
    code = "store_unavailable"


__all__ = [
    "GatewayError",
    "ValidationError",
    "AuthError",
    "NotFoundError",
    "ConflictError",
    "NotReadyError",
    "TransportError",
    "StoreError",
]
