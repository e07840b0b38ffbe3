# core/exceptions.py
"""
Error taxonomy for the gateway.

Each error knows the HTTP status and the short machine-readable code it is
reported with, so the admission controller and the FastAPI exception handler
render them the same way:

    {"ok": false, "error": "<code>", "details": ...}
"""

from typing import Any, Dict, Optional


class GatewayError(Exception):
    status_code: int = 500
    error: str = "internal_error"

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        details: Optional[Any] = None,
        headers: Optional[Dict[str, str]] = None
    ):
        self.message = message or self.error
        self.details = details
        self.headers = headers or {}
        super().__init__(self.message)

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"ok": False, "error": self.error}
        if self.details is not None:
            payload["details"] = self.details
        return payload


# ============================================================================
# CALLER ERRORS (4xx, never retried server-side)
# ============================================================================

class MethodNotAllowedError(GatewayError):
    status_code = 405
    error = "method_not_allowed"


class MalformedBodyError(GatewayError):
    status_code = 400
    error = "invalid_json"


class InvalidIdempotencyKeyError(GatewayError):
    status_code = 400
    error = "invalid_idempotency_key"


class UnauthorizedError(GatewayError):
    status_code = 401
    error = "unauthorized"


class JobNotFoundError(GatewayError):
    status_code = 404
    error = "not_found"


class RateLimitedError(GatewayError):
    status_code = 429
    error = "rate_limited"


class PayloadValidationError(GatewayError):
    """Schema violations; details hold every failing constraint."""
    status_code = 422
    error = "invalid_payload"


# ============================================================================
# OPERATOR / DEPENDENCY ERRORS (5xx, generic to the caller)
# ============================================================================

class ConfigurationError(GatewayError):
    status_code = 500
    error = "misconfigured"

    def to_payload(self) -> Dict[str, Any]:
        # Which setting is missing is only ever logged.
        return {"ok": False, "error": self.error}


class UpstreamError(GatewayError):
    status_code = 502
    error = "enqueue_failed"

    def to_payload(self) -> Dict[str, Any]:
        return {"ok": False, "error": self.error}
