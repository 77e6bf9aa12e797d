"""
Error taxonomy for the gateway.

Every failure produced by the gateway itself is a `GatewayError` carrying
the HTTP status and the `{error, details?}` body returned to the caller.
Upstream outcomes are never expressed as a `GatewayError`; they are
passed through with the upstream's own status.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, Optional


class GatewayError(Exception):
    status_code: int = 500
    error: str = "An unknown error occurred"

    def __init__(
        self,
        error: Optional[str] = None,
        details: Optional[str] = None,
        *,
        status_code: Optional[int] = None,
    ):
        if error is not None:
            self.error = error
        if status_code is not None:
            self.status_code = status_code
        self.details = details
        super().__init__(self.error)

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.error}
        if self.details is not None:
            body["details"] = self.details
        return body


class AuthenticationFailed(GatewayError):
    status_code = 401
    error = "Authentication failed"


class ValidationFailed(GatewayError):
    status_code = 400
    error = "Invalid request"

    def __init__(
        self,
        error: Optional[str] = None,
        details: Optional[str] = None,
        *,
        missing_fields: Optional[Iterable[str]] = None,
    ):
        self.missing_fields = list(missing_fields or [])
        if self.missing_fields:
            error = f"Missing required fields: {', '.join(self.missing_fields)}"
        super().__init__(error, details)


class NotFound(GatewayError):
    """Absent record. Also used when the record belongs to another owner."""

    status_code = 404
    error = "Not found"


class ServiceMismatch(GatewayError):
    status_code = 400
    error = "API key does not match requested service"


class SecretUnwrapFailed(GatewayError):
    PERMISSION_DENIED = "permission_denied"
    DECRYPT_FAILED = "decrypt_failed"

    status_code = 500
    error = "Failed to decrypt credential"

    def __init__(self, category: str = DECRYPT_FAILED):
        super().__init__(details=category)
        self.category = category


class UpstreamTransportFailed(GatewayError):
    status_code = 500
    error = "MCP request failed"

    def __init__(
        self,
        details: str,
        *,
        upstream_status: Optional[int] = None,
        upstream_headers: Optional[Dict[str, str]] = None,
        duration_ms: float = 0.0,
    ):
        super().__init__(details=details)
        self.upstream_status = upstream_status
        self.upstream_headers = upstream_headers or {}
        self.duration_ms = duration_ms


class KeyServiceError(Exception):
    """Raised by key service adapters; never shown to callers verbatim."""


class KeyServicePermissionDenied(KeyServiceError):
    pass
