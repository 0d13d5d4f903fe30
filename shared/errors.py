"""
Shared error handling for the Payments Access Layer.

Gateway errors carry the tenant, the endpoint and the upstream status/body so
that a failure surfaced to a caller can be diagnosed without replaying it.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel, Field

MAX_BODY_EXCERPT = 500


class ErrorResponse(BaseModel):
    """Standard error response format."""

    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class PaymentsException(Exception):
    """Base exception for Payments Access Layer services."""

    http_status = 400

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            code=self.code,
            message=self.message,
            details=self.details
        )


class ConfigurationError(PaymentsException):
    """Tenant gateway configuration is missing or incomplete."""

    def __init__(self, message: str = "Invalid gateway configuration", tenant_id: Optional[str] = None,
                 details: Optional[Dict[str, Any]] = None):
        self.tenant_id = tenant_id
        details = dict(details or {})
        if tenant_id is not None:
            details.setdefault("tenant_id", tenant_id)
        super().__init__("CONFIGURATION_ERROR", message, details)


class GatewayError(PaymentsException):
    """Base class for failures talking to the payment gateway."""

    http_status = 502

    def __init__(self, code: str, message: str, tenant_id: Optional[str] = None,
                 endpoint: Optional[str] = None, status_code: Optional[int] = None,
                 body: Any = None, details: Optional[Dict[str, Any]] = None):
        self.tenant_id = tenant_id
        self.endpoint = endpoint
        self.status_code = status_code
        self.body = body
        details = dict(details or {})
        details.update({
            "tenant_id": tenant_id,
            "endpoint": endpoint,
            "status_code": status_code,
            "body": body,
        })
        super().__init__(code, message, details)


class TransportError(GatewayError):
    """The gateway could not be reached, or the call deadline elapsed."""

    http_status = 504

    def __init__(self, message: str = "Gateway unreachable", **kwargs):
        super().__init__("TRANSPORT_ERROR", message, **kwargs)


class AcquisitionError(TransportError):
    """Token exchange failed before the gateway produced a usable answer."""

    def __init__(self, message: str = "Token acquisition failed", **kwargs):
        super().__init__(message, **kwargs)
        self.code = "ACQUISITION_ERROR"


class AuthenticationError(GatewayError):
    """The gateway rejected the merchant credentials or terminal."""

    def __init__(self, message: str = "Gateway authentication failed", **kwargs):
        super().__init__("AUTHENTICATION_ERROR", message, **kwargs)


class GatewayAuthError(GatewayError):
    """A valid bearer token could not be established or kept."""

    def __init__(self, message: str = "Gateway authorization retries exhausted", **kwargs):
        super().__init__("GATEWAY_AUTH_ERROR", message, **kwargs)


class GatewayRequestError(GatewayError):
    """Non-401 failure of a business call, passed through from the gateway."""

    def __init__(self, message: str = "Gateway request failed", **kwargs):
        super().__init__("GATEWAY_REQUEST_ERROR", message, **kwargs)


def body_excerpt(response) -> Any:
    """Return a bounded, JSON-friendly view of an upstream response body."""
    try:
        payload = response.json()
    except ValueError:
        return response.text[:MAX_BODY_EXCERPT]
    if isinstance(payload, (dict, list)) and len(response.text) <= MAX_BODY_EXCERPT:
        return payload
    return response.text[:MAX_BODY_EXCERPT]
