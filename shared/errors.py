"""
Shared error handling for the Weather Proxy.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Standard error response format."""

    request_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = {}


class WeatherProxyException(Exception):
    """Base exception for Weather Proxy services."""

    status_code = 500

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self, request_id: Optional[str] = None) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            request_id=request_id,
            code=self.code,
            message=self.message,
            details=self.details
        )


class ValidationError(WeatherProxyException):
    """Client supplied missing or invalid input."""

    status_code = 400

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class ConfigurationError(WeatherProxyException):
    """Invalid startup configuration."""

    def __init__(self, message: str = "Invalid configuration", details: Optional[Dict[str, Any]] = None):
        super().__init__("CONFIGURATION_ERROR", message, details)


class ExternalServiceError(WeatherProxyException):
    """Upstream transport failure or unexpected upstream status."""

    def __init__(self, service: str, message: str = "External service error", details: Optional[Dict[str, Any]] = None):
        self.service = service
        super().__init__("EXTERNAL_SERVICE_ERROR", f"{service}: {message}", details)


class UpstreamPayloadError(ExternalServiceError):
    """Upstream answered, but its body could not be decoded."""

    def __init__(self, service: str, message: str = "Malformed upstream payload", details: Optional[Dict[str, Any]] = None):
        super().__init__(service, message, details)
        self.code = "UPSTREAM_PAYLOAD_ERROR"
