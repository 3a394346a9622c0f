"""
Exception classes for the nutrition coach API and its AI providers.
"""

from fastapi.responses import JSONResponse
from fastapi import status
from typing import Optional


class CoachAPIError(Exception):
    """Base exception for coach API errors."""

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_400_BAD_REQUEST,
        error_code: str = "INTERNAL_ERROR",
        details: Optional[dict] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)

    def to_response(self) -> JSONResponse:
        """Convert exception to FastAPI JSONResponse."""
        headers = None
        if "retry_after" in self.details:
            headers = {"Retry-After": str(self.details["retry_after"])}
        return JSONResponse(
            status_code=self.status_code,
            content={
                "success": False,
                "error": self.message,
                "error_code": self.error_code,
                **({"details": self.details} if self.details else {}),
            },
            headers=headers,
        )


class ValidationError(CoachAPIError):
    """Raised when request validation fails."""

    def __init__(self, message: str, field: Optional[str] = None, details: Optional[dict] = None):
        full_details = details or {}
        if field:
            full_details["field"] = field
        super().__init__(
            message=message,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            error_code="VALIDATION_ERROR",
            details=full_details,
        )


class AuthenticationError(CoachAPIError):
    """Raised when the caller did not identify a user."""

    def __init__(self, message: str = "Missing user identity"):
        super().__init__(
            message=message,
            status_code=status.HTTP_401_UNAUTHORIZED,
            error_code="AUTH_FAILED",
        )


class ResourceNotFoundError(CoachAPIError):
    """Raised when a requested resource is not found."""

    def __init__(self, resource: str, identifier: str):
        super().__init__(
            message=f"{resource} not found: {identifier}",
            status_code=status.HTTP_404_NOT_FOUND,
            error_code="NOT_FOUND",
            details={"resource": resource, "identifier": identifier},
        )


class RateLimitError(CoachAPIError):
    """Raised when a rate limit (ours or the AI provider's) is exceeded."""

    def __init__(self, retry_after: int = 60, service: Optional[str] = None):
        details = {"retry_after": retry_after}
        if service:
            details["service"] = service
        super().__init__(
            message=f"Rate limit exceeded. Try again in {retry_after} seconds.",
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            error_code="RATE_LIMIT_EXCEEDED",
            details=details,
        )


class ExternalServiceError(CoachAPIError):
    """Raised when an external service (Supabase, AI provider, Redis) fails."""

    def __init__(self, service: str, message: str, details: Optional[dict] = None):
        full_details = details or {}
        full_details["service"] = service
        super().__init__(
            message=f"{service} service error: {message}",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            error_code="SERVICE_UNAVAILABLE",
            details=full_details,
        )


class ProviderHTTPError(ExternalServiceError):
    """Non-success HTTP status returned by an AI provider."""

    def __init__(self, service: str, upstream_status: int, body: str = ""):
        self.upstream_status = upstream_status
        super().__init__(
            service=service,
            message=f"HTTP {upstream_status} {body[:200]}".strip(),
            details={"upstream_status": upstream_status},
        )


class ProviderResponseError(ExternalServiceError):
    """AI provider answered, but without the fields we expect."""

    def __init__(self, service: str, message: str = "malformed response"):
        super().__init__(service=service, message=message)
