"""Exception taxonomy for connection flows and publishing.

All custom exceptions inherit from SocialSyncError and include:
- message: Human-readable error message
- error_code: Machine-readable error code (e.g., "INVALID_STATE")
- details: Optional dictionary with additional context
- status_code: HTTP status used when the error reaches the API layer
"""

from typing import Any, Optional


class SocialSyncError(Exception):
    """Base exception for all service errors.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code for client handling
        details: Optional dictionary with additional error context
        status_code: HTTP status code (set by subclasses)
    """

    status_code: int = 500
    default_error_code: str = "INTERNAL_ERROR"
    default_message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: Optional[str] = None,
        error_code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        self.message = message or self.default_message
        self.error_code = error_code or self.default_error_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for JSON response."""
        result = {
            "code": self.error_code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


# =============================================================================
# Generic API errors
# =============================================================================


class NotFoundError(SocialSyncError):
    """Resource not found (HTTP 404)."""

    status_code = 404
    default_error_code = "NOT_FOUND"
    default_message = "Resource not found"


class ValidationError(SocialSyncError):
    """Request validation failed (HTTP 400)."""

    status_code = 400
    default_error_code = "VALIDATION_ERROR"
    default_message = "Validation failed"


class ConflictError(SocialSyncError):
    """Request conflicts with current state (HTTP 409).

    Raised for duplicate active schedules and lost optimistic-lock races.
    """

    status_code = 409
    default_error_code = "CONFLICT"
    default_message = "Resource conflict"


# =============================================================================
# Connection flow errors
# =============================================================================


class ConfigurationError(SocialSyncError):
    """Platform app credentials are missing. Fatal, never retried."""

    status_code = 400
    default_error_code = "CONFIGURATION_ERROR"
    default_message = "Platform is not configured"


class UnsupportedPlatformError(SocialSyncError):
    """Platform name is not one of the supported integrations."""

    status_code = 400
    default_error_code = "UNSUPPORTED_PLATFORM"

    def __init__(self, platform: str, **kwargs):
        self.platform = platform
        super().__init__(f"Unsupported platform: {platform}", **kwargs)


class InvalidStateError(SocialSyncError):
    """OAuth state is missing, expired, or already consumed."""

    status_code = 400
    default_error_code = "INVALID_STATE"
    default_message = "Invalid state parameter"


class TokenExchangeError(SocialSyncError):
    """The platform rejected the authorization code or identity lookup."""

    status_code = 400
    default_error_code = "TOKEN_EXCHANGE_FAILED"
    default_message = "Token exchange failed"


# =============================================================================
# Publishing errors
# =============================================================================


class PublishError(SocialSyncError):
    """A publish attempt failed.

    Attributes:
        retryable: True for rate limits and transient network failures
        retry_after: Server hint in seconds before the next attempt
    """

    status_code = 502
    default_error_code = "PUBLISH_FAILED"
    default_message = "Publish failed"

    def __init__(
        self,
        message: Optional[str] = None,
        retryable: bool = False,
        retry_after: Optional[float] = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.retryable = retryable
        self.retry_after = retry_after


class PublishNotSupportedError(PublishError):
    """The adapter cannot publish for this platform. Always permanent."""

    default_error_code = "PUBLISH_NOT_SUPPORTED"

    def __init__(self, platform: str):
        super().__init__(
            f"Publishing is not implemented for platform {platform}", retryable=False
        )


class AuthExpiredError(PublishError):
    """Credentials expired, were revoked, or could not be refreshed.

    Never retried; the owning account is disabled and needs reconnection.
    """

    status_code = 401
    default_error_code = "AUTH_EXPIRED"
    default_message = "Account authorization expired, reconnection required"

    def __init__(self, message: Optional[str] = None, **kwargs):
        kwargs.pop("retryable", None)
        super().__init__(message, retryable=False, **kwargs)
