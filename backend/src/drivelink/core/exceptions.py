"""Custom exceptions for DriveLink.

This module defines the error taxonomy surfaced by the provider facade,
the reconciler and the HTTP layer.
"""

from typing import Any


class DriveLinkException(Exception):
    """Base exception class for DriveLink."""

    def __init__(
        self,
        message: str,
        error_code: str,
        status_code: int = 500,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.error_code, "message": self.message, "details": self.details}


# Request validation
class ValidationError(DriveLinkException):
    """Raised when request data is malformed or missing."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(
            message=message,
            error_code="VALIDATION_ERROR",
            status_code=400,
            details=details,
        )


class WebhookValidationError(DriveLinkException):
    """Raised when a push notification fails header or channel-token checks."""

    def __init__(self, reason: str, details: dict[str, Any] | None = None):
        super().__init__(
            message=f"Invalid webhook delivery: {reason}",
            error_code="WEBHOOK_VALIDATION_ERROR",
            status_code=400,
            details=details or {"reason": reason},
        )


class AuthenticationError(DriveLinkException):
    """Raised when the platform user header is missing."""

    def __init__(self, message: str = "Not authorized", details: dict[str, Any] | None = None):
        super().__init__(
            message=message,
            error_code="AUTHENTICATION_ERROR",
            status_code=401,
            details=details,
        )


class UnknownUserError(DriveLinkException):
    """Raised when a user id does not resolve to a chat platform user."""

    def __init__(self, user_id: str, details: dict[str, Any] | None = None):
        super().__init__(
            message=f"Unknown user '{user_id}'",
            error_code="UNKNOWN_USER",
            status_code=500,
            details=details or {"user_id": user_id},
        )


# Credentials
class NotConnectedError(DriveLinkException):
    """Raised when a user has no stored Google credential."""

    def __init__(self, user_id: str, details: dict[str, Any] | None = None):
        super().__init__(
            message=f"User '{user_id}' has not connected a Google account",
            error_code="NOT_CONNECTED",
            status_code=400,
            details=details or {"user_id": user_id},
        )


class OAuthStateError(DriveLinkException):
    """Raised when an OAuth state token is missing, expired or belongs to another user."""

    def __init__(self, message: str = "Invalid OAuth state", details: dict[str, Any] | None = None):
        super().__init__(
            message=message,
            error_code="OAUTH_STATE_INVALID",
            status_code=400,
            details=details,
        )


# Rate limiting and quotas
class RateLimitedError(DriveLinkException):
    """Raised when a call is refused locally.

    Either a cool-down flag is set for the service or the token bucket did
    not grant a token before the wait deadline. Callers must not retry
    within the same request.
    """

    def __init__(self, service_type: str, reason: str, details: dict[str, Any] | None = None):
        self.service_type = service_type
        self.reason = reason
        super().__init__(
            message=f"Rate limited for {service_type}: {reason}",
            error_code="RATE_LIMITED",
            status_code=429,
            details=details or {"service_type": service_type, "reason": reason},
        )


class ProviderError(DriveLinkException):
    """Raised when a Google API call fails.

    ``status`` is the upstream HTTP status; the error itself maps to 502.
    ``reasons`` and ``error_details`` hold the parsed Google error payload.
    """

    def __init__(
        self,
        status: int,
        message: str,
        reasons: list[str] | None = None,
        error_details: list[dict[str, Any]] | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.status = int(status)
        self.reasons = list(reasons or [])
        self.error_details = list(error_details or [])
        super().__init__(
            message=f"Google API error {self.status}: {message}",
            error_code="PROVIDER_ERROR",
            status_code=502,
            details=details or {"status": self.status, "reasons": self.reasons},
        )
        self.provider_message = message

    @property
    def is_retryable(self) -> bool:
        """True for errors that may succeed on retry (429, 5xx)."""
        return self.status == 429 or self.status >= 500


class QuotaExceededError(ProviderError):
    """A ProviderError that Google classified as quota exhaustion.

    ``scope`` is "user" for per-user-per-minute limits and "project" otherwise.
    """

    SCOPE_USER = "user"
    SCOPE_PROJECT = "project"

    def __init__(self, service_type: str, scope: str, error: ProviderError):
        super().__init__(
            status=error.status,
            message=error.provider_message,
            reasons=error.reasons,
            error_details=error.error_details,
            details={"status": error.status, "service_type": service_type, "scope": scope},
        )
        self.service_type = service_type
        self.scope = scope
        self.error_code = "QUOTA_EXCEEDED"
        self.status_code = 429


class OperationCanceledError(DriveLinkException):
    """Raised when an operation's deadline elapses or it is cancelled."""

    def __init__(self, operation: str, details: dict[str, Any] | None = None):
        super().__init__(
            message=f"Operation '{operation}' was canceled or timed out",
            error_code="OPERATION_CANCELED",
            status_code=504,
            details=details or {"operation": operation},
        )


class LockTimeoutError(DriveLinkException):
    """Raised when the cluster mutex is not granted before the deadline."""

    def __init__(self, key: str, timeout: float, details: dict[str, Any] | None = None):
        super().__init__(
            message=f"Timed out after {timeout}s waiting for lock '{key}'",
            error_code="LOCK_TIMEOUT",
            status_code=500,
            details=details or {"key": key, "timeout": timeout},
        )


# Watch channels
class WatchChannelError(DriveLinkException):
    """Raised when a watch channel cannot be read, registered or persisted."""

    def __init__(self, user_id: str, reason: str, details: dict[str, Any] | None = None):
        super().__init__(
            message=f"Watch channel error for user '{user_id}': {reason}",
            error_code="WATCH_CHANNEL_ERROR",
            status_code=500,
            details=details or {"user_id": user_id, "reason": reason},
        )


# Collaborators
class ChatPlatformError(DriveLinkException):
    """Raised when the chat server REST API rejects a request."""

    def __init__(self, operation: str, status: int | None = None, details: dict[str, Any] | None = None):
        self.status = status
        super().__init__(
            message=f"Chat platform call '{operation}' failed" + (f" with status {status}" if status else ""),
            error_code="CHAT_PLATFORM_ERROR",
            status_code=502,
            details=details or {"operation": operation, "status": status},
        )


class ConfigurationError(DriveLinkException):
    """Raised when required configuration is missing or invalid."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(
            message=message,
            error_code="CONFIGURATION_ERROR",
            status_code=500,
            details=details,
        )
