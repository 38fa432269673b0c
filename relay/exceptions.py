"""Custom exception hierarchy for the upload relay."""

from __future__ import annotations

from typing import Any


class RelayError(Exception):
    """Base exception for all relay-specific errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(RelayError):
    """Raised when configuration is invalid or missing."""
    pass


class AuthError(RelayError):
    """Base class for upload key errors."""
    pass


class UnauthorizedError(AuthError):
    """Raised when the caller's upload key is missing or wrong."""

    def __init__(self, reason: str) -> None:
        super().__init__("Unauthorized", {"reason": reason})
        self.reason = reason


class ServerMisconfiguredError(AuthError):
    """Raised when no upload key is configured on the server."""
    pass


class ValidationError(RelayError):
    """Base class for request validation errors."""
    pass


class MissingFileError(ValidationError):
    """Raised when the request carries no file."""
    pass


class FileTooLargeError(ValidationError):
    """Raised when the uploaded file exceeds the configured size limit."""

    def __init__(self, max_bytes: int) -> None:
        max_mb = max_bytes / (1024 * 1024)
        super().__init__(
            f"File too large. Maximum allowed size is {max_mb:g} MB.",
            {"max_bytes": max_bytes},
        )
        self.max_bytes = max_bytes


class ProviderError(RelayError):
    """Raised by a storage backend when a single upload attempt fails."""

    def __init__(self, provider: str, detail: str) -> None:
        super().__init__(f"{provider}: {detail}", {"provider": provider, "detail": detail})
        self.provider = provider
        self.detail = detail


class UploadFailedError(RelayError):
    """Base class for terminal upload failures."""
    pass


class AllProvidersFailedError(UploadFailedError):
    """Raised when every eligible provider failed for one request."""

    def __init__(self, errors: list[str]) -> None:
        super().__init__("All providers failed", {"errors": list(errors)})
        self.errors = list(errors)


class NoProvidersConfiguredError(UploadFailedError):
    """Raised when the credential pool is empty."""
    pass


class ResourceCleanupError(RelayError):
    """Raised internally when staged upload data cannot be released."""
    pass
