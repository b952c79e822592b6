"""Custom exceptions for registry cleanup."""

from typing import Optional


class RegistryCleanupError(Exception):
    """Base exception for all registry cleanup errors.

    ``partial_result`` carries the CleanupResult of a run aborted by this
    error, so deletions already made can still be reported.
    """

    partial_result = None


class RegistryError(RegistryCleanupError):
    """Raised when a registry or backend call fails.

    Args:
        message: Human readable description
        status_code: HTTP status code, if the failure came from a response
        registry_type: Backend that raised the error (e.g. "ghcr")
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        registry_type: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.registry_type = registry_type

    @property
    def is_retryable(self) -> bool:
        """Client errors (4xx) never heal on their own."""
        if self.status_code is None:
            return True
        return not 400 <= self.status_code < 500


class AuthenticationError(RegistryError):
    """Raised when the registry rejects the configured credentials."""

    def __init__(self, message: str, registry_type: Optional[str] = None) -> None:
        super().__init__(message, 401, registry_type)


class NotFoundError(RegistryError):
    """Raised when a package, tag or manifest does not exist."""

    def __init__(self, message: str, registry_type: Optional[str] = None) -> None:
        super().__init__(message, 404, registry_type)


class ConfigurationError(RegistryCleanupError, ValueError):
    """Raised when the cleanup or provider configuration is invalid."""

    pass
