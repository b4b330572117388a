"""
Error types for the self-upgrade orchestrator.

This module defines the UpgradeError base class and subclasses for domain-specific
errors. Upgraders raise these internally; the ``try_*`` methods of
:class:`selfupgrade.upgrades.base.ProductUpgrader` turn them into step results
so the orchestrator never has to inspect exception types.
"""

from __future__ import annotations

from typing import Any


class UpgradeError(Exception):
    """
    Base exception class for upgrade errors.

    Attributes:
        error_code: Internal error code string (e.g., "invalid_config",
            "unavailable", "failed_precondition", "internal").
        message: Human-readable error message, shown to the user as-is.
        details: Optional structured details (e.g., paths, versions, stderr).

    Example:
        >>> raise UpgradeError(
        ...     error_code="unavailable",
        ...     message="Package index returned HTTP 503",
        ...     details={"url": "https://pypi.org/pypi/selfupgrade/json"},
        ... )
    """

    def __init__(
        self,
        error_code: str,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        """
        Initialize an UpgradeError.

        Args:
            error_code: Internal error code string identifying the error category.
            message: Human-readable error message.
            details: Optional dictionary with structured error details.
        """
        super().__init__(message)
        self.error_code = error_code
        self.message = message
        self.details = details or {}

    def __repr__(self) -> str:
        """Return a detailed string representation."""
        return (
            f"{self.__class__.__name__}("
            f"error_code={self.error_code!r}, "
            f"message={self.message!r}, "
            f"details={self.details!r})"
        )

    def to_dict(self) -> dict[str, Any]:
        """
        Convert the error to a dictionary for logging.

        Returns:
            Dictionary with error_code, message, and details.
        """
        return {
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class InvalidConfigError(UpgradeError):
    """
    Error raised when the upgrade configuration is invalid or inconsistent.

    Maps to the "invalid_config" error code.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize an InvalidConfigError."""
        super().__init__(error_code="invalid_config", message=message, details=details)


class UnavailableError(UpgradeError):
    """
    Error raised when the package index or a required tool is unreachable.

    Maps to the "unavailable" error code.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize an UnavailableError."""
        super().__init__(error_code="unavailable", message=message, details=details)


class FailedPreconditionError(UpgradeError):
    """
    Error raised when a precondition for the operation is not met.

    Maps to the "failed_precondition" error code and is used for things like
    missing downloads, insufficient disk space or an unwritable directory.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a FailedPreconditionError."""
        super().__init__(
            error_code="failed_precondition", message=message, details=details
        )


class InternalError(UpgradeError):
    """
    Error raised for unexpected internal errors (e.g., installer crashed).

    Maps to the "internal" error code.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize an InternalError."""
        super().__init__(error_code="internal", message=message, details=details)


class UnsupportedPlatformError(UpgradeError):
    """Error raised when self-upgrade is not supported on this platform."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize an UnsupportedPlatformError."""
        super().__init__(
            error_code="unsupported_platform", message=message, details=details
        )
