"""
Custom exceptions for mailtrust.

This module defines the error taxonomy used throughout the application.
Callers outside the core (an HTTP layer, the CLI) translate these into
user-facing responses.
"""

from typing import Any, Optional


class MailTrustError(Exception):
    """Base exception for all mailtrust errors."""

    def __init__(self, message: str,
                 details: Optional[dict[str, Any]] = None) -> None:
        """
        Initialize the base exception.

        Args:
            message: Human-readable error message.
            details: Optional dictionary with additional error details.
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} - Details: {self.details}"
        return self.message


# Lookup Exceptions
class NotFoundError(MailTrustError):
    """Raised when a referenced domain, key, provider or record is absent."""

    def __init__(
        self,
        entity: str,
        identifier: Any = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        """
        Initialize not found error.

        Args:
            entity: Kind of entity that was expected.
            identifier: The identifier that was looked up.
            details: Optional dictionary with additional error details.
        """
        message = f"{entity} not found"
        if identifier is not None:
            message += f": {identifier}"
        super().__init__(message, details)
        self.entity = entity
        self.identifier = identifier


class ZoneNotFoundError(NotFoundError):
    """Raised when a DNS provider has no zone matching a domain."""

    def __init__(
        self, domain: str, details: Optional[dict[str, Any]] = None
    ) -> None:
        super().__init__("Zone", domain, details)
        self.domain = domain


class ConflictError(MailTrustError):
    """Raised when an operation conflicts with the current state."""


# Validation Exceptions
class InvalidInputError(MailTrustError):
    """Raised when caller-supplied input is malformed."""

    def __init__(
        self,
        field: str,
        value: Any,
        reason: str,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        """
        Initialize invalid input error.

        Args:
            field: The field that failed validation.
            value: The invalid value.
            reason: The reason for validation failure.
            details: Optional dictionary with additional error details.
        """
        super().__init__(f"Invalid value for '{field}': {reason}", details)
        self.field = field
        self.value = value
        self.reason = reason


class InvalidDomainError(InvalidInputError):
    """Raised when a hostname is not a syntactically valid domain name."""

    def __init__(
        self,
        hostname: Any,
        reason: str = "not a valid domain name",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__("hostname", hostname, reason, details)
        self.hostname = hostname


# Upstream Exceptions
class UpstreamUnavailableError(MailTrustError):
    """Raised when a DNS server, provider API or MTA cannot be reached."""


class ProviderAPIError(UpstreamUnavailableError):
    """Raised when a DNS provider API reports a failed operation."""

    def __init__(
        self,
        provider: str,
        operation: str,
        errors: Any = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        """
        Initialize provider API error.

        Args:
            provider: Provider type that returned the error.
            operation: The operation that failed.
            errors: Error payload returned by the provider.
            details: Optional dictionary with additional error details.
        """
        message = f"{provider} failed to {operation}"
        if errors:
            message += f": {errors}"
        super().__init__(message, details)
        self.provider = provider
        self.operation = operation
        self.errors = errors


# Configuration Exceptions
class ConfigurationError(MailTrustError):
    """Base exception for configuration-related errors."""


class MissingConfigError(ConfigurationError):
    """Raised when a required configuration value is missing."""

    def __init__(
        self, config_key: str, details: Optional[dict[str, Any]] = None
    ) -> None:
        super().__init__(
            f"Missing required configuration: '{config_key}'", details)
        self.config_key = config_key


class InvalidConfigError(ConfigurationError):
    """Raised when a configuration value is invalid."""

    def __init__(
        self,
        config_key: str,
        value: Any,
        reason: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        """
        Initialize invalid config error.

        Args:
            config_key: The configuration key with invalid value.
            value: The invalid value.
            reason: Optional reason why the value is invalid.
            details: Optional dictionary with additional error details.
        """
        message = f"Invalid configuration value for '{config_key}': {value}"
        if reason:
            message += f" - {reason}"
        super().__init__(message, details)
        self.config_key = config_key
        self.value = value
        self.reason = reason


# Cryptography Exceptions
class CryptoError(MailTrustError):
    """Base exception for cryptography-related errors. Never retried."""


class EncryptionError(CryptoError):
    """Raised when encryption or key generation fails."""


class InvalidEnvelopeError(CryptoError):
    """Raised when an encrypted envelope is malformed or fails integrity checks."""


class KeyConfigurationError(CryptoError):
    """Raised when the configured vault key cannot be turned into 32 bytes."""
