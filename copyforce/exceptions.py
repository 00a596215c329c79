"""Custom exception hierarchy for copyforce."""

from __future__ import annotations


class CopyForceError(Exception):
    """Base exception for all copyforce errors."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ConfigurationError(CopyForceError):
    """Raised when configuration is missing or invalid."""
    pass


class InvalidRulePattern(ConfigurationError):
    """Raised when a table rule is not a valid regular expression."""
    pass


class RulesDocumentError(ConfigurationError):
    """Raised when the rules document cannot be read or parsed."""
    pass


class MalformedConnectionString(ConfigurationError):
    """Raised when a connect string is neither a profile nor a 4-part literal."""
    pass


class UnknownProfile(ConfigurationError):
    """Raised when a profile is not present in the credentials registry."""
    pass


class AuthenticationError(CopyForceError):
    """Raised when Salesforce rejects the login."""
    pass


class LoginTimeoutError(CopyForceError):
    """Raised when the Salesforce login exceeds the configured timeout."""
    pass


class SalesforceAPIError(CopyForceError):
    """Raised when a Salesforce call fails after login."""
    pass


class DestinationError(CopyForceError):
    """Base exception for destination database errors."""
    pass


class DestinationUnavailable(DestinationError):
    """Raised when the destination database cannot be opened."""
    pass


class DestinationWriteError(DestinationError):
    """Raised when creating schema or writing rows fails."""
    pass


class TransferError(CopyForceError):
    """Raised when copying a single table fails."""

    def __init__(self, table: str, message: str, details: dict | None = None):
        super().__init__(message, details={"table": table, **(details or {})})
        self.table = table
