"""Custom exceptions for the health tracker store."""


class HealthTrackerStoreError(Exception):
    """Base exception for all health tracker store errors."""

    pass


class ConfigurationError(HealthTrackerStoreError):
    """Raised when there is a configuration error."""

    pass


class AuthenticationError(HealthTrackerStoreError):
    """Raised when authentication with the remote backend fails."""

    pass


class StorageWriteError(HealthTrackerStoreError):
    """Raised when the key-value backend rejects a write (quota, disabled, I/O)."""

    pass


class RemoteStoreError(HealthTrackerStoreError):
    """Raised when a remote document read or write fails."""

    pass


class ExportError(HealthTrackerStoreError):
    """Raised when writing an export bundle fails."""

    pass
