"""Error taxonomy shared by the service and the client."""

from __future__ import annotations


class TelemetryError(Exception):
    """Base class for expected, user-reportable failures."""


class NetworkError(TelemetryError):
    """The remote store could not be reached or did not answer in time."""


class ValidationError(TelemetryError):
    """Input rejected before any remote call was attempted."""


class AuthError(TelemetryError):
    """Credential, account or recovery-token failure."""


class StorageError(TelemetryError):
    """The remote store answered but refused or failed the operation."""


class ConflictError(StorageError):
    """A unique constraint (such as the username) was violated."""


class NotFoundError(StorageError, LookupError):
    """The requested row, table or procedure does not exist."""
