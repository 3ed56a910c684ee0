from __future__ import annotations


class VulnMatchError(Exception):
    """Base class for all errors raised by vulnmatch."""


class ConfigurationError(VulnMatchError, ValueError):
    """Invalid settings, rejected before any network or store access."""


class PersistenceError(VulnMatchError):
    """The vulnerability store could not complete an operation."""


class IndexUnavailableError(VulnMatchError):
    """The identification index was never built or failed to build."""


class SyncError(VulnMatchError):
    """A synchronization run could not complete."""


class SyncInProgressError(SyncError):
    """Another synchronization run holds the store's sync lock."""


class TransientRemoteError(SyncError):
    """Remote failure worth retrying (5xx, 429, timeout, undecodable body)."""

    def __init__(self, message: str, *, status_code: int | None = None, retry_after: float | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.retry_after = retry_after


class RemoteRequestError(SyncError):
    """Remote rejected the request (4xx other than 429)."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RemoteSchemaError(SyncError):
    """Remote payload decoded but does not have the expected shape."""


class RetriesExhaustedError(SyncError):
    """A page kept failing transiently after the configured number of attempts."""

    def __init__(self, message: str, *, attempts: int) -> None:
        super().__init__(message)
        self.attempts = attempts


class CorruptDataError(SyncError):
    """Remote data would move the corpus backwards or violates an invariant."""
