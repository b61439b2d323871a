"""Domain exceptions."""

from typing import Any


class DomainException(Exception):
    """Base exception for all domain exceptions."""

    # Hey future me, message is stored as an attribute so callers can log it without parsing
    # str(exception). Don't raise this directly - pick the specific subclass so the worker can
    # decide retry vs give-up by type alone.
    def __init__(self, message: str, *args: Any) -> None:
        super().__init__(message, *args)
        self.message = message


class ValidationException(DomainException):
    """Raised when caller-supplied arguments are invalid.

    Used for malformed scan scopes (folder scan without paths) or filter
    policies with impossible values (negative duration floor).
    """

    pass


class InvalidStateException(DomainException):
    """Raised when an object is in an invalid state for the requested operation.

    Example: applying a reconciliation plan that was already applied, or
    starting a scan while another one is still running.
    """

    pass


class ConfigurationError(DomainException):
    """Raised when settings point at something unusable (e.g. unwritable DB directory)."""

    pass


# =============================================================================
# SYNC ERRORS
# Hey future me - everything the scan pipeline raises derives from SyncError.
# `retryable` is what LibraryScanWorker looks at: source/store hiccups are worth
# another attempt, data-integrity faults and cancellations are not.
# =============================================================================


class SyncError(DomainException):
    """Base class for library synchronization failures."""

    retryable: bool = False


class SourceUnavailableError(SyncError):
    """Raised when the track source cannot be enumerated.

    Nothing has been written when this is raised, so retrying immediately is safe.
    """

    retryable = True


class StoreUnavailableError(SyncError):
    """Raised when the library store cannot be read while planning a scan."""

    retryable = True


class StoreWriteError(SyncError):
    """Raised when a write step fails partway through applying a plan.

    Steps applied before ``step`` stay applied. Scan bookkeeping is left
    stale so the next run re-covers the same window.
    """

    retryable = True

    def __init__(self, step: str, message: str) -> None:
        super().__init__(f"Store write failed at step '{step}': {message}")
        self.step = step


class DataIntegrityError(SyncError):
    """Raised when the store violates the one-row-per-path invariant."""

    def __init__(self, path: str, row_count: int) -> None:
        super().__init__(f"Store holds {row_count} songs for path {path!r}")
        self.path = path
        self.row_count = row_count


class ScanCancelledError(SyncError):
    """Raised when a scan observes its cancellation signal between stages."""

    def __init__(self, stage: str) -> None:
        super().__init__(f"Scan cancelled before {stage}")
        self.stage = stage


__all__ = [
    "ConfigurationError",
    "DataIntegrityError",
    "DomainException",
    "InvalidStateException",
    "ScanCancelledError",
    "SourceUnavailableError",
    "StoreUnavailableError",
    "StoreWriteError",
    "SyncError",
    "ValidationException",
]
