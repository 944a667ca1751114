"""Error taxonomy for patch operations.

Every failure carries an ``ErrorKind``. Retry loops decide what to do by
inspecting the kind, never the exception type or message text.
"""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Failure classes raised by the patcher.

    retryable:
        The fetcher may try again (with the next transport strategy).
    resets_connection:
        The pooled HTTP client must be discarded before the next attempt.
    """

    NETWORK_UNAVAILABLE = "NETWORK_UNAVAILABLE"
    INSUFFICIENT_DISK_SPACE = "INSUFFICIENT_DISK_SPACE"
    TRANSPORT = "TRANSPORT_FAILURE"
    TIMEOUT = "TIMEOUT"
    SIZE_MISMATCH = "SIZE_MISMATCH"
    HTTP_STATUS = "HTTP_STATUS"
    NOT_FOUND = "NOT_FOUND"
    EXTRACTION = "EXTRACTION_FAILURE"
    CHECKSUM_MISMATCH = "CHECKSUM_MISMATCH"
    MANIFEST = "MANIFEST_ERROR"

    @property
    def retryable(self) -> bool:
        return self in _RETRYABLE

    @property
    def resets_connection(self) -> bool:
        return self in _CONNECTION_POISONING


_RETRYABLE = frozenset(
    {ErrorKind.TRANSPORT, ErrorKind.TIMEOUT, ErrorKind.SIZE_MISMATCH}
)
_CONNECTION_POISONING = frozenset(
    {ErrorKind.TRANSPORT, ErrorKind.TIMEOUT, ErrorKind.SIZE_MISMATCH}
)


class PatcherError(Exception):
    """Base class for all patcher failures."""

    kind: ErrorKind = ErrorKind.TRANSPORT

    def __init__(self, message: str, kind: Optional[ErrorKind] = None):
        super().__init__(message)
        if kind is not None:
            self.kind = kind

    @property
    def retryable(self) -> bool:
        return self.kind.retryable

    def __str__(self) -> str:
        return f"{self.kind.value}: {super().__str__()}"


class NetworkUnavailableError(PatcherError):
    """No route to the distribution server (pre-flight only)."""

    kind = ErrorKind.NETWORK_UNAVAILABLE


class InsufficientDiskSpaceError(PatcherError):
    """Not enough free space on the install or scratch volume."""

    kind = ErrorKind.INSUFFICIENT_DISK_SPACE


class FetchError(PatcherError):
    """A single fetch attempt (or the whole retry budget) failed."""

    def __init__(
        self,
        message: str,
        kind: ErrorKind = ErrorKind.TRANSPORT,
        url: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message, kind)
        self.url = url
        self.status_code = status_code


class ExtractionError(PatcherError):
    kind = ErrorKind.EXTRACTION


class ChecksumMismatchError(PatcherError):
    """Extracted payload does not match its declared Adler-32."""

    kind = ErrorKind.CHECKSUM_MISMATCH

    def __init__(self, name: str, expected: str, actual: str):
        super().__init__(
            f"checksum error for {name}: expected {expected}, got {actual}"
        )
        self.name = name
        self.expected = expected
        self.actual = actual


class ManifestError(PatcherError):
    kind = ErrorKind.MANIFEST


class UpdateError(Exception):
    """Single aggregated failure surfaced to the caller of an operation."""

    def __init__(self, operation: str, cause: BaseException):
        super().__init__(f"{operation} failed: {cause}")
        self.operation = operation
        self.cause = cause

    @property
    def kind(self) -> Optional[ErrorKind]:
        return getattr(self.cause, "kind", None)


class OperationInProgressError(Exception):
    """A foreground operation already holds the busy token."""

    def __init__(self, running: str):
        super().__init__(f"Operation already in progress: {running}")
        self.running = running
