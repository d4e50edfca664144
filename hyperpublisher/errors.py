"""Exceptions raised by the publisher.

Session-level errors (the ones callers of create/sync are expected to
handle) derive from PublisherError. Log-level errors are raised by the
replicated log and translated by the session where needed.
"""

from typing import Any


class PublisherError(Exception):
    """Base exception for all publisher errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class InvalidArgument(PublisherError):
    """Raised when a required argument is missing or malformed."""

    def __init__(self, message: str, field: str | None = None):
        details = {}
        if field:
            details["field"] = field
        super().__init__(message, details)
        self.field = field


class NoPeerFound(PublisherError):
    """Raised when no remote peer connects within the configured bound."""

    def __init__(self, timeout: float | None):
        super().__init__(
            f"No peer connected within {timeout}s",
            {"timeout": timeout},
        )
        self.timeout = timeout


class MetadataUnreachable(PublisherError):
    """Raised when the latest drive state cannot be loaded on the sync path.

    The log is presumed uninitialized or unreachable; nothing was written.
    """

    def __init__(self, message: str, cause: Exception | None = None):
        details = {}
        if cause:
            details["cause"] = str(cause)
        super().__init__(message, details)
        self.cause = cause


class AckTimeout(PublisherError):
    """Raised when peers did not acknowledge every awaited range in time.

    Data has already been written to the log. This is not a rollback
    signal, only an incomplete replication confirmation.
    """

    def __init__(self, timeout: float | None, pending: list | None = None):
        pending = pending or []
        super().__init__(
            f"Replication not confirmed within {timeout}s "
            f"({len(pending)} range(s) pending)",
            {"timeout": timeout, "pending": [str(r) for r in pending]},
        )
        self.timeout = timeout
        self.pending = pending


class LogError(Exception):
    """Base exception for replicated log failures."""


class LogEmptyError(LogError):
    """Raised by head() when the log has no entries."""


class UpdateError(LogError):
    """Raised when update() cannot reach the requested length."""


class VerificationError(LogError):
    """Raised when a downloaded block fails hash or signature checks."""


class BlockNotAvailable(LogError):
    """Raised when a block is neither stored locally nor held by any peer."""

    def __init__(self, index: int):
        super().__init__(f"Block {index} is not available")
        self.index = index


class LogNotWritable(LogError):
    """Raised when appending to a log opened without its secret key."""


class DriveError(LogError):
    """Raised when drive metadata is missing or malformed."""


class SessionCancelled(PublisherError):
    """Raised when a session is cancelled while waiting for acknowledgments."""

    def __init__(self, state: str):
        super().__init__(f"Session cancelled during {state}", {"state": state})
        self.state = state
