"""
Exception hierarchy for the poll engine.

Run-level failures (transport, malformed bundle) carry a stable `code`
that is written into `PollLog.errors`; message-level failures
(reconciliation) are recorded on the individual poll message.
"""

from enum import Enum
from typing import Any, Optional


class ErrorCode(str, Enum):
    """Codes recorded in `PollLog.errors[].code`."""

    TRANSPORT_TIMEOUT = "TransportTimeout"
    TRANSPORT_ERROR = "TransportError"
    TRANSPORT_AUTH = "TransportAuthError"
    MALFORMED_BUNDLE = "MalformedBundle"
    CANCELLED = "Cancelled"
    INTERNAL_ERROR = "InternalError"
    MESSAGE_PROCESSING = "MessageProcessing"


class PollEngineError(Exception):
    """Base exception for the poll engine."""

    code: ErrorCode = ErrorCode.INTERNAL_ERROR


class TransportError(PollEngineError):
    """Raised inside an exchange client when the poll call fails."""

    code = ErrorCode.TRANSPORT_ERROR

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        body: Any = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class TransportTimeout(TransportError):
    """Raised when the poll call exceeds its time budget."""

    code = ErrorCode.TRANSPORT_TIMEOUT


class TransportAuthError(TransportError):
    """Raised when the exchange rejects our credentials."""

    code = ErrorCode.TRANSPORT_AUTH


class MalformedBundleError(PollEngineError):
    """Raised when a response bundle cannot be read as a sequence of entries."""

    code = ErrorCode.MALFORMED_BUNDLE

    def __init__(self, message: str, raw: Any = None):
        super().__init__(message)
        self.raw = raw


class PollAlreadyRunningError(PollEngineError):
    """Raised when a poll is triggered while another one is in progress."""

    def __init__(self, poll_log_id: Optional[int] = None):
        super().__init__("poll already running")
        self.poll_log_id = poll_log_id


class PollLogFinalizedError(PollEngineError):
    """Raised when a finalized poll log is written to again."""


class ReconciliationError(PollEngineError):
    """Base for failures while applying a message to a business record."""

    code = ErrorCode.MESSAGE_PROCESSING


class InvalidRecordStateError(ReconciliationError):
    """The matched business record is in a state that does not accept updates."""


class UnsupportedReconciliationError(ReconciliationError):
    """No applier exists for this resource type / table combination."""
