"""Database models for the poll engine and the business records it reconciles."""

from .poll_log import PollLog
from .poll_message import PollMessage
from .receipt import ReconciliationReceipt
from .prior_authorization import PriorAuthorization
from .claim_submission import ClaimSubmission
from .advanced_authorization import AdvancedAuthorization
from .communication import NphiesCommunication

__all__ = [
    "PollLog",
    "PollMessage",
    "ReconciliationReceipt",
    "PriorAuthorization",
    "ClaimSubmission",
    "AdvancedAuthorization",
    "NphiesCommunication",
]
