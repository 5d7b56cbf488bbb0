"""Repository exports."""

from .poll_log_repository import PollLogRepository
from .poll_message_repository import PollMessageRepository
from .receipt_repository import ReceiptRepository
from .record_repositories import (
    AdvancedAuthorizationRepository,
    ClaimSubmissionRepository,
    CommunicationRepository,
    PriorAuthorizationRepository,
    RecordRepository,
)

__all__ = [
    "PollLogRepository",
    "PollMessageRepository",
    "ReceiptRepository",
    "RecordRepository",
    "PriorAuthorizationRepository",
    "ClaimSubmissionRepository",
    "AdvancedAuthorizationRepository",
    "CommunicationRepository",
]
