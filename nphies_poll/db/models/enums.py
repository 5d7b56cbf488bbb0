"""Central Enum definitions for poll engine states.

Values are stored as plain strings in the database; these enums are the
only place the allowed values are spelled out.
"""
from __future__ import annotations

import enum


class TriggerType(str, enum.Enum):
    MANUAL = "manual"
    SCHEDULED = "scheduled"


class PollStatus(str, enum.Enum):
    IN_PROGRESS = "in_progress"
    SUCCESS = "success"
    ERROR = "error"
    NO_MESSAGES = "no_messages"


class MessageType(str, enum.Enum):
    SOLICITED = "solicited"
    UNSOLICITED = "unsolicited"
    UNKNOWN = "unknown"


class ProcessingStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSED = "processed"
    NEW_RECORD = "new_record"
    UNMATCHED = "unmatched"
    ERROR = "error"

    @property
    def is_matched(self) -> bool:
        return self in (ProcessingStatus.PROCESSED, ProcessingStatus.NEW_RECORD)


class MatchStrategy(str, enum.Enum):
    """How a message was tied to a business record, strongest first."""

    DIRECT_CORRELATION = "direct_correlation"
    BUSINESS_IDENTIFIER = "business_identifier"
    HEURISTIC = "heuristic"
    PAYER_INITIATED = "payer_initiated"


class RecordTable(str, enum.Enum):
    """Business tables a poll message can be reconciled against."""

    PRIOR_AUTHORIZATIONS = "prior_authorizations"
    CLAIM_SUBMISSIONS = "claim_submissions"
    ADVANCED_AUTHORIZATIONS = "advanced_authorizations"
    COMMUNICATIONS = "nphies_communications"


__all__ = [
    "TriggerType",
    "PollStatus",
    "MessageType",
    "ProcessingStatus",
    "MatchStrategy",
    "RecordTable",
]
