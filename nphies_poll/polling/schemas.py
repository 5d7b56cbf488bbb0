"""Pydantic models returned by the poll engine and its HTTP surface.

Field names are snake_case in Python and serialized as camelCase.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from nphies_poll.db.models.enums import (
    MatchStrategy,
    MessageType,
    PollStatus,
    ProcessingStatus,
    RecordTable,
    TriggerType,
)
from nphies_poll.errors import ErrorCode


class APIModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class PollErrorEntry(APIModel):
    """One entry of `PollLog.errors`."""

    code: ErrorCode
    detail: str
    poll_message_id: int | None = None


class RunStats(APIModel):
    received: int = 0
    matched: int = 0
    unmatched: int = 0
    errored: int = 0


class PolledMessage(APIModel):
    """Outcome of one message, as listed in a trigger response."""

    id: int | None = None
    message_type: MessageType
    resource_type: str
    event_code: str | None = None
    matched: bool
    matched_table: RecordTable | None = None
    matched_record_id: int | None = None
    match_strategy: MatchStrategy | None = None
    processing_status: ProcessingStatus
    processing_error: str | None = None
    replayed: bool = False


class PollRunResult(APIModel):
    """Finalized run returned to whoever triggered it."""

    success: bool
    message: str
    poll_log_id: int | None = None
    poll_id: str | None = None
    status: PollStatus
    trigger_type: TriggerType
    stats: RunStats = Field(default_factory=RunStats)
    messages: list[PolledMessage] = Field(default_factory=list)
    poll_bundle: Any = None
    response_bundle: Any = None
    errors: list[PollErrorEntry] = Field(default_factory=list)
    duration_ms: int = 0


class PollStats(APIModel):
    """Aggregate snapshot computed from poll history."""

    polls_today: int
    total_polls: int
    messages_today: int
    total_messages: int
    matched_today: int
    total_matched: int
    match_rate_percent: float
    last_poll_at: datetime | None = None


class Pagination(APIModel):
    total: int
    page: int
    limit: int
    total_pages: int


class PollLogSummary(APIModel):
    id: int
    poll_id: str
    trigger_type: TriggerType
    status: PollStatus
    messages_received: int
    messages_matched: int
    messages_unmatched: int
    messages_errored: int
    errors: list[PollErrorEntry] | None = None
    started_at: datetime
    completed_at: datetime | None = None
    duration_ms: int | None = None


class PollMessageView(PolledMessage):
    """A stored poll message."""

    poll_log_id: int
    message_header_id: str | None = None
    response_identifier: str | None = None
    fingerprint: str
    resource_data: Any = None
    created_at: datetime


class PollLogDetail(PollLogSummary):
    provider_nphies_id: str | None = None
    request_bundle: Any = None
    response_bundle: Any = None
    response_code: str | None = None
    processing_summary: dict[str, dict[str, int]] | None = None
    messages: list[PollMessageView] = Field(default_factory=list)


class PollLogPage(APIModel):
    data: list[PollLogSummary]
    pagination: Pagination


class RecordMessagePage(APIModel):
    data: list[PollMessageView]
    pagination: Pagination


class CancelResult(APIModel):
    cancelled: bool
    poll_log_id: int | None = None


class SchedulerStatus(APIModel):
    running: bool
    poll_in_progress: bool
    interval_minutes: int
    next_run_at: datetime | None = None
