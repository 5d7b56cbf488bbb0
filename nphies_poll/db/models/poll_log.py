"""PollLog model: one row per poll run."""

import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import JSON, DateTime, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from nphies_poll.db.base import Base
from nphies_poll.db.models.enums import PollStatus, TriggerType


class PollLog(Base):
    """
    Audit record of a single poll run.

    Created as `in_progress` when the run starts and finalized exactly once
    when it ends. Counters are derived from the run's poll messages at
    finalization time.
    """

    __tablename__ = "poll_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    poll_id: Mapped[str] = mapped_column(
        String(36), nullable=False, unique=True, default=lambda: str(uuid.uuid4()),
        comment="Public run identifier, bound to log lines for the run"
    )

    # Context
    trigger_type: Mapped[str] = mapped_column(
        String(20), nullable=False, default=TriggerType.MANUAL.value, index=True,
        comment="What started the run ('manual' or 'scheduled')"
    )
    provider_nphies_id: Mapped[Optional[str]] = mapped_column(
        String(100), nullable=True,
        comment="Provider license the poll was sent on behalf of"
    )

    # Status
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PollStatus.IN_PROGRESS.value, index=True,
        comment="Run status ('in_progress', 'success', 'error', 'no_messages')"
    )

    # Raw payloads
    request_bundle: Mapped[Optional[Any]] = mapped_column(
        JSON, nullable=True,
        comment="Outgoing poll request bundle"
    )
    response_bundle: Mapped[Optional[Any]] = mapped_column(
        JSON, nullable=True,
        comment="Raw exchange response, kept for audit and replay"
    )
    response_code: Mapped[Optional[str]] = mapped_column(
        String(50), nullable=True,
        comment="HTTP status code of the poll call"
    )

    # Counters
    messages_received: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    messages_matched: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    messages_unmatched: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    messages_errored: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    processing_summary: Mapped[Optional[dict]] = mapped_column(
        JSON, nullable=True,
        comment="Counts per resource type: {matched, newRecords, unmatched, errors}"
    )
    errors: Mapped[Optional[list]] = mapped_column(
        JSON, nullable=True,
        comment="Ordered list of {code, detail}"
    )

    # Timing
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc), index=True,
        comment="When the run started"
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True,
        comment="When the run was finalized"
    )
    duration_ms: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    messages = relationship(
        "PollMessage", back_populates="poll_log", cascade="all, delete-orphan",
        order_by="PollMessage.id",
    )

    __table_args__ = (
        Index("idx_poll_logs_status_started", "status", "started_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<PollLog(id={self.id}, status={self.status}, "
            f"trigger_type={self.trigger_type}, received={self.messages_received})>"
        )
