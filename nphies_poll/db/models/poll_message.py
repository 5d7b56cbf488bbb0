"""PollMessage model: one row per message extracted from a poll response."""

from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from nphies_poll.db.base import Base
from nphies_poll.db.models.enums import MessageType, ProcessingStatus


class PollMessage(Base):
    """
    A single exchange message received during a poll run.

    `matched` is true exactly when `processing_status` is `processed` or
    `new_record`; the matched_* columns are only populated in that case.
    """

    __tablename__ = "poll_messages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    poll_log_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("poll_logs.id", ondelete="CASCADE"), nullable=False, index=True,
        comment="Owning poll run"
    )

    # Identification
    message_header_id: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True,
        comment="MessageHeader.id of the inbound message"
    )
    response_identifier: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True,
        comment="Correlation id of the request this message answers"
    )
    event_code: Mapped[Optional[str]] = mapped_column(
        String(100), nullable=True,
        comment="MessageHeader event code (e.g. 'priorauthorization-response')"
    )
    resource_type: Mapped[str] = mapped_column(
        String(100), nullable=False, index=True,
        comment="Payload resource type ('ClaimResponse', 'PaymentNotice', ...)"
    )
    resource_data: Mapped[Optional[Any]] = mapped_column(
        JSON, nullable=True,
        comment="Payload resource as received"
    )
    fingerprint: Mapped[str] = mapped_column(
        String(64), nullable=False, index=True,
        comment="Stable content hash used for idempotent reconciliation"
    )

    # Classification
    message_type: Mapped[str] = mapped_column(
        String(20), nullable=False, default=MessageType.UNKNOWN.value, index=True,
        comment="'solicited', 'unsolicited' or 'unknown'"
    )

    # Correlation result
    matched: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, index=True,
        comment="Whether the message was tied to a business record"
    )
    matched_table: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    matched_record_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    match_strategy: Mapped[Optional[str]] = mapped_column(
        String(50), nullable=True,
        comment="Strategy that produced the match"
    )

    # Processing
    processing_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ProcessingStatus.PENDING.value, index=True,
        comment="'pending', 'processed', 'new_record', 'unmatched' or 'error'"
    )
    processing_error: Mapped[Optional[str]] = mapped_column(
        Text, nullable=True,
        comment="Failure detail, set only when processing_status is 'error'"
    )
    replayed: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False,
        comment="True when the outcome was taken from an earlier receipt"
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc), index=True,
    )

    poll_log = relationship("PollLog", back_populates="messages")

    __table_args__ = (
        Index("idx_poll_messages_resource_response", "resource_type", "response_identifier"),
        Index("idx_poll_messages_matched_record", "matched_table", "matched_record_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<PollMessage(id={self.id}, resource_type={self.resource_type}, "
            f"status={self.processing_status}, matched={self.matched})>"
        )
