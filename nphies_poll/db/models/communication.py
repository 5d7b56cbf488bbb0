"""Communications and communication requests exchanged with payers."""

from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import JSON, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from nphies_poll.db.base import Base


class NphiesCommunication(Base):
    """
    A Communication or CommunicationRequest, linked to the business record it is about.

    `communication_id` is the FHIR resource id; storing the same resource
    twice updates the existing row.
    """

    __tablename__ = "nphies_communications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    communication_id: Mapped[str] = mapped_column(
        String(255), nullable=False, unique=True,
        comment="FHIR resource id"
    )
    resource_type: Mapped[str] = mapped_column(
        String(50), nullable=False,
        comment="'Communication' or 'CommunicationRequest'"
    )

    # Link to the record the communication is about
    parent_table: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    parent_record_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    about_identifier: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)
    about_reference: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    status: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    category: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    priority: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    payload_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    sender_identifier: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    resource_data: Mapped[Optional[Any]] = mapped_column(JSON, nullable=True)

    received_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        Index("idx_comm_parent", "parent_table", "parent_record_id"),
    )

    def __repr__(self) -> str:
        return f"<NphiesCommunication(id={self.id}, communication_id={self.communication_id})>"
