"""Claim submissions sent to the exchange."""

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import JSON, Date, DateTime, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from nphies_poll.db.base import Base


class ClaimSubmission(Base):
    """A locally submitted claim, updated by claim responses and payments."""

    __tablename__ = "claim_submissions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Identifiers
    claim_number: Mapped[str] = mapped_column(
        String(100), nullable=False, index=True,
        comment="Local claim identifier sent as Claim.identifier"
    )
    nphies_claim_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    nphies_request_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    outbound_message_header_id: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True, index=True,
        comment="MessageHeader.id of the submitted claim bundle"
    )

    # Counterparts for heuristic matching
    patient_identifier: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    provider_identifier: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    service_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    # Adjudication
    status: Mapped[str] = mapped_column(
        String(50), nullable=False, default="pending", index=True,
        comment="'draft', 'pending', 'approved', 'partial', 'denied', 'error', 'cancelled'"
    )
    outcome: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    adjudication_outcome: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    disposition: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    approved_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    response_bundle: Mapped[Optional[Any]] = mapped_column(JSON, nullable=True)
    response_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Payment
    paid_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    payment_reference: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    payment_date: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    payment_status: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        Index("idx_cs_heuristic", "patient_identifier", "provider_identifier", "service_date"),
    )

    def __repr__(self) -> str:
        return f"<ClaimSubmission(id={self.id}, claim_number={self.claim_number}, status={self.status})>"
