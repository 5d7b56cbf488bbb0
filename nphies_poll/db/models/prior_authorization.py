"""Prior authorization requests sent to the exchange."""

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import JSON, Date, DateTime, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from nphies_poll.db.base import Base


class PriorAuthorization(Base):
    """
    A locally submitted prior authorization.

    The engine reads the correlation and identifier columns to match
    responses, and writes the adjudication result back.
    """

    __tablename__ = "prior_authorizations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Identifiers
    request_number: Mapped[str] = mapped_column(
        String(100), nullable=False, index=True,
        comment="Local request identifier sent as Claim.identifier"
    )
    nphies_request_id: Mapped[Optional[str]] = mapped_column(
        String(100), nullable=True, index=True,
        comment="Identifier assigned to the request by the exchange"
    )
    outbound_message_header_id: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True, index=True,
        comment="MessageHeader.id of the submitted request bundle"
    )

    # Counterparts for heuristic matching
    patient_identifier: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    provider_identifier: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    service_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    # Result
    status: Mapped[str] = mapped_column(
        String(50), nullable=False, default="pending", index=True,
        comment="'draft', 'pending', 'approved', 'partial', 'denied', 'error', 'cancelled'"
    )
    outcome: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    adjudication_outcome: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    disposition: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    pre_auth_ref: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    pre_auth_period_start: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    pre_auth_period_end: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    approved_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    response_bundle: Mapped[Optional[Any]] = mapped_column(JSON, nullable=True)
    response_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        Index("idx_pa_heuristic", "patient_identifier", "provider_identifier", "service_date"),
    )

    def __repr__(self) -> str:
        return f"<PriorAuthorization(id={self.id}, request_number={self.request_number}, status={self.status})>"
