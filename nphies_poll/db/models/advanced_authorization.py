"""Advanced authorizations pushed by payers without a local request."""

from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import JSON, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from nphies_poll.db.base import Base


class AdvancedAuthorization(Base):
    """
    A payer-initiated authorization.

    These are the only business records the engine creates; later messages
    about the same authorization update the row found by `identifier_value`.
    """

    __tablename__ = "advanced_authorizations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    identifier_value: Mapped[str] = mapped_column(
        String(255), nullable=False, unique=True,
        comment="ClaimResponse.identifier[0].value"
    )
    identifier_system: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    nphies_response_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    patient_identifier: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    insurer_identifier: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    status: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    outcome: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    adjudication_outcome: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    pre_auth_ref: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    pre_auth_period_start: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    pre_auth_period_end: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    response_bundle: Mapped[Optional[Any]] = mapped_column(JSON, nullable=True)

    received_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def __repr__(self) -> str:
        return f"<AdvancedAuthorization(id={self.id}, identifier={self.identifier_value})>"
