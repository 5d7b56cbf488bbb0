"""Reconciliation receipts: the idempotence ledger."""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from nphies_poll.db.base import Base


class ReconciliationReceipt(Base):
    """
    Proof that a message fingerprint has already had its side effects applied.

    Written in the same transaction as the business-record change, so a
    receipt exists if and only if the change was committed.
    """

    __tablename__ = "reconciliation_receipts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    fingerprint: Mapped[str] = mapped_column(
        String(64), nullable=False, unique=True,
        comment="Message fingerprint (sha256 hex)"
    )
    resource_type: Mapped[str] = mapped_column(String(100), nullable=False)
    response_identifier: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    processing_status: Mapped[str] = mapped_column(
        String(20), nullable=False,
        comment="Result of the first reconciliation ('processed' or 'new_record')"
    )
    matched_table: Mapped[str] = mapped_column(String(100), nullable=False)
    matched_record_id: Mapped[int] = mapped_column(Integer, nullable=False)
    match_strategy: Mapped[str] = mapped_column(String(50), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )

    def __repr__(self) -> str:
        return (
            f"<ReconciliationReceipt(fingerprint={self.fingerprint[:12]}, "
            f"table={self.matched_table}, record_id={self.matched_record_id})>"
        )
