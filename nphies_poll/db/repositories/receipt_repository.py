"""Reconciliation receipt repository."""

from typing import Optional

from nphies_poll.db.models.receipt import ReconciliationReceipt
from nphies_poll.db.repository import BaseRepository


class ReceiptRepository(BaseRepository[ReconciliationReceipt]):
    """Repository for the idempotence ledger."""

    async def get_by_fingerprint(self, fingerprint: str) -> Optional[ReconciliationReceipt]:
        return await self.get_by_field("fingerprint", fingerprint)
