"""
Reconciler: applies match outcomes to business records, once per message.

Each message is committed (or failed) on its own. Side effects are keyed
by the message fingerprint in the `reconciliation_receipts` ledger: a
fingerprint that already has a receipt is replayed from it instead of
being applied again.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Hashable, Optional

from pydantic import BaseModel
from sqlalchemy.exc import IntegrityError

from nphies_poll.classification.classifier import ClassifiedMessage
from nphies_poll.db.models.enums import MatchStrategy, MessageType, ProcessingStatus, RecordTable
from nphies_poll.db.models.receipt import ReconciliationReceipt
from nphies_poll.db.unit_of_work import SessionFactory, UnitOfWork
from nphies_poll.matching.identifiers import own_identifiers
from nphies_poll.matching.models import MatchOutcome
from nphies_poll.reconciliation.appliers import get_applier

logger = logging.getLogger(__name__)


class ReconcileResult(BaseModel):
    """What happened to one message, as recorded on its poll message row."""

    poll_message_id: Optional[int] = None
    resource_type: str
    message_type: MessageType
    event_code: Optional[str] = None
    processing_status: ProcessingStatus
    matched_table: Optional[RecordTable] = None
    matched_record_id: Optional[int] = None
    match_strategy: Optional[MatchStrategy] = None
    processing_error: Optional[str] = None
    replayed: bool = False

    @property
    def matched(self) -> bool:
        return self.processing_status.is_matched


class Reconciler:
    """
    Applies outcomes and records every message on the poll log.

    Writes to the same business record are serialized with a per-record
    lock keyed by (table, record id). Creations are keyed by the business
    identifier of the record to be created.
    """

    def __init__(self, session_factory: Optional[SessionFactory] = None):
        """
        Args:
            session_factory: Session factory for the units of work opened per message
        """
        self.session_factory = session_factory
        self._locks: Dict[Hashable, asyncio.Lock] = {}
        self._lock_users: Dict[Hashable, int] = {}

    def _uow(self) -> UnitOfWork:
        return UnitOfWork(self.session_factory)

    @asynccontextmanager
    async def _record_lock(self, key: Hashable) -> AsyncIterator[None]:
        """Hold the lock for one record; the entry is dropped once nobody holds or awaits it."""
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[key] -= 1
            if not self._lock_users[key]:
                del self._lock_users[key]
                del self._locks[key]

    @staticmethod
    def _lock_key(message: ClassifiedMessage, outcome: MatchOutcome) -> Hashable:
        if outcome.record_id is not None:
            return (outcome.table, outcome.record_id)
        identifiers = own_identifiers(message.payload)
        return (outcome.table, "new", identifiers[0] if identifiers else message.fingerprint)

    async def replay(self, poll_log_id: int, message: ClassifiedMessage) -> Optional[ReconcileResult]:
        """
        Record `message` from its existing receipt, if there is one.

        Returns:
            The replayed result, or None when the fingerprint is new
        """
        async with self._uow() as uow:
            receipt = await uow.receipts.get_by_fingerprint(message.fingerprint)
            if receipt is None:
                return None
            result = await self._record_replay(uow, poll_log_id, message, receipt)
            await uow.commit()
            return result

    async def reconcile(
        self, poll_log_id: int, message: ClassifiedMessage, outcome: MatchOutcome
    ) -> ReconcileResult:
        """
        Apply `outcome` for `message` and record the poll message row.

        Args:
            poll_log_id: Owning poll run
            message: Classified message
            outcome: Matcher outcome

        Returns:
            Final processing result (processed, new_record, unmatched or error)
        """
        if not outcome.matched:
            logger.info(f"[RECONCILE] {message.resource_type} unmatched: {outcome.reason}")
            async with self._uow() as uow:
                result = await self._record(
                    uow, poll_log_id, message,
                    ReconcileResult(
                        resource_type=message.resource_type,
                        message_type=message.message_type,
                        event_code=message.event_code,
                        processing_status=ProcessingStatus.UNMATCHED,
                    ),
                )
                await uow.commit()
            return result

        async with self._record_lock(self._lock_key(message, outcome)):
            try:
                return await self._apply(poll_log_id, message, outcome)
            except IntegrityError:
                # A receipt for this fingerprint was committed concurrently.
                replayed = await self.replay(poll_log_id, message)
                if replayed is not None:
                    return replayed
                return await self.record_failure(poll_log_id, message, "integrity error while applying message")
            except Exception as exc:
                logger.exception(f"[RECONCILE] {message.resource_type} failed: {exc}")
                return await self.record_failure(poll_log_id, message, f"{type(exc).__name__}: {exc}")

    async def _apply(
        self, poll_log_id: int, message: ClassifiedMessage, outcome: MatchOutcome
    ) -> ReconcileResult:
        async with self._uow() as uow:
            receipt = await uow.receipts.get_by_fingerprint(message.fingerprint)
            if receipt is not None:
                result = await self._record_replay(uow, poll_log_id, message, receipt)
                await uow.commit()
                return result

            applier = get_applier(message.resource_type, outcome.table)
            change = await applier(uow, message, outcome)
            status = ProcessingStatus.NEW_RECORD if change.created else ProcessingStatus.PROCESSED

            await uow.receipts.create(
                fingerprint=message.fingerprint,
                resource_type=message.resource_type,
                response_identifier=message.response_identifier,
                processing_status=status.value,
                matched_table=outcome.table.value,
                matched_record_id=change.record_id,
                match_strategy=outcome.strategy.value,
            )
            result = await self._record(
                uow, poll_log_id, message,
                ReconcileResult(
                    resource_type=message.resource_type,
                    message_type=message.message_type,
                    event_code=message.event_code,
                    processing_status=status,
                    matched_table=outcome.table,
                    matched_record_id=change.record_id,
                    match_strategy=outcome.strategy,
                ),
            )
            await uow.commit()
            return result

    async def _record_replay(
        self, uow: UnitOfWork, poll_log_id: int, message: ClassifiedMessage,
        receipt: ReconciliationReceipt,
    ) -> ReconcileResult:
        logger.info(f"[RECONCILE] {message.resource_type} already applied, replaying receipt")
        return await self._record(
            uow, poll_log_id, message,
            ReconcileResult(
                resource_type=message.resource_type,
                message_type=message.message_type,
                event_code=message.event_code,
                processing_status=ProcessingStatus(receipt.processing_status),
                matched_table=RecordTable(receipt.matched_table),
                matched_record_id=receipt.matched_record_id,
                match_strategy=MatchStrategy(receipt.match_strategy),
                replayed=True,
            ),
        )

    async def record_failure(
        self, poll_log_id: int, message: ClassifiedMessage, error: str
    ) -> ReconcileResult:
        """Record `message` as failed in a fresh transaction."""
        async with self._uow() as uow:
            result = await self._record(
                uow, poll_log_id, message,
                ReconcileResult(
                    resource_type=message.resource_type,
                    message_type=message.message_type,
                    event_code=message.event_code,
                    processing_status=ProcessingStatus.ERROR,
                    processing_error=error,
                ),
            )
            await uow.commit()
        return result

    @staticmethod
    async def _record(
        uow: UnitOfWork, poll_log_id: int, message: ClassifiedMessage, result: ReconcileResult
    ) -> ReconcileResult:
        row = await uow.poll_messages.create(
            poll_log_id=poll_log_id,
            message_header_id=message.raw.message_header_id,
            response_identifier=message.response_identifier,
            event_code=message.event_code,
            resource_type=message.resource_type,
            resource_data=message.raw.message_bundle or message.payload,
            fingerprint=message.fingerprint,
            message_type=message.message_type.value,
            matched=result.matched,
            matched_table=result.matched_table.value if result.matched_table else None,
            matched_record_id=result.matched_record_id,
            match_strategy=result.match_strategy.value if result.match_strategy else None,
            processing_status=result.processing_status.value,
            processing_error=result.processing_error,
            replayed=result.replayed,
        )
        return result.model_copy(update={"poll_message_id": row.id})
