"""Unit of Work pattern for managing database transactions."""

from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from nphies_poll.db.models import (
    AdvancedAuthorization,
    ClaimSubmission,
    NphiesCommunication,
    PollLog,
    PollMessage,
    PriorAuthorization,
    ReconciliationReceipt,
)
from nphies_poll.db.models.enums import RecordTable
from nphies_poll.db.repositories import (
    AdvancedAuthorizationRepository,
    ClaimSubmissionRepository,
    CommunicationRepository,
    PollLogRepository,
    PollMessageRepository,
    PriorAuthorizationRepository,
    ReceiptRepository,
    RecordRepository,
)

SessionFactory = Callable[[], AsyncSession]


class UnitOfWork:
    """
    Unit of Work pattern implementation for managing database transactions.

    All repositories in one context share a single session and transaction.

    Usage:
        async with UnitOfWork(session_factory) as uow:
            log = await uow.poll_logs.create_run("manual")
            await uow.poll_messages.create(poll_log_id=log.id, ...)
            await uow.commit()
    """

    def __init__(
        self,
        session_factory: Optional[SessionFactory] = None,
        session: Optional[AsyncSession] = None,
    ):
        """
        Initialize Unit of Work.

        Args:
            session_factory: Callable returning a new AsyncSession. Defaults to
                the application session factory.
            session: Optional existing session (the caller keeps ownership)
        """
        self._session_factory = session_factory
        self._session = session
        self._owned_session = session is None

        # Repositories (initialized in __aenter__)
        self.poll_logs: PollLogRepository = None  # type: ignore
        self.poll_messages: PollMessageRepository = None  # type: ignore
        self.receipts: ReceiptRepository = None  # type: ignore
        self.prior_authorizations: PriorAuthorizationRepository = None  # type: ignore
        self.claim_submissions: ClaimSubmissionRepository = None  # type: ignore
        self.advanced_authorizations: AdvancedAuthorizationRepository = None  # type: ignore
        self.communications: CommunicationRepository = None  # type: ignore

    async def __aenter__(self):
        """Enter async context manager."""
        if self._owned_session:
            factory = self._session_factory
            if factory is None:
                from nphies_poll.db.base import AsyncSessionLocal

                factory = AsyncSessionLocal
            self._session = factory()

        assert self._session is not None, "Session must be initialized"
        self.poll_logs = PollLogRepository(PollLog, self._session)
        self.poll_messages = PollMessageRepository(PollMessage, self._session)
        self.receipts = ReceiptRepository(ReconciliationReceipt, self._session)
        self.prior_authorizations = PriorAuthorizationRepository(PriorAuthorization, self._session)
        self.claim_submissions = ClaimSubmissionRepository(ClaimSubmission, self._session)
        self.advanced_authorizations = AdvancedAuthorizationRepository(
            AdvancedAuthorization, self._session
        )
        self.communications = CommunicationRepository(NphiesCommunication, self._session)

        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Exit async context manager."""
        if exc_type is not None:
            await self.rollback()
        elif self._owned_session:
            await self.commit()

        if self._owned_session and self._session:
            await self._session.close()

    def records(self, table: RecordTable) -> RecordRepository:
        """Repository for one of the business tables."""
        return {
            RecordTable.PRIOR_AUTHORIZATIONS: self.prior_authorizations,
            RecordTable.CLAIM_SUBMISSIONS: self.claim_submissions,
            RecordTable.ADVANCED_AUTHORIZATIONS: self.advanced_authorizations,
            RecordTable.COMMUNICATIONS: self.communications,
        }[RecordTable(table)]

    async def commit(self):
        """Commit the current transaction."""
        if self._session:
            await self._session.commit()

    async def rollback(self):
        """Rollback the current transaction."""
        if self._session:
            await self._session.rollback()

    async def flush(self):
        """Flush pending changes to the database without committing."""
        if self._session:
            await self._session.flush()
