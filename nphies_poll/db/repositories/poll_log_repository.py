"""PollLog repository with run lifecycle and reporting queries."""

from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import desc, func, select, update
from sqlalchemy.orm import selectinload

from nphies_poll.db.models.enums import PollStatus
from nphies_poll.db.models.poll_log import PollLog
from nphies_poll.db.repository import BaseRepository


class PollLogRepository(BaseRepository[PollLog]):
    """Repository for PollLog model."""

    async def create_run(
        self,
        trigger_type: str,
        provider_nphies_id: Optional[str] = None,
        request_bundle: Optional[dict] = None,
        started_at: Optional[datetime] = None,
    ) -> PollLog:
        """
        Open a new run in the `in_progress` state.

        Args:
            trigger_type: 'manual' or 'scheduled'
            provider_nphies_id: Provider the poll is sent for
            request_bundle: Outgoing poll request bundle
            started_at: Override the start timestamp (defaults to now)

        Returns:
            Created poll log
        """
        fields = dict(
            trigger_type=trigger_type,
            provider_nphies_id=provider_nphies_id,
            request_bundle=request_bundle,
            status=PollStatus.IN_PROGRESS.value,
        )
        if started_at is not None:
            fields["started_at"] = started_at
        return await self.create(**fields)

    async def finalize(self, id: int, **fields) -> bool:
        """
        Write the terminal state of a run.

        The update only applies while the row is still `in_progress`, so a
        log can be finalized at most once.

        Args:
            id: Poll log ID
            **fields: Terminal status, counters, errors, timing

        Returns:
            True if this call finalized the row, False if it was already final
        """
        result = await self.session.execute(
            update(self.model)
            .where(self.model.id == id, self.model.status == PollStatus.IN_PROGRESS.value)
            .values(**fields)
            .execution_options(synchronize_session=False)
        )
        await self.session.flush()
        return (result.rowcount or 0) > 0  # type: ignore

    async def get_in_progress(self) -> List[PollLog]:
        """Runs that were opened but never finalized."""
        return await self.filter(status=PollStatus.IN_PROGRESS.value)

    async def get_with_messages(self, id: int) -> Optional[PollLog]:
        """Get a poll log with its messages eagerly loaded."""
        result = await self.session.execute(
            select(self.model)
            .where(self.model.id == id)
            .options(selectinload(self.model.messages))
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_page(
        self, page: int, limit: int, status: Optional[str] = None
    ) -> Tuple[List[PollLog], int]:
        """
        Newest-first page of poll logs.

        Args:
            page: 1-based page number
            limit: Page size
            status: Optional status filter

        Returns:
            Tuple of (logs on this page, total matching logs)
        """
        query = select(self.model)
        if status:
            query = query.where(self.model.status == status)
        query = (
            query.order_by(desc(self.model.started_at), desc(self.model.id))
            .offset((page - 1) * limit)
            .limit(limit)
        )
        result = await self.session.execute(query)

        total = await self.count(status=status) if status else await self.count()
        return list(result.scalars().all()), total

    async def count_since(self, since: Optional[datetime] = None) -> int:
        """Count runs started at or after `since` (all runs when None)."""
        if since is None:
            return await self.count()
        return await self.count(started_at__gte=since)

    async def last_started_at(self) -> Optional[datetime]:
        """Start time of the most recent run."""
        result = await self.session.execute(select(func.max(self.model.started_at)))
        return result.scalar()
