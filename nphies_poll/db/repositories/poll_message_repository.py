"""PollMessage repository with per-run aggregation queries."""

from datetime import datetime
from typing import Dict, List, Optional, Tuple

from sqlalchemy import desc, func, select

from nphies_poll.db.models.enums import ProcessingStatus
from nphies_poll.db.models.poll_log import PollLog
from nphies_poll.db.models.poll_message import PollMessage
from nphies_poll.db.repository import BaseRepository


class PollMessageRepository(BaseRepository[PollMessage]):
    """Repository for PollMessage model."""

    async def list_for_log(self, poll_log_id: int) -> List[PollMessage]:
        """All messages of one run, in arrival order."""
        result = await self.session.execute(
            select(self.model)
            .where(self.model.poll_log_id == poll_log_id)
            .order_by(self.model.id)
        )
        return list(result.scalars().all())

    async def status_counts(self, poll_log_id: int) -> Dict[str, int]:
        """
        Count a run's messages by processing status.

        Args:
            poll_log_id: Poll log ID

        Returns:
            Mapping of processing status to count
        """
        result = await self.session.execute(
            select(self.model.processing_status, func.count(self.model.id))
            .where(self.model.poll_log_id == poll_log_id)
            .group_by(self.model.processing_status)
        )
        return {status: count for status, count in result.all()}

    async def summary_by_resource_type(self, poll_log_id: int) -> Dict[str, Dict[str, int]]:
        """
        Per resource type breakdown of a run.

        Returns:
            {resourceType: {"matched", "newRecords", "unmatched", "errors"}}
        """
        result = await self.session.execute(
            select(
                self.model.resource_type,
                self.model.processing_status,
                func.count(self.model.id),
            )
            .where(self.model.poll_log_id == poll_log_id)
            .group_by(self.model.resource_type, self.model.processing_status)
        )

        summary: Dict[str, Dict[str, int]] = {}
        for resource_type, status, count in result.all():
            bucket = summary.setdefault(
                resource_type, {"matched": 0, "newRecords": 0, "unmatched": 0, "errors": 0}
            )
            if status == ProcessingStatus.PROCESSED.value:
                bucket["matched"] += count
            elif status == ProcessingStatus.NEW_RECORD.value:
                bucket["newRecords"] += count
            elif status == ProcessingStatus.UNMATCHED.value:
                bucket["unmatched"] += count
            elif status == ProcessingStatus.ERROR.value:
                bucket["errors"] += count
        return summary

    async def count_since(
        self, since: Optional[datetime] = None, matched: Optional[bool] = None
    ) -> int:
        """
        Count messages belonging to runs started at or after `since`.

        Args:
            since: Lower bound on the owning run's start time (None for all time)
            matched: Only count matched (True) or unmatched (False) messages

        Returns:
            Number of messages
        """
        query = select(func.count(self.model.id))
        if since is not None:
            query = query.join(PollLog, PollLog.id == self.model.poll_log_id).where(
                PollLog.started_at >= since
            )
        if matched is not None:
            query = query.where(self.model.matched.is_(matched))
        result = await self.session.execute(query)
        return result.scalar() or 0

    async def list_for_record(
        self, table: str, record_id: int, page: int, limit: int
    ) -> Tuple[List[PollMessage], int]:
        """
        Messages matched to one business record, newest first.

        Args:
            table: Business table name
            record_id: Business record ID
            page: 1-based page number
            limit: Page size

        Returns:
            Tuple of (messages on this page, total)
        """
        result = await self.session.execute(
            select(self.model)
            .where(
                self.model.matched_table == table,
                self.model.matched_record_id == record_id,
            )
            .order_by(desc(self.model.created_at), desc(self.model.id))
            .offset((page - 1) * limit)
            .limit(limit)
        )
        total = await self.count(matched_table=table, matched_record_id=record_id)
        return list(result.scalars().all()), total
