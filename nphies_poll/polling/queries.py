"""Read-only accessors over committed poll history."""

import math
from datetime import datetime, time, timezone
from typing import Optional

from nphies_poll.db.models.enums import PollStatus, RecordTable
from nphies_poll.db.unit_of_work import SessionFactory, UnitOfWork
from nphies_poll.polling.schemas import (
    Pagination,
    PollLogDetail,
    PollLogPage,
    PollLogSummary,
    PollMessageView,
    PollStats,
    RecordMessagePage,
)

MAX_PAGE_SIZE = 100
DEFAULT_PAGE_SIZE = 20


def _page_bounds(page: int, limit: int) -> tuple:
    return max(page, 1), min(max(limit, 1), MAX_PAGE_SIZE)


def _pagination(total: int, page: int, limit: int) -> Pagination:
    return Pagination(total=total, page=page, limit=limit, total_pages=math.ceil(total / limit))


def start_of_today(now: Optional[datetime] = None) -> datetime:
    """Midnight UTC of the current day."""
    now = now or datetime.now(timezone.utc)
    return datetime.combine(now.astimezone(timezone.utc).date(), time.min, tzinfo=timezone.utc)


class PollQueryService:
    """Stats, paginated logs and per-record message history."""

    def __init__(self, session_factory: Optional[SessionFactory] = None):
        self.session_factory = session_factory

    def _uow(self) -> UnitOfWork:
        return UnitOfWork(self.session_factory)

    async def get_stats(self, now: Optional[datetime] = None) -> PollStats:
        """
        Aggregate snapshot of poll history.

        "Today" starts at midnight UTC. The match rate is
        totalMatched / totalMessages as a percentage with one decimal.
        """
        today = start_of_today(now)
        async with self._uow() as uow:
            total_polls = await uow.poll_logs.count_since()
            polls_today = await uow.poll_logs.count_since(today)
            total_messages = await uow.poll_messages.count_since()
            messages_today = await uow.poll_messages.count_since(today)
            total_matched = await uow.poll_messages.count_since(matched=True)
            matched_today = await uow.poll_messages.count_since(today, matched=True)
            last_poll_at = await uow.poll_logs.last_started_at()

        rate = round(total_matched / total_messages * 100, 1) if total_messages else 0.0
        return PollStats(
            polls_today=polls_today,
            total_polls=total_polls,
            messages_today=messages_today,
            total_messages=total_messages,
            matched_today=matched_today,
            total_matched=total_matched,
            match_rate_percent=rate,
            last_poll_at=last_poll_at,
        )

    async def get_logs(
        self, page: int = 1, limit: int = DEFAULT_PAGE_SIZE, status: Optional[PollStatus] = None
    ) -> PollLogPage:
        """
        Newest-first page of poll log summaries.

        Args:
            page: 1-based page number
            limit: Page size, capped at 100
            status: Optional status filter
        """
        page, limit = _page_bounds(page, limit)
        async with self._uow() as uow:
            logs, total = await uow.poll_logs.list_page(
                page, limit, PollStatus(status).value if status else None
            )
            data = [PollLogSummary.model_validate(log) for log in logs]
        return PollLogPage(data=data, pagination=_pagination(total, page, limit))

    async def get_log(self, poll_log_id: int) -> Optional[PollLogDetail]:
        """One poll log with its messages and per resource type summary, or None."""
        async with self._uow() as uow:
            log = await uow.poll_logs.get_with_messages(poll_log_id)
            if log is None:
                return None
            detail = PollLogDetail.model_validate(log)
            if detail.processing_summary is None and log.messages:
                # Runs still in progress have no stored summary yet.
                detail.processing_summary = await uow.poll_messages.summary_by_resource_type(log.id)
        return detail

    async def get_record_messages(
        self,
        table: RecordTable,
        record_id: int,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> RecordMessagePage:
        """Poll messages matched to one business record, newest first."""
        page, limit = _page_bounds(page, limit)
        async with self._uow() as uow:
            rows, total = await uow.poll_messages.list_for_record(
                RecordTable(table).value, record_id, page, limit
            )
            data = [PollMessageView.model_validate(row) for row in rows]
        return RecordMessagePage(data=data, pagination=_pagination(total, page, limit))
