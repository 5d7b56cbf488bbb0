"""
System poll API routes.

Trigger and cancel polls, and read poll history. Response bodies are
serialized with camelCase keys.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse

from nphies_poll.db.models.enums import PollStatus, RecordTable, TriggerType
from nphies_poll.errors import PollAlreadyRunningError
from nphies_poll.polling.orchestrator import PollOrchestrator, get_orchestrator
from nphies_poll.polling.queries import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, PollQueryService
from nphies_poll.polling.scheduler import PollScheduler, get_scheduler
from nphies_poll.polling.schemas import (
    CancelResult,
    PollLogDetail,
    PollLogPage,
    PollRunResult,
    PollStats,
    RecordMessagePage,
    SchedulerStatus,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/system-poll", tags=["system-poll"])


def get_poll_orchestrator() -> PollOrchestrator:
    return get_orchestrator()


def get_poll_scheduler() -> PollScheduler:
    return get_scheduler()


def get_query_service(
    orchestrator: PollOrchestrator = Depends(get_poll_orchestrator),
) -> PollQueryService:
    return PollQueryService(orchestrator.session_factory)


@router.post(
    "/trigger",
    response_model=PollRunResult,
    responses={
        status.HTTP_409_CONFLICT: {"description": "A poll is already running"},
        status.HTTP_502_BAD_GATEWAY: {"model": PollRunResult, "description": "Poll finished with status error"},
    },
)
async def trigger_poll(orchestrator: PollOrchestrator = Depends(get_poll_orchestrator)):
    """
    Run one poll now and return its finalized result.

    A trigger while a run is in progress is rejected with 409, never queued.
    A run that ends in `error` is returned with 502 and the same body.
    """
    try:
        result = await orchestrator.trigger(TriggerType.MANUAL)
    except PollAlreadyRunningError as e:
        logger.info(f"[POLL] Trigger rejected: {e}")
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    if result.status == PollStatus.ERROR:
        return JSONResponse(
            status_code=status.HTTP_502_BAD_GATEWAY,
            content=result.model_dump(mode="json", by_alias=True),
        )
    return result


@router.post("/cancel", response_model=CancelResult)
async def cancel_poll(orchestrator: PollOrchestrator = Depends(get_poll_orchestrator)):
    """Cancel the in-flight poll; its log is finalized with code Cancelled."""
    poll_log_id = await orchestrator.cancel()
    return CancelResult(cancelled=poll_log_id is not None, poll_log_id=poll_log_id)


@router.get("/stats", response_model=PollStats)
async def get_stats(queries: PollQueryService = Depends(get_query_service)):
    return await queries.get_stats()


@router.get("/logs", response_model=PollLogPage)
async def get_logs(
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1),
    status_filter: Optional[PollStatus] = Query(None, alias="status"),
    queries: PollQueryService = Depends(get_query_service),
):
    """
    Newest-first poll logs.

    Args:
        page: 1-based page number
        limit: Page size (values above 100 are capped)
        status_filter: Only logs with this status
    """
    return await queries.get_logs(page=page, limit=min(limit, MAX_PAGE_SIZE), status=status_filter)


@router.get("/logs/{poll_log_id}", response_model=PollLogDetail)
async def get_log(poll_log_id: int, queries: PollQueryService = Depends(get_query_service)):
    detail = await queries.get_log(poll_log_id)
    if detail is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Poll log not found")
    return detail


@router.get("/messages/{table}/{record_id}", response_model=RecordMessagePage)
async def get_record_messages(
    table: str,
    record_id: int,
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1),
    queries: PollQueryService = Depends(get_query_service),
):
    """Poll messages matched to one business record."""
    try:
        record_table = RecordTable(table)
    except ValueError:
        allowed = ", ".join(t.value for t in RecordTable)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid table '{table}'. Allowed: {allowed}",
        )
    return await queries.get_record_messages(
        record_table, record_id, page=page, limit=min(limit, MAX_PAGE_SIZE)
    )


@router.get("/scheduler", response_model=SchedulerStatus)
async def get_scheduler_status(scheduler: PollScheduler = Depends(get_poll_scheduler)):
    return scheduler.get_status()
