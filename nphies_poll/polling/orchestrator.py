"""
Poll orchestrator.

Runs one poll end to end: transport, extraction, classification,
matching and reconciliation. Only one run may be in flight at a time;
every run is recorded in a PollLog that is finalized exactly once.
"""

import asyncio
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import structlog

from nphies_poll.classification.classifier import ClassifiedMessage, classify
from nphies_poll.core.logging import truncate_payload
from nphies_poll.db.models.enums import PollStatus, ProcessingStatus, TriggerType
from nphies_poll.db.unit_of_work import SessionFactory, UnitOfWork
from nphies_poll.errors import (
    ErrorCode,
    MalformedBundleError,
    PollAlreadyRunningError,
    PollLogFinalizedError,
)
from nphies_poll.exchange.bundles import build_poll_request_bundle
from nphies_poll.exchange.clients import BaseExchangeClient, create_exchange_client
from nphies_poll.exchange.config import PollerConfig, get_poller_config
from nphies_poll.exchange.extractor import extract
from nphies_poll.matching.config import MatchingConfig
from nphies_poll.matching.engine import Matcher
from nphies_poll.polling.schemas import PolledMessage, PollErrorEntry, PollRunResult, RunStats
from nphies_poll.reconciliation.reconciler import ReconcileResult, Reconciler

logger = structlog.get_logger(__name__)


class PollOrchestrator:
    """
    Owns the poll state machine: idle -> in_progress -> success | error | no_messages.

    A trigger arriving while a run is in progress is rejected with
    PollAlreadyRunningError, never queued.
    """

    def __init__(
        self,
        client: Optional[BaseExchangeClient] = None,
        config: Optional[PollerConfig] = None,
        session_factory: Optional[SessionFactory] = None,
        matching_config: Optional[MatchingConfig] = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            client: Exchange transport (defaults to the configured client type)
            config: Poller configuration (defaults to Settings)
            session_factory: Session factory for all database work
            matching_config: Matcher configuration
        """
        self.config = config or get_poller_config()
        self.client = client or create_exchange_client(self.config)
        self.session_factory = session_factory
        self.matcher = Matcher(matching_config)
        self.reconciler = Reconciler(session_factory)

        self._run_lock = asyncio.Lock()
        self._task: Optional[asyncio.Task] = None
        self._current_log_id: Optional[int] = None
        self._cancel_requested = False

        logger.info(
            "orchestrator.initialized",
            client_type=self.client.get_source_name(),
            endpoint=self.config.process_message_url,
        )

    @property
    def is_running(self) -> bool:
        return self._run_lock.locked()

    @property
    def current_poll_log_id(self) -> Optional[int]:
        return self._current_log_id

    def _uow(self) -> UnitOfWork:
        return UnitOfWork(self.session_factory)

    async def trigger(self, trigger_type: TriggerType = TriggerType.MANUAL) -> PollRunResult:
        """
        Run one poll and return its finalized result.

        Args:
            trigger_type: What started the run

        Returns:
            Finalized run result

        Raises:
            PollAlreadyRunningError: If a run is already in progress
        """
        if self._run_lock.locked():
            logger.warning("poll.rejected", reason="already_running", poll_log_id=self._current_log_id)
            raise PollAlreadyRunningError(self._current_log_id)

        await self._run_lock.acquire()
        self._cancel_requested = False
        self._task = asyncio.create_task(self._run(TriggerType(trigger_type)))
        self._task.add_done_callback(self._release_run)
        # The run outlives a caller that goes away; only cancel() stops it.
        return await asyncio.shield(self._task)

    async def cancel(self) -> Optional[int]:
        """
        Cancel the in-flight run, if any.

        A run whose terminal state was already being written when the
        cancel arrived keeps that state.

        Returns:
            ID of the cancelled poll log, or None if nothing was running
        """
        task = self._task
        if task is None or task.done():
            return None

        poll_log_id = self._current_log_id
        self._cancel_requested = True
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception as exc:
            # Already reported by the run's done-callback.
            logger.warning("poll.cancel_run_failed", poll_log_id=poll_log_id, error_type=type(exc).__name__)
        logger.info("poll.cancel_completed", poll_log_id=poll_log_id)
        return poll_log_id

    def _release_run(self, task: asyncio.Task) -> None:
        # Runs even when the task was cancelled before its first step.
        if self._task is task:
            self._task = None
        self._current_log_id = None
        self._run_lock.release()
        _log_failure(task, "poll.run_failed")

    async def _run(self, trigger_type: TriggerType) -> PollRunResult:
        started = time.perf_counter()
        request_bundle = build_poll_request_bundle(self.config)
        log_id: Optional[int] = None
        poll_id: Optional[str] = None
        finishing: Optional[asyncio.Future] = None

        def finish(status: PollStatus, **fields: Any) -> asyncio.Future:
            # The terminal write runs to completion even if the run is cancelled meanwhile.
            future = asyncio.ensure_future(
                self._finalize(
                    log_id, poll_id, trigger_type, status, started,
                    request_bundle=request_bundle, **fields,
                )
            )
            future.add_done_callback(lambda f: _log_failure(f, "poll.finalize_failed"))
            return future

        try:
            async with self._uow() as uow:
                log = await uow.poll_logs.create_run(
                    trigger_type=trigger_type.value,
                    provider_nphies_id=self.config.provider_id,
                    request_bundle=request_bundle,
                )
                await uow.commit()
                log_id, poll_id = log.id, log.poll_id

            self._current_log_id = log_id
            structlog.contextvars.bind_contextvars(poll_id=poll_id, poll_log_id=log_id)
            logger.info("poll.started", trigger_type=trigger_type.value)

            try:
                status, fields = await self._execute(log_id, request_bundle)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.error("poll.internal_error", error=str(exc), error_type=type(exc).__name__, exc_info=True)
                status = PollStatus.ERROR
                fields = {"errors": [PollErrorEntry(code=ErrorCode.INTERNAL_ERROR, detail=str(exc))]}

            finishing = finish(status, **fields)
            return await asyncio.shield(finishing)

        except asyncio.CancelledError:
            if log_id is None:
                raise
            if finishing is None:
                logger.warning("poll.cancelled")
                finishing = finish(
                    PollStatus.ERROR,
                    errors=[PollErrorEntry(code=ErrorCode.CANCELLED, detail="poll cancelled")],
                )
            else:
                logger.info("poll.cancel_after_finalize")
            result = await asyncio.shield(finishing)
            if self._cancel_requested:
                return result
            raise

        finally:
            structlog.contextvars.unbind_contextvars("poll_id", "poll_log_id")

    async def _execute(
        self, log_id: int, request_bundle: Dict[str, Any]
    ) -> Tuple[PollStatus, Dict[str, Any]]:
        """
        Fetch, extract and process one bundle.

        Returns:
            Terminal status and the fields to finalize the log with
        """
        response = await self.client.poll(request_bundle)
        if not response.ok:
            failure = response.error
            logger.warning(
                "poll.transport_failed",
                code=failure.code.value,
                detail=failure.detail,
                status_code=response.status_code,
            )
            return PollStatus.ERROR, {
                "response_bundle": response.bundle,
                "response_code": response.status_code,
                "errors": [PollErrorEntry(code=failure.code, detail=failure.detail)],
            }

        fields: Dict[str, Any] = {
            "response_bundle": response.bundle,
            "response_code": response.status_code,
        }
        try:
            raw_messages = extract(response.bundle)
        except MalformedBundleError as exc:
            logger.error(
                "poll.malformed_bundle",
                error=str(exc),
                payload=truncate_payload(exc.raw),
            )
            fields["errors"] = [PollErrorEntry(code=ErrorCode.MALFORMED_BUNDLE, detail=str(exc))]
            return PollStatus.ERROR, fields

        if not raw_messages:
            logger.info("poll.no_messages")
            return PollStatus.NO_MESSAGES, fields

        messages = [classify(raw) for raw in raw_messages]
        logger.info("poll.messages_extracted", count=len(messages))

        errors: List[PollErrorEntry] = []
        for message in messages:
            result = await self._process(log_id, message)
            if result.processing_status == ProcessingStatus.ERROR:
                errors.append(
                    PollErrorEntry(
                        code=ErrorCode.MESSAGE_PROCESSING,
                        detail=f"{message.resource_type}: {result.processing_error}",
                        poll_message_id=result.poll_message_id,
                    )
                )

        fields["errors"] = errors
        return PollStatus.SUCCESS, fields

    async def _process(self, poll_log_id: int, message: ClassifiedMessage) -> ReconcileResult:
        """Match and reconcile one message; failures stay scoped to the message."""
        replayed = await self.reconciler.replay(poll_log_id, message)
        if replayed is not None:
            return replayed

        try:
            async with self._uow() as uow:
                outcome = await self.matcher.match(uow, message)
        except Exception as exc:
            logger.error("reconcile.match_failed", resource_type=message.resource_type, error=str(exc))
            return await self.reconciler.record_failure(
                poll_log_id, message, f"{type(exc).__name__}: {exc}"
            )

        result = await self.reconciler.reconcile(poll_log_id, message, outcome)
        if result.processing_status == ProcessingStatus.ERROR:
            logger.warning(
                "reconcile.error",
                resource_type=message.resource_type,
                error=result.processing_error,
            )
        return result

    async def _finalize(
        self,
        log_id: int,
        poll_id: Optional[str],
        trigger_type: TriggerType,
        status: PollStatus,
        started: float,
        request_bundle: Optional[Dict[str, Any]] = None,
        response_bundle: Any = None,
        response_code: Optional[int] = None,
        errors: Optional[List[PollErrorEntry]] = None,
    ) -> PollRunResult:
        """
        Write the terminal state of a run, with counters taken from its messages.

        Raises:
            PollLogFinalizedError: If the log was already finalized
        """
        duration_ms = int((time.perf_counter() - started) * 1000)
        errors = errors or []

        async with self._uow() as uow:
            counts = await uow.poll_messages.status_counts(log_id)
            summary = await uow.poll_messages.summary_by_resource_type(log_id)
            stats = RunStats(
                received=sum(counts.values()),
                matched=counts.get(ProcessingStatus.PROCESSED.value, 0)
                + counts.get(ProcessingStatus.NEW_RECORD.value, 0),
                unmatched=counts.get(ProcessingStatus.UNMATCHED.value, 0),
                errored=counts.get(ProcessingStatus.ERROR.value, 0),
            )

            finalized = await uow.poll_logs.finalize(
                log_id,
                status=status.value,
                response_bundle=response_bundle,
                response_code=str(response_code) if response_code is not None else None,
                messages_received=stats.received,
                messages_matched=stats.matched,
                messages_unmatched=stats.unmatched,
                messages_errored=stats.errored,
                processing_summary=summary or None,
                errors=[e.model_dump(mode="json", by_alias=True, exclude_none=True) for e in errors] or None,
                completed_at=datetime.now(timezone.utc),
                duration_ms=duration_ms,
            )
            if not finalized:
                raise PollLogFinalizedError(f"poll log {log_id} is already finalized")
            await uow.commit()

            rows = await uow.poll_messages.list_for_log(log_id)

        logger.info(
            "poll.completed",
            status=status.value,
            received=stats.received,
            matched=stats.matched,
            unmatched=stats.unmatched,
            errored=stats.errored,
            duration_ms=duration_ms,
        )

        return PollRunResult(
            success=status != PollStatus.ERROR,
            message=_summary_message(status, stats, errors),
            poll_log_id=log_id,
            poll_id=poll_id,
            status=status,
            trigger_type=trigger_type,
            stats=stats,
            messages=[PolledMessage.model_validate(row) for row in rows],
            poll_bundle=request_bundle,
            response_bundle=response_bundle,
            errors=errors,
            duration_ms=duration_ms,
        )

    async def recover_orphaned_runs(self) -> List[int]:
        """
        Finalize runs left `in_progress` by a process that died mid-run.

        Returns:
            IDs of the recovered poll logs
        """
        recovered: List[int] = []
        async with self._uow() as uow:
            for log in await uow.poll_logs.get_in_progress():
                if log.id == self._current_log_id:
                    continue
                counts = await uow.poll_messages.status_counts(log.id)
                entry = PollErrorEntry(
                    code=ErrorCode.INTERNAL_ERROR, detail="run interrupted before completion"
                )
                finalized = await uow.poll_logs.finalize(
                    log.id,
                    status=PollStatus.ERROR.value,
                    messages_received=sum(counts.values()),
                    messages_matched=counts.get(ProcessingStatus.PROCESSED.value, 0)
                    + counts.get(ProcessingStatus.NEW_RECORD.value, 0),
                    messages_unmatched=counts.get(ProcessingStatus.UNMATCHED.value, 0),
                    messages_errored=counts.get(ProcessingStatus.ERROR.value, 0),
                    errors=[entry.model_dump(mode="json", by_alias=True, exclude_none=True)],
                    completed_at=datetime.now(timezone.utc),
                )
                if finalized:
                    recovered.append(log.id)
            await uow.commit()

        if recovered:
            logger.warning("poll.orphans_recovered", poll_log_ids=recovered)
        return recovered

    async def aclose(self) -> None:
        """Cancel any in-flight run and release the transport."""
        await self.cancel()
        await self.client.aclose()


def _log_failure(future: asyncio.Future, event: str) -> None:
    """Report a background failure nobody may be awaiting."""
    if future.cancelled():
        return
    exc = future.exception()
    if exc is not None:
        logger.error(event, error=str(exc), error_type=type(exc).__name__, exc_info=exc)


def _summary_message(status: PollStatus, stats: RunStats, errors: List[PollErrorEntry]) -> str:
    if status == PollStatus.NO_MESSAGES:
        return "No messages in queue"
    if status == PollStatus.ERROR:
        detail = errors[0].detail if errors else "unknown error"
        return f"Poll failed: {detail}"
    return (
        f"Poll completed: {stats.received} received, {stats.matched} matched, "
        f"{stats.unmatched} unmatched, {stats.errored} errored"
    )


# Global orchestrator instance
_orchestrator_instance: Optional[PollOrchestrator] = None


def get_orchestrator() -> PollOrchestrator:
    """
    Get or create the global orchestrator instance.

    Returns:
        PollOrchestrator singleton
    """
    global _orchestrator_instance
    if _orchestrator_instance is None:
        _orchestrator_instance = PollOrchestrator()
    return _orchestrator_instance


def set_orchestrator(orchestrator: Optional[PollOrchestrator]) -> None:
    """Replace the global orchestrator (used by tests and the app lifespan)."""
    global _orchestrator_instance
    _orchestrator_instance = orchestrator
