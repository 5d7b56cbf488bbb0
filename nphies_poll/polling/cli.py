"""
System poll CLI commands.

Provides a command-line interface for running polls, viewing
statistics and browsing poll logs.
"""

import asyncio
import sys
from typing import Optional

import structlog

from nphies_poll.core.config import get_settings
from nphies_poll.core.logging import configure_logging
from nphies_poll.db.models.enums import PollStatus
from nphies_poll.polling.orchestrator import PollOrchestrator
from nphies_poll.polling.queries import PollQueryService
from nphies_poll.polling.scheduler import PollScheduler
from nphies_poll.polling.schemas import PollLogDetail, PollLogPage, PollRunResult, PollStats

logger = structlog.get_logger()


def print_result(result: PollRunResult):
    """Pretty print a finished poll."""
    print(f"\n{result.message}")
    print(f"Poll Log ID: {result.poll_log_id}")
    print(f"Status: {result.status.value}")
    print(f"Received: {result.stats.received}")
    print(f"Matched: {result.stats.matched}")
    print(f"Unmatched: {result.stats.unmatched}")
    if result.stats.errored:
        print(f"Errored: {result.stats.errored}")
    print(f"Duration: {result.duration_ms}ms")

    if result.messages:
        print("\n--- Messages ---")
        for msg in result.messages:
            target = f"{msg.matched_table.value}#{msg.matched_record_id}" if msg.matched_table else "-"
            strategy = msg.match_strategy.value if msg.match_strategy else "-"
            print(f"{msg.resource_type:<24} {msg.processing_status.value:<10} {target:<32} {strategy}")

    for error in result.errors:
        print(f"Error [{error.code.value}]: {error.detail}")
    print()


def print_stats(stats: PollStats):
    """Pretty print poll statistics."""
    print("\n=== System Poll Statistics ===\n")
    print(f"Polls Today: {stats.polls_today}")
    print(f"Total Polls: {stats.total_polls}")
    print(f"Messages Today: {stats.messages_today}")
    print(f"Total Messages: {stats.total_messages}")
    print(f"Matched Today: {stats.matched_today}")
    print(f"Total Matched: {stats.total_matched}")
    print(f"Match Rate: {stats.match_rate_percent:.1f}%")
    print(f"Last Poll: {stats.last_poll_at or 'Never'}")
    print()


def print_logs(page: PollLogPage):
    """Pretty print a page of poll logs."""
    p = page.pagination
    print(f"\n=== Poll Logs (page {p.page}/{max(p.total_pages, 1)}, {p.total} total) ===\n")
    for log in page.data:
        print(
            f"#{log.id:<6} {log.started_at}  {log.trigger_type.value:<9} {log.status.value:<11} "
            f"{log.messages_received} received, {log.messages_matched} matched, "
            f"{log.messages_unmatched} unmatched, {log.messages_errored} errored"
        )
    print()


def print_log(detail: PollLogDetail):
    """Pretty print one poll log with its messages."""
    print(f"\n=== Poll Log #{detail.id} ===\n")
    print(f"Poll ID: {detail.poll_id}")
    print(f"Trigger: {detail.trigger_type.value}")
    print(f"Status: {detail.status.value}")
    print(f"Started: {detail.started_at}")
    print(f"Completed: {detail.completed_at or '-'}")
    print(f"Duration: {detail.duration_ms if detail.duration_ms is not None else '-'}ms")
    print(f"Response Code: {detail.response_code or '-'}")

    if detail.processing_summary:
        print("\n--- By Resource Type ---")
        for resource_type, counts in detail.processing_summary.items():
            print(
                f"{resource_type:<24} matched={counts.get('matched', 0)} "
                f"newRecords={counts.get('newRecords', 0)} "
                f"unmatched={counts.get('unmatched', 0)} errors={counts.get('errors', 0)}"
            )

    if detail.messages:
        print("\n--- Messages ---")
        for msg in detail.messages:
            line = f"#{msg.id} {msg.resource_type} [{msg.message_type.value}] {msg.processing_status.value}"
            if msg.matched_table:
                line += f" -> {msg.matched_table.value}#{msg.matched_record_id} ({msg.match_strategy.value})"
            if msg.replayed:
                line += " (replayed)"
            if msg.processing_error:
                line += f": {msg.processing_error}"
            print(line)

    for error in detail.errors or []:
        print(f"Error [{error.code.value}]: {error.detail}")
    print()


async def poll_command():
    """Run a single poll manually."""
    print("Starting manual poll...")
    orchestrator = PollOrchestrator()
    try:
        result = await orchestrator.trigger()
        print_result(result)
        return 0 if result.success else 1
    finally:
        await orchestrator.aclose()


async def stats_command():
    """Show poll statistics."""
    print_stats(await PollQueryService().get_stats())
    return 0


async def logs_command(page: int = 1, status: Optional[str] = None):
    """Show a page of poll logs."""
    print_logs(await PollQueryService().get_logs(page=page, status=PollStatus(status) if status else None))
    return 0


async def show_command(poll_log_id: int):
    """Show one poll log in detail."""
    detail = await PollQueryService().get_log(poll_log_id)
    if detail is None:
        print(f"Poll log {poll_log_id} not found")
        return 1
    print_log(detail)
    return 0


async def run_command():
    """Run the scheduler continuously."""
    orchestrator = PollOrchestrator()
    scheduler = PollScheduler(orchestrator)
    print("Starting system poll scheduler...")
    print(f"Poll interval: {scheduler.config.poll_interval_minutes} minutes")
    print("Press Ctrl+C to stop\n")

    await orchestrator.recover_orphaned_runs()
    try:
        await scheduler.start()
        while True:
            await asyncio.sleep(1)
    finally:
        await scheduler.stop()
        await orchestrator.aclose()
        print("Scheduler stopped.")


def main():
    """Main CLI entry point."""
    if len(sys.argv) < 2:
        print("Usage: python -m nphies_poll.polling.cli <command> [options]")
        print("\nCommands:")
        print("  poll                  Run a single poll manually")
        print("  stats                 Show poll statistics")
        print("  logs [page] [status]  List poll logs, newest first")
        print("  show <id>             Show one poll log with its messages")
        print("  run                   Run the scheduler continuously")
        print("\nExamples:")
        print("  python -m nphies_poll.polling.cli poll")
        print("  python -m nphies_poll.polling.cli logs 2 error")
        print("  python -m nphies_poll.polling.cli show 42")
        return 1

    configure_logging(get_settings().ENV)
    command = sys.argv[1]

    try:
        if command == "poll":
            return asyncio.run(poll_command())
        elif command == "stats":
            return asyncio.run(stats_command())
        elif command == "logs":
            page = int(sys.argv[2]) if len(sys.argv) > 2 else 1
            status = sys.argv[3] if len(sys.argv) > 3 else None
            return asyncio.run(logs_command(page, status))
        elif command == "show":
            if len(sys.argv) < 3:
                print("Usage: python -m nphies_poll.polling.cli show <id>")
                return 1
            return asyncio.run(show_command(int(sys.argv[2])))
        elif command == "run":
            return asyncio.run(run_command())
        else:
            print(f"Unknown command: {command}")
            return 1
    except KeyboardInterrupt:
        print("\nInterrupted.")
        return 130
    except Exception as e:
        print(f"Error: {str(e)}")
        logger.exception("cli_error", command=command)
        return 1


if __name__ == "__main__":
    sys.exit(main())
