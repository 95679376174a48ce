"""Scheduled reconciliation of recent uploads.

Runs ``ReconciliationService.reconcile_recent`` on the cron expression in
``RECONCILE_SCHEDULE_CRON``. An empty expression disables the job.

Usage in main application startup:
    from emp_ops.scheduler import start_scheduler, shutdown_scheduler

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await start_scheduler()
        yield
        await shutdown_scheduler()
"""

import logging
from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from emp_ops.core.config import settings
from emp_ops.core.errors import EmpOpsError
from emp_ops.db.session import AsyncSessionLocal, engine
from emp_ops.db.storage import StorageClient
from emp_ops.db.stores import UploadStore
from emp_ops.integrations.adapters.factory import get_gateway
from emp_ops.services.reconciler import Reconciler
from emp_ops.services.reconciliation import ReconciliationService

logger = logging.getLogger(__name__)

JOB_ID = "reconcile_recent"

# Global scheduler instance
_scheduler: AsyncIOScheduler | None = None


async def run_scheduled_reconcile() -> None:
    """Reconcile recent uploads. Called by APScheduler at the configured cron time."""
    logger.info("Starting scheduled reconciliation", extra={"event_type": "scheduler.reconcile.started"})

    service = ReconciliationService(
        UploadStore(StorageClient(AsyncSessionLocal, engine)),
        Reconciler(get_gateway()),
    )
    try:
        summary = await service.reconcile_recent()
    except EmpOpsError as e:
        logger.error(
            f"Scheduled reconciliation failed: {e}",
            extra={"event_type": "scheduler.reconcile.failed"},
        )
        return

    logger.info(
        f"Scheduled reconciliation done: {summary.reconciled_count} reconciled, "
        f"{summary.failed_count} failed",
        extra={"event_type": "scheduler.reconcile.completed"},
    )


def create_cron_trigger(cron_expression: str, timezone_str: str) -> CronTrigger:
    """
    Create an APScheduler CronTrigger from a cron expression.

    Supports standard 5-field cron: minute hour day month weekday
    Example: "*/30 * * * *" = every 30 minutes
    """
    parts = cron_expression.split()

    if len(parts) != 5:
        raise ValueError(
            f"Invalid cron expression: {cron_expression}. "
            "Expected 5 fields: minute hour day month weekday"
        )

    return CronTrigger(
        minute=parts[0],
        hour=parts[1],
        day=parts[2],
        month=parts[3],
        day_of_week=parts[4],
        timezone=timezone_str,
    )


async def start_scheduler() -> None:
    """
    Start the reconciliation scheduler.

    Call this during application startup.
    """
    global _scheduler

    if not settings.RECONCILE_SCHEDULE_CRON.strip():
        logger.info("Reconcile schedule not configured, scheduler disabled")
        return

    if _scheduler is not None:
        logger.warning("Scheduler already running")
        return

    trigger = create_cron_trigger(
        settings.RECONCILE_SCHEDULE_CRON, settings.RECONCILE_SCHEDULE_TIMEZONE
    )
    _scheduler = AsyncIOScheduler()
    _scheduler.add_job(
        run_scheduled_reconcile,
        trigger=trigger,
        id=JOB_ID,
        name="Reconcile recent uploads",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    _scheduler.start()
    logger.info(f"Reconcile scheduler started: {settings.RECONCILE_SCHEDULE_CRON}")


async def shutdown_scheduler() -> None:
    """
    Shutdown the scheduler gracefully.

    Call this during application shutdown.
    """
    global _scheduler

    if _scheduler:
        _scheduler.shutdown(wait=True)
        _scheduler = None
        logger.info("Reconcile scheduler stopped")


def get_scheduler_status() -> dict[str, Any]:
    """
    Get current scheduler status for monitoring.

    Returns:
        Dictionary with scheduler state and job information
    """
    if not _scheduler:
        return {
            "running": False,
            "jobs": [],
        }

    jobs = []
    for job in _scheduler.get_jobs():
        next_run = job.next_run_time
        jobs.append(
            {
                "id": job.id,
                "name": job.name,
                "next_run": next_run.isoformat() if next_run else None,
                "trigger": str(job.trigger),
            }
        )

    return {
        "running": _scheduler.running,
        "jobs": jobs,
    }
