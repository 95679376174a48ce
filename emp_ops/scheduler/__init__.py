"""Scheduler module for background tasks."""

from emp_ops.scheduler.reconcile_scheduler import (
    get_scheduler_status,
    run_scheduled_reconcile,
    shutdown_scheduler,
    start_scheduler,
)

__all__ = [
    "start_scheduler",
    "shutdown_scheduler",
    "get_scheduler_status",
    "run_scheduled_reconcile",
]
