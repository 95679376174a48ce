"""Reconciliation endpoints."""

from typing import Annotated, Any

from fastapi import APIRouter, Depends

from emp_ops.api.deps import SessionOperator, WriteOperator, get_reconciliation_service
from emp_ops.core.config import settings
from emp_ops.scheduler import get_scheduler_status
from emp_ops.services.reconciliation import ReconciliationService

router = APIRouter()

ReconciliationDep = Annotated[ReconciliationService, Depends(get_reconciliation_service)]


@router.post("/reconcile/{upload_id}")
async def reconcile_upload(
    upload_id: str,
    operator: WriteOperator,
    service: ReconciliationDep,
) -> dict[str, Any]:
    """Compare an upload with the gateway and write corrections back to its rows."""
    report = await service.reconcile_upload(upload_id)
    return {"ok": True, "report": report.as_dict()}


@router.post("/reconcile-recent")
async def reconcile_recent(
    operator: WriteOperator,
    service: ReconciliationDep,
) -> dict[str, Any]:
    """Reconcile every upload created in the recent window."""
    hours = settings.RECONCILE_RECENT_HOURS
    summary = await service.reconcile_recent(hours=hours)
    response = summary.as_dict()
    if not summary.results:
        response["message"] = f"No uploads found in the last {hours} hours"
    return response


@router.get("/reconcile-schedule")
async def reconcile_schedule(operator: SessionOperator) -> dict[str, Any]:
    return get_scheduler_status()
