"""Per-upload and bulk reconciliation.

Runs the Reconciler over an upload's rows and writes the outcome back as
targeted row patches (``emp_status``, ``emp_error`` and status corrections
that the row transition table allows).
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from emp_ops.core.config import settings
from emp_ops.core.errors import EmpOpsError, InvalidTransitionError
from emp_ops.db.stores import UploadStore
from emp_ops.models.base import utc_now
from emp_ops.schemas.upload import RowState, RowStatus, normalize_rows
from emp_ops.services.field_aliases import get_field_value
from emp_ops.services.locks import UploadLockRegistry, upload_locks
from emp_ops.services.reconciler import (
    APPROVED,
    ERROR,
    MISSING_IN_EMP,
    PENDING,
    ReconcileCandidate,
    Reconciler,
    ReconciliationReport,
)

logger = logging.getLogger("emp.reconcile")

MISSING_MESSAGE = "Transaction not found in payment gateway"

# Report classification -> corrected row status.
# Pending-like ground truth means the gateway holds the transaction: the row
# is submitted, not pending (pending rows are picked up again by submission).
_STATUS_CORRECTIONS: dict[str, RowStatus] = {
    APPROVED: RowStatus.APPROVED,
    ERROR: RowStatus.ERROR,
    PENDING: RowStatus.SUBMITTED,
    MISSING_IN_EMP: RowStatus.ERROR,
}


@dataclass
class UploadReconcileResult:
    upload_id: str
    filename: str
    success: bool
    report: ReconciliationReport | None = None
    error: str | None = None

    def as_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "uploadId": self.upload_id,
            "filename": self.filename,
            "success": self.success,
        }
        if self.report is not None:
            data["report"] = {
                "total": self.report.total,
                "approved": self.report.approved,
                "error": self.report.error,
                "pending": self.report.pending,
            }
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass
class RecentReconcileSummary:
    results: list[UploadReconcileResult] = field(default_factory=list)

    @property
    def reconciled_count(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed_count(self) -> int:
        return sum(1 for r in self.results if not r.success)

    def _total(self, attr: str) -> int:
        return sum(getattr(r.report, attr) for r in self.results if r.report is not None)

    def as_dict(self) -> dict[str, Any]:
        return {
            "ok": True,
            "reconciledCount": self.reconciled_count,
            "failedCount": self.failed_count,
            "totalApproved": self._total("approved"),
            "totalErrors": self._total("error"),
            "totalPending": self._total("pending"),
            "results": [r.as_dict() for r in self.results],
        }


def build_row_patches(
    rows: list[dict[str, Any]], report: ReconciliationReport
) -> dict[int, dict[str, Any]]:
    """Turn report details into per-row field patches."""
    patches: dict[int, dict[str, Any]] = {}
    for detail in report.details:
        index = detail.row_index
        if index >= len(rows):
            continue
        patch: dict[str, Any] = {}

        if detail.emp_status or detail.message:
            patch["emp_error"] = detail.message
            patch["emp_status"] = detail.emp_status
        if detail.status == MISSING_IN_EMP and not detail.message:
            patch["emp_error"] = MISSING_MESSAGE

        target = _STATUS_CORRECTIONS.get(detail.status)
        if target is not None:
            state = RowState.from_stored(rows[index])
            try:
                state.transition_to(target)
            except InvalidTransitionError as exc:
                logger.warning(
                    "Row %d: ignoring reconciled status: %s",
                    index,
                    exc,
                    extra={"event_type": "reconcile.transition.rejected", "row_index": index},
                )
            else:
                patch["status"] = target.value

        if patch:
            patches[index] = patch
    return patches


class ReconciliationService:
    """Reconciles uploads and persists the corrections."""

    def __init__(
        self,
        uploads: UploadStore,
        reconciler: Reconciler,
        locks: UploadLockRegistry = upload_locks,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.uploads = uploads
        self.reconciler = reconciler
        self.locks = locks
        self.clock = clock

    async def reconcile_upload(self, upload_id: str) -> ReconciliationReport:
        async with self.locks.hold(upload_id, "reconcile"):
            upload = await self.uploads.get(upload_id)
            records = upload.records or []
            rows = normalize_rows(records, upload.rows)

            candidates = []
            for index, record in enumerate(records):
                state = RowState.from_stored(rows[index])
                candidates.append(
                    ReconcileCandidate(
                        transaction_id=state.last_transaction_id
                        or get_field_value(record, "transactionId")
                        or f"{upload_id}-{index}",
                        unique_id=state.remote_unique_id,
                        status=state.status.value,
                    )
                )

            report = await self.reconciler.compare_with_emp(candidates)
            patches = build_row_patches(rows, report)

            await self.uploads.patch_rows(
                upload_id,
                patches,
                recount=True,
                fields={
                    "last_reconciled_at": self.clock(),
                    "reconciliation_report": report.as_dict(),
                },
            )

        logger.info(
            "Reconciled upload %s: %d row(s) updated",
            upload_id,
            len(patches),
            extra={
                "event_type": "reconcile.upload.completed",
                "upload_id": upload_id,
                "approved": report.approved,
                "error": report.error,
                "pending": report.pending,
                "missing": len(report.missing_in_emp),
            },
        )
        return report

    async def reconcile_recent(self, hours: int | None = None) -> RecentReconcileSummary:
        """Reconcile every upload created in the last ``hours``; failures do not stop the run."""
        hours = settings.RECONCILE_RECENT_HOURS if hours is None else hours
        since = self.clock() - timedelta(hours=hours)
        summary = RecentReconcileSummary()

        for upload in await self.uploads.list_created_since(since):
            try:
                report = await self.reconcile_upload(upload.id)
            except EmpOpsError as exc:
                logger.error(
                    "Reconcile failed for upload %s: %s",
                    upload.id,
                    exc,
                    extra={"event_type": "reconcile.upload.failed", "upload_id": upload.id},
                )
                summary.results.append(
                    UploadReconcileResult(
                        upload_id=upload.id,
                        filename=upload.display_filename,
                        success=False,
                        error=str(exc),
                    )
                )
            else:
                summary.results.append(
                    UploadReconcileResult(
                        upload_id=upload.id,
                        filename=upload.display_filename,
                        success=True,
                        report=report,
                    )
                )

        logger.info(
            "Reconcile recent: %d reconciled, %d failed",
            summary.reconciled_count,
            summary.failed_count,
            extra={"event_type": "reconcile.recent.completed", "hours": hours},
        )
        return summary
