"""Gateway reconciliation: look up ground truth and compare it with local rows."""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

from emp_ops.core.config import settings
from emp_ops.core.errors import GatewayError
from emp_ops.core.metrics import reconciliation_records_total
from emp_ops.integrations.interfaces.base import GatewayResponse, PaymentGateway
from emp_ops.services.gateway_policy import is_approved_status, is_declined_status

logger = logging.getLogger("emp.reconcile")

# Per-record classifications
APPROVED = "approved"
PENDING = "pending"
ERROR = "error"
NOT_SUBMITTED = "not_submitted"
MISSING_IN_EMP = "missing_in_emp"

NOT_FOUND_MESSAGE = "Not found in EMP"


@dataclass
class ReconcileCandidate:
    """What the local side knows about one record."""

    transaction_id: str
    unique_id: str | None = None
    status: str | None = None


@dataclass
class ReconcileDetail:
    row_index: int
    transaction_id: str
    status: str
    emp_status: str | None = None
    message: str | None = None

    def as_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "csvRowIndex": self.row_index,
            "transactionId": self.transaction_id,
            "status": self.status,
        }
        if self.emp_status is not None:
            data["empStatus"] = self.emp_status
        if self.message is not None:
            data["message"] = self.message
        return data


@dataclass
class ReconciliationReport:
    """
    Local vs gateway comparison.

    By construction ``total == submitted + not_submitted`` and
    ``submitted == approved + pending + error + len(missing_in_emp)``.
    """

    total: int = 0
    submitted: int = 0
    approved: int = 0
    pending: int = 0
    error: int = 0
    not_submitted: int = 0
    missing_in_emp: list[str] = field(default_factory=list)
    details: list[ReconcileDetail] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "submitted": self.submitted,
            "approved": self.approved,
            "pending": self.pending,
            "error": self.error,
            "notSubmitted": self.not_submitted,
            "missingInEmp": list(self.missing_in_emp),
            "details": [d.as_dict() for d in self.details],
        }


class Reconciler:
    """Queries the gateway for the status of submitted transactions."""

    def __init__(self, gateway: PaymentGateway, batch_size: int | None = None):
        self.gateway = gateway
        self.batch_size = max(1, batch_size or settings.RECONCILE_BATCH_SIZE)

    async def reconcile(
        self, unique_id: str | None = None, transaction_id: str | None = None
    ) -> GatewayResponse:
        """
        Single lookup. A failed lookup is an ``ok=False`` result, never an exception.
        """
        if not unique_id and not transaction_id:
            raise ValueError("reconcile requires unique_id or transaction_id")
        try:
            return await self.gateway.reconcile(unique_id=unique_id, transaction_id=transaction_id)
        except GatewayError as exc:
            logger.warning(
                "Reconcile lookup failed: %s",
                exc,
                extra={
                    "event_type": "gateway.reconcile.failed",
                    "unique_id": unique_id,
                    "transaction_id": transaction_id,
                },
            )
            return GatewayResponse(ok=False, message=str(exc))

    async def reconcile_many(self, unique_ids: list[str]) -> dict[str, GatewayResponse]:
        """Look up many unique ids, ``batch_size`` concurrent calls at a time."""
        results: dict[str, GatewayResponse] = {}
        for start in range(0, len(unique_ids), self.batch_size):
            batch = unique_ids[start : start + self.batch_size]
            responses = await asyncio.gather(*(self.reconcile(unique_id=uid) for uid in batch))
            results.update(zip(batch, responses))
        return results

    async def compare_with_emp(self, candidates: list[ReconcileCandidate]) -> ReconciliationReport:
        """
        Classify every candidate against gateway ground truth.

        Rows without a remote id, or still pending locally, are not submitted.
        For the rest: approved-like -> approved, declined/error -> error, no
        result or ok=False -> missing_in_emp, anything else -> pending.
        """
        report = ReconciliationReport(total=len(candidates))

        def submitted(candidate: ReconcileCandidate) -> bool:
            return bool(candidate.unique_id) and candidate.status != PENDING

        unique_ids = list(
            dict.fromkeys(c.unique_id for c in candidates if submitted(c) and c.unique_id)
        )
        responses = await self.reconcile_many(unique_ids) if unique_ids else {}

        for index, candidate in enumerate(candidates):
            tx_id = candidate.transaction_id or f"row-{index}"

            if not submitted(candidate):
                report.not_submitted += 1
                report.details.append(ReconcileDetail(index, tx_id, NOT_SUBMITTED))
                continue

            report.submitted += 1
            response = responses.get(candidate.unique_id or "")

            if response is None or not response.ok:
                report.missing_in_emp.append(tx_id)
                message = (response.message if response else None) or NOT_FOUND_MESSAGE
                report.details.append(ReconcileDetail(index, tx_id, MISSING_IN_EMP, message=message))
            elif is_approved_status(response.status):
                report.approved += 1
                report.details.append(
                    ReconcileDetail(index, tx_id, APPROVED, emp_status=response.status)
                )
            elif is_declined_status(response.status):
                report.error += 1
                report.details.append(
                    ReconcileDetail(
                        index,
                        tx_id,
                        ERROR,
                        emp_status=response.status,
                        message=response.message or response.technical_message,
                    )
                )
            else:
                report.pending += 1
                report.details.append(
                    ReconcileDetail(index, tx_id, PENDING, emp_status=response.status)
                )

        for detail in report.details:
            reconciliation_records_total.labels(classification=detail.status).inc()

        logger.info(
            "Reconciled %d record(s): %d approved, %d pending, %d error, %d missing, %d not submitted",
            report.total,
            report.approved,
            report.pending,
            report.error,
            len(report.missing_in_emp),
            report.not_submitted,
            extra={"event_type": "reconcile.compare.completed"},
        )
        return report
