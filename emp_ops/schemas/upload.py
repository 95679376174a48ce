"""Upload row state schemas.

Every record of an upload has a row state stored at the same index of
``Upload.rows``. The row state is a small state machine (see
``ROW_TRANSITIONS``): submission moves rows from pending to submitted and
on to approved or error, the deny-list moves pending rows to blacklisted,
and reconciliation may correct submitted/approved/error rows after the
fact when the gateway's ground truth disagrees. Blacklisted is final.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import ConfigDict, Field

from emp_ops.core.errors import InvalidTransitionError
from emp_ops.schemas.common import BaseSchema


class RowStatus(str, Enum):
    """Submission status of one upload row."""

    PENDING = "pending"  # Not yet sent to the gateway
    SUBMITTED = "submitted"  # Sent; gateway accepted it but has not settled it
    APPROVED = "approved"  # Gateway reports success
    ERROR = "error"  # Terminal failure (validation, gateway, compliance)
    BLACKLISTED = "blacklisted"  # Excluded by the deny-list, never submitted


ROW_TRANSITIONS: dict[RowStatus, frozenset[RowStatus]] = {
    RowStatus.PENDING: frozenset(
        {RowStatus.SUBMITTED, RowStatus.ERROR, RowStatus.BLACKLISTED}
    ),
    RowStatus.SUBMITTED: frozenset({RowStatus.APPROVED, RowStatus.ERROR}),
    RowStatus.APPROVED: frozenset({RowStatus.SUBMITTED, RowStatus.ERROR}),
    RowStatus.ERROR: frozenset({RowStatus.SUBMITTED, RowStatus.APPROVED}),
    RowStatus.BLACKLISTED: frozenset(),
}

# Rows in these states are never picked up by a submission run
SKIPPED_STATUSES = frozenset({RowStatus.APPROVED, RowStatus.ERROR, RowStatus.BLACKLISTED})


def can_transition(current: RowStatus, target: RowStatus) -> bool:
    return current == target or target in ROW_TRANSITIONS[current]


class GatewayEcho(BaseSchema):
    """Gateway response fields kept on the row."""

    unique_id: str | None = None
    redirect_url: str | None = None
    message: str | None = None
    technical_message: str | None = None
    status: str | None = None


class RowState(BaseSchema):
    """Per-record submission state."""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        extra="ignore",
        validate_assignment=False,
    )

    status: RowStatus = RowStatus.PENDING
    attempts: int = 0
    last_attempt_at: datetime | None = None
    retry_count: int = 0
    duplicate_retries: int = 0
    base_transaction_id: str | None = None
    last_transaction_id: str | None = None
    emp: GatewayEcho | None = None
    emp_status: str | None = None
    emp_error: str | None = None
    request: dict[str, Any] | None = Field(default=None, description="Masked echo of the last request")

    @classmethod
    def from_stored(cls, raw: dict[str, Any] | None) -> "RowState":
        return cls.model_validate(raw or {})

    def to_stored(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)

    def transition_to(self, target: RowStatus) -> None:
        """Move to ``target``, rejecting transitions outside ROW_TRANSITIONS."""
        if not can_transition(self.status, target):
            raise InvalidTransitionError(self.status.value, target.value)
        self.status = target

    @property
    def remote_unique_id(self) -> str | None:
        return self.emp.unique_id if self.emp else None

    @property
    def message(self) -> str | None:
        """Human-readable outcome message, reconciliation text first."""
        if self.emp_error:
            return self.emp_error
        return self.emp.message if self.emp else None


def normalize_rows(
    records: list[dict[str, Any]], rows: list[dict[str, Any]] | None
) -> list[dict[str, Any]]:
    """
    Return a row list aligned with ``records``.

    Missing row states are created as pending, surplus ones are dropped.
    """
    rows = list(rows or [])
    if len(rows) > len(records):
        return rows[: len(records)]
    pending = RowState().to_stored()
    rows.extend(dict(pending) for _ in range(len(records) - len(rows)))
    return rows


@dataclass
class StatusCounts:
    total: int = 0
    approved: int = 0
    error: int = 0
    blacklisted: int = 0
    submitted: int = 0

    @property
    def pending(self) -> int:
        """Rows without a terminal outcome (pending and in-flight submitted)."""
        return self.total - self.approved - self.error - self.blacklisted

    def as_upload_fields(self) -> dict[str, int]:
        return {
            "record_count": self.total,
            "approved_count": self.approved,
            "error_count": self.error,
            "blacklisted_count": self.blacklisted,
        }


def count_statuses(rows: list[dict[str, Any]]) -> StatusCounts:
    counts = StatusCounts(total=len(rows))
    for row in rows:
        status = (row or {}).get("status", RowStatus.PENDING.value)
        if status == RowStatus.APPROVED.value:
            counts.approved += 1
        elif status == RowStatus.ERROR.value:
            counts.error += 1
        elif status == RowStatus.BLACKLISTED.value:
            counts.blacklisted += 1
        elif status == RowStatus.SUBMITTED.value:
            counts.submitted += 1
    return counts
