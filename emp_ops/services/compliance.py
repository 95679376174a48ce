"""IBAN cooldown compliance gate.

An IBAN must not be debited again within the cooldown window. Prior use is
looked up in two places:

- the gateway ground-truth cache (source ``reconcile``)
- every other upload created inside the window: rows already sent to the
  gateway count from the upload's last modification (``emp_submission``),
  rows never sent count from the upload's creation (``upload``)

The check is read-only; callers decide what to do with the violations.
"""

import logging
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from emp_ops.core.config import settings
from emp_ops.core.metrics import cooldown_violations_total
from emp_ops.db.stores import TransactionStore, UploadStore
from emp_ops.models.base import ensure_utc, utc_now
from emp_ops.schemas.upload import RowStatus
from emp_ops.services.field_aliases import get_field_value, normalize_iban

logger = logging.getLogger("emp.compliance")

SOURCE_RECONCILE = "reconcile"
SOURCE_UPLOAD = "upload"
SOURCE_EMP_SUBMISSION = "emp_submission"

# Row statuses that mean the row reached the gateway
_SENT_STATUSES = {RowStatus.APPROVED.value, RowStatus.SUBMITTED.value, RowStatus.ERROR.value}


@dataclass(frozen=True)
class IbanRef:
    """A normalized IBAN and the row it came from."""

    iban: str
    row_index: int


@dataclass
class ThresholdViolation:
    iban: str
    row_index: int
    days_ago: int
    source: str
    date: datetime
    filename: str | None = None


@dataclass
class ThresholdCheckResult:
    violations: list[ThresholdViolation] = field(default_factory=list)
    violated_ibans: set[str] = field(default_factory=set)
    checked_count: int = 0


@dataclass
class _Occurrence:
    date: datetime
    source: str
    filename: str | None = None


def extract_ibans_from_records(
    records: Sequence[dict[str, Any]], custom_mapping: dict[str, str] | None = None
) -> list[IbanRef]:
    refs = []
    for index, record in enumerate(records):
        iban = normalize_iban(get_field_value(record, "iban", custom_mapping))
        if iban:
            refs.append(IbanRef(iban=iban, row_index=index))
    return refs


def violation_message(violation: ThresholdViolation, window_days: int) -> str:
    return (
        f"Invalid: IBAN processed {violation.days_ago} day(s) ago "
        f"(must wait {window_days} days)"
    )


def _row_was_sent(row: dict[str, Any] | None) -> bool:
    row = row or {}
    return bool(row.get("emp")) or row.get("status") in _SENT_STATUSES


class ComplianceGate:
    """Cooldown-window check across ground truth and other uploads."""

    def __init__(
        self,
        transactions: TransactionStore,
        uploads: UploadStore,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.transactions = transactions
        self.uploads = uploads
        self.clock = clock

    async def check_threshold(
        self,
        ibans: Iterable[IbanRef],
        exclude_upload_id: str | None = None,
        window_days: int | None = None,
        custom_mapping: dict[str, str] | None = None,
    ) -> ThresholdCheckResult:
        refs = [IbanRef(normalize_iban(ref.iban), ref.row_index) for ref in ibans]
        refs = [ref for ref in refs if ref.iban]
        if not refs:
            return ThresholdCheckResult()

        window_days = settings.COOLDOWN_WINDOW_DAYS if window_days is None else window_days
        now = self.clock()
        since = now - timedelta(days=window_days)
        wanted = {ref.iban for ref in refs}

        latest: dict[str, _Occurrence] = {}

        # Ground truth first: on equal dates it stays the recorded source
        for tx in await self.transactions.find_by_accounts(wanted, since, now):
            iban = normalize_iban(tx.bank_account_number)
            tx_date = ensure_utc(tx.transaction_date)
            if not iban or tx_date is None:
                continue
            existing = latest.get(iban)
            if existing is None or tx_date > existing.date:
                latest[iban] = _Occurrence(date=tx_date, source=SOURCE_RECONCILE)

        for upload in await self.uploads.list_created_since(since, exclude_id=exclude_upload_id):
            created_at = ensure_utc(upload.created_at)
            updated_at = ensure_utc(upload.updated_at) or created_at
            rows = upload.rows or []
            for index, record in enumerate(upload.records or []):
                iban = normalize_iban(get_field_value(record, "iban", custom_mapping))
                if iban not in wanted:
                    continue
                if _row_was_sent(rows[index] if index < len(rows) else None):
                    occurred, source = updated_at, SOURCE_EMP_SUBMISSION
                else:
                    occurred, source = created_at, SOURCE_UPLOAD
                existing = latest.get(iban)
                if existing is None or occurred > existing.date:
                    latest[iban] = _Occurrence(
                        date=occurred, source=source, filename=upload.display_filename
                    )

        result = ThresholdCheckResult(checked_count=len(refs))
        for ref in refs:
            occurrence = latest.get(ref.iban)
            if occurrence is None:
                continue
            days_ago = max(0, (now - occurrence.date) // timedelta(days=1))
            result.violations.append(
                ThresholdViolation(
                    iban=ref.iban,
                    row_index=ref.row_index,
                    days_ago=days_ago,
                    source=occurrence.source,
                    date=occurrence.date,
                    filename=occurrence.filename,
                )
            )
            result.violated_ibans.add(ref.iban)
            cooldown_violations_total.labels(source=occurrence.source).inc()

        if result.violations:
            logger.info(
                "Cooldown check found %d violation(s) across %d IBAN(s)",
                len(result.violations),
                len(result.violated_ibans),
                extra={
                    "event_type": "compliance.cooldown.violations",
                    "checked": result.checked_count,
                    "window_days": window_days,
                },
            )
        return result
