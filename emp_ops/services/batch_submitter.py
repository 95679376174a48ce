"""Batch submission of upload rows to the payment gateway.

Eligible rows are processed in fixed-size groups: all rows of a group are
submitted concurrently, groups run strictly one after another. Each row goes
through its own retry state machine (duplicate transaction ids are either
adopted from the gateway's ground truth or retried under a suffixed id).
Row state is kept in memory and checkpointed to the database at most once
per ``CHECKPOINT_INTERVAL_SECONDS``, plus one final flush that recomputes
the upload's aggregate counters.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from emp_ops.core.config import settings
from emp_ops.core.errors import EmpOpsError, FieldMappingError, GatewayError, UploadEmptyError
from emp_ops.core.metrics import (
    batch_rows_total,
    batch_run_duration_seconds,
    checkpoint_flushes_total,
    duplicate_retries_total,
)
from emp_ops.db.stores import SettingsStore, UploadStore
from emp_ops.integrations.interfaces.base import GatewayResponse, PaymentGateway, SddSaleRequest
from emp_ops.models.base import utc_now
from emp_ops.schemas.upload import (
    SKIPPED_STATUSES,
    GatewayEcho,
    RowState,
    RowStatus,
    count_statuses,
    normalize_rows,
)
from emp_ops.services.compliance import (
    ComplianceGate,
    extract_ibans_from_records,
    violation_message,
)
from emp_ops.services.field_aliases import get_field_value
from emp_ops.services.gateway_policy import (
    is_approved_status,
    is_duplicate_transaction_error,
    is_pending_status,
)
from emp_ops.services.locks import UploadLockRegistry, upload_locks
from emp_ops.services.reconciler import Reconciler
from emp_ops.services.sdd_mapper import (
    CompanyConfig,
    build_retry_transaction_id,
    map_record_to_sdd_sale,
    strip_retry_suffix,
)

logger = logging.getLogger("emp.submit")

ALL_PROCESSED_MESSAGE = "All records already processed"


def _clamp(value: int | None, default: int, lower: int, upper: int) -> int:
    if not value:
        return default
    return max(lower, min(upper, int(value)))


@dataclass
class SubmitOptions:
    """Knobs of one submission run, already clamped to their allowed ranges."""

    concurrency: int = 20
    # Accepted from clients; groups are sized by concurrency.
    chunk_size: int = 20
    max_records: int | None = None
    filter_by_amount: str | None = None
    amount_limit: int | None = None

    @classmethod
    def from_request(
        cls,
        concurrency: int | None = None,
        chunk_size: int | None = None,
        max_records: int | None = None,
        filter_by_amount: str | None = None,
        amount_limit: int | None = None,
    ) -> "SubmitOptions":
        filter_value = (filter_by_amount or "").strip() or None
        return cls(
            concurrency=_clamp(
                concurrency,
                settings.SUBMIT_DEFAULT_CONCURRENCY,
                1,
                settings.SUBMIT_MAX_CONCURRENCY,
            ),
            chunk_size=_clamp(
                chunk_size,
                settings.SUBMIT_DEFAULT_CHUNK_SIZE,
                1,
                settings.SUBMIT_MAX_CHUNK_SIZE,
            ),
            max_records=max(1, int(max_records)) if max_records else None,
            filter_by_amount=filter_value,
            amount_limit=(
                max(1, int(amount_limit))
                if amount_limit and filter_value
                else None
            ),
        )

    @property
    def group_size(self) -> int:
        return self.concurrency


def amount_matches(value: str | None, wanted: str) -> bool:
    """Exact text match, or numeric equality when both sides parse ("1,99" == "1.99")."""
    if value is None:
        return False
    if value.strip() == wanted.strip():
        return True
    try:
        return Decimal(value.strip().replace(",", ".")) == Decimal(wanted.strip().replace(",", "."))
    except InvalidOperation:
        return False


FlushFn = Callable[[dict[int, dict[str, Any]], bool], Awaitable[Any]]


class Checkpointer:
    """
    Buffers dirty row indices and flushes them on an interval.

    ``flush(patches, final)`` receives the current stored form of every dirty
    row. Intermediate flush failures are logged and the rows stay dirty for
    the next attempt; the final flush raises.
    """

    def __init__(
        self,
        flush: FlushFn,
        states: list[RowState],
        interval: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._flush = flush
        self._states = states
        self.interval = settings.CHECKPOINT_INTERVAL_SECONDS if interval is None else interval
        self._clock = clock
        self._dirty: set[int] = set()
        self._last_flush = clock()
        self.flush_count = 0

    @property
    def dirty(self) -> frozenset[int]:
        return frozenset(self._dirty)

    def mark_dirty(self, index: int) -> None:
        self._dirty.add(index)

    def _take(self) -> dict[int, dict[str, Any]]:
        patches = {index: self._states[index].to_stored() for index in sorted(self._dirty)}
        self._dirty.clear()
        return patches

    async def maybe_flush(self) -> bool:
        now = self._clock()
        if not self._dirty or now - self._last_flush < self.interval:
            return False

        self._last_flush = now
        patches = self._take()
        try:
            await self._flush(patches, False)
        except EmpOpsError as exc:
            self._dirty.update(patches)
            checkpoint_flushes_total.labels(kind="interval", outcome="failed").inc()
            logger.warning(
                "Checkpoint flush of %d row(s) failed, continuing: %s",
                len(patches),
                exc,
                extra={"event_type": "submit.checkpoint.failed", "rows": len(patches)},
            )
            return False

        self.flush_count += 1
        checkpoint_flushes_total.labels(kind="interval", outcome="ok").inc()
        logger.debug(
            "Checkpointed %d row(s)",
            len(patches),
            extra={"event_type": "submit.checkpoint", "rows": len(patches)},
        )
        return True

    async def final_flush(self) -> None:
        patches = self._take()
        try:
            await self._flush(patches, True)
        except Exception:
            self._dirty.update(patches)
            checkpoint_flushes_total.labels(kind="final", outcome="failed").inc()
            raise
        self.flush_count += 1
        checkpoint_flushes_total.labels(kind="final", outcome="ok").inc()


@dataclass
class RowError:
    row_index: int
    message: str

    def as_dict(self) -> dict[str, Any]:
        return {"row": self.row_index, "message": self.message}


@dataclass
class BatchResult:
    processed: int = 0
    total: int = 0
    approved: int = 0
    errors: int = 0
    blacklisted: int = 0
    pending: int = 0
    groups: int = 0
    error_details: list[RowError] = field(default_factory=list)
    runtime_ms: int = 0
    message: str | None = None

    def as_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "ok": True,
            "processed": self.processed,
            "total": self.total,
            "approved": self.approved,
            "errors": self.errors,
            "blacklisted": self.blacklisted,
            "pending": self.pending,
            "groups": self.groups,
            "errorDetails": [e.as_dict() for e in self.error_details],
            "runtimeMs": self.runtime_ms,
        }
        if self.message:
            data["message"] = self.message
        return data


@dataclass
class _Run:
    """Mutable state of one submission run."""

    upload_id: str
    filename: str
    records: list[dict[str, Any]]
    states: list[RowState]
    custom_mapping: dict[str, str] | None
    company: CompanyConfig
    checkpointer: Checkpointer
    errors: list[RowError] = field(default_factory=list)
    processed: int = 0


class BatchSubmitter:
    """Submits the eligible rows of an upload."""

    def __init__(
        self,
        uploads: UploadStore,
        settings_store: SettingsStore,
        gateway: PaymentGateway,
        compliance: ComplianceGate,
        reconciler: Reconciler | None = None,
        locks: UploadLockRegistry = upload_locks,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = utc_now,
        checkpoint_interval: float | None = None,
        max_duplicate_retries: int | None = None,
    ):
        self.uploads = uploads
        self.settings_store = settings_store
        self.gateway = gateway
        self.compliance = compliance
        self.reconciler = reconciler or Reconciler(gateway)
        self.locks = locks
        self.clock = clock
        self.now = now
        self.checkpoint_interval = checkpoint_interval
        self.max_duplicate_retries = (
            settings.MAX_DUPLICATE_RETRIES
            if max_duplicate_retries is None
            else max_duplicate_retries
        )

    async def submit_batch(self, upload_id: str, options: SubmitOptions | None = None) -> BatchResult:
        """
        Submit the eligible rows of ``upload_id``.

        Raises:
            UploadNotFoundError: unknown upload
            UploadEmptyError: upload has no records
            UploadBusyError: another operation holds the upload
            StorageError: setup reads or the final flush failed
        """
        options = options or SubmitOptions.from_request()
        async with self.locks.hold(upload_id, "submit"):
            return await self._submit(upload_id, options)

    async def _submit(self, upload_id: str, options: SubmitOptions) -> BatchResult:
        started = self.clock()
        upload = await self.uploads.get(upload_id)
        records = list(upload.records or [])
        if not records:
            raise UploadEmptyError(upload_id)

        custom_mapping = await self.settings_store.get_field_mapping()
        account = (
            await self.settings_store.get_account(upload.account_id)
            if upload.account_id
            else None
        )
        company = CompanyConfig.from_account(account)
        states = [RowState.from_stored(row) for row in normalize_rows(records, upload.rows)]

        async def flush(patches: dict[int, dict[str, Any]], final: bool) -> None:
            await self.uploads.patch_rows(upload_id, patches, recount=final)

        run = _Run(
            upload_id=upload_id,
            filename=upload.display_filename,
            records=records,
            states=states,
            custom_mapping=custom_mapping,
            company=company,
            checkpointer=Checkpointer(
                flush, states, interval=self.checkpoint_interval, clock=self.clock
            ),
        )

        await self._apply_cooldown(run)

        selected = self._select_rows(run, options)
        logger.info(
            "Submitting %d of %d row(s) for upload %s",
            len(selected),
            len(records),
            upload_id,
            extra={
                "event_type": "submit.batch.started",
                "upload_id": upload_id,
                "selected": len(selected),
                "group_size": options.group_size,
            },
        )

        groups = 0
        try:
            for start in range(0, len(selected), options.group_size):
                group = selected[start : start + options.group_size]
                await asyncio.gather(*(self._process_row(run, index) for index in group))
                groups += 1
                await run.checkpointer.maybe_flush()
        finally:
            await run.checkpointer.final_flush()

        elapsed = self.clock() - started
        batch_run_duration_seconds.observe(elapsed)
        counts = count_statuses([s.to_stored() for s in states])
        result = BatchResult(
            processed=run.processed,
            total=counts.total,
            approved=counts.approved,
            errors=counts.error,
            blacklisted=counts.blacklisted,
            pending=counts.pending,
            groups=groups,
            error_details=run.errors[: settings.ERROR_PREVIEW_LIMIT],
            runtime_ms=int(elapsed * 1000),
            message=None if selected else ALL_PROCESSED_MESSAGE,
        )
        logger.info(
            "Upload %s: %d processed, %d approved, %d errors, %d pending",
            upload_id,
            result.processed,
            result.approved,
            result.errors,
            result.pending,
            extra={
                "event_type": "submit.batch.completed",
                "upload_id": upload_id,
                "groups": groups,
                "runtime_ms": result.runtime_ms,
            },
        )
        return result

    async def _apply_cooldown(self, run: _Run) -> None:
        """Mark still-eligible rows whose IBAN was used inside the cooldown window."""
        window_days = settings.COOLDOWN_WINDOW_DAYS
        check = await self.compliance.check_threshold(
            extract_ibans_from_records(run.records, run.custom_mapping),
            exclude_upload_id=run.upload_id,
            window_days=window_days,
            custom_mapping=run.custom_mapping,
        )

        patches: dict[int, dict[str, Any]] = {}
        for violation in check.violations:
            state = run.states[violation.row_index]
            if state.status in SKIPPED_STATUSES:
                continue
            state.transition_to(RowStatus.ERROR)
            state.attempts += 1
            state.last_attempt_at = self.now()
            state.emp = GatewayEcho(message=violation_message(violation, window_days))
            patches[violation.row_index] = state.to_stored()

        if patches:
            await self.uploads.patch_rows(run.upload_id, patches)
            logger.info(
                "Marked %d row(s) of upload %s as cooldown violations",
                len(patches),
                run.upload_id,
                extra={"event_type": "submit.cooldown.marked", "upload_id": run.upload_id},
            )

    def _select_rows(self, run: _Run, options: SubmitOptions) -> list[int]:
        eligible = [i for i, s in enumerate(run.states) if s.status not in SKIPPED_STATUSES]

        if options.filter_by_amount:
            eligible = [
                i
                for i in eligible
                if amount_matches(
                    get_field_value(run.records[i], "amount", run.custom_mapping),
                    options.filter_by_amount,
                )
            ]
            if options.amount_limit:
                eligible = eligible[: options.amount_limit]
        elif options.max_records:
            eligible = eligible[: options.max_records]
        return eligible

    def _finish(self, run: _Run, index: int, status: RowStatus, message: str | None = None) -> None:
        state = run.states[index]
        state.transition_to(status)
        run.checkpointer.mark_dirty(index)
        batch_rows_total.labels(status=status.value).inc()
        if status == RowStatus.ERROR:
            run.errors.append(RowError(index, message or state.message or "Submission failed"))

    async def _send(self, request: SddSaleRequest) -> tuple[GatewayResponse | None, GatewayError | None]:
        try:
            return await self.gateway.submit(request), None
        except GatewayError as exc:
            return None, exc

    async def _process_row(self, run: _Run, index: int) -> None:
        run.processed += 1
        state = run.states[index]

        try:
            request = map_record_to_sdd_sale(
                run.records[index],
                index,
                run.custom_mapping,
                run.filename,
                run.company,
                upload_id=run.upload_id,
            )
        except FieldMappingError as exc:
            state.attempts += 1
            state.last_attempt_at = self.now()
            state.emp = GatewayEcho(message=str(exc))
            self._finish(run, index, RowStatus.ERROR, str(exc))
            return

        if not state.base_transaction_id:
            state.base_transaction_id = strip_retry_suffix(request.transaction_id)
        base_id = state.base_transaction_id
        retry_count = max(0, state.retry_count)
        duplicate_attempts = 0

        while True:
            attempt_id = build_retry_transaction_id(base_id, retry_count)
            attempt = request.with_transaction_id(attempt_id)

            state.retry_count = retry_count
            state.attempts += 1
            state.last_attempt_at = self.now()
            state.request = attempt.masked()
            state.last_transaction_id = attempt_id
            state.transition_to(RowStatus.SUBMITTED)
            run.checkpointer.mark_dirty(index)

            response, error = await self._send(attempt)

            if response is not None and response.ok:
                approved = is_approved_status(response.status)
                state.emp = GatewayEcho(
                    unique_id=response.unique_id,
                    redirect_url=response.redirect_url,
                    message=response.message
                    or ("Transaction approved" if approved else "Transaction submitted"),
                    technical_message=response.technical_message,
                    status=response.status,
                )
                self._finish(run, index, RowStatus.APPROVED if approved else RowStatus.SUBMITTED)
                return

            messages = (
                [response.message, response.technical_message]
                if response is not None
                else [str(error)]
            )
            if not is_duplicate_transaction_error(messages):
                state.emp = GatewayEcho(
                    unique_id=response.unique_id if response else None,
                    message=(response.message if response else str(error)) or "Submission failed",
                    technical_message=(
                        response.technical_message if response else repr(error)
                    ),
                    status=response.status if response else None,
                )
                self._finish(run, index, RowStatus.ERROR)
                return

            truth = await self.reconciler.reconcile(transaction_id=attempt_id)
            if truth.ok and (is_approved_status(truth.status) or is_pending_status(truth.status)):
                approved = is_approved_status(truth.status)
                state.emp = GatewayEcho(
                    unique_id=truth.unique_id,
                    redirect_url=truth.redirect_url,
                    message=truth.message
                    or f"Existing transaction {attempt_id} adopted ({truth.status})",
                    technical_message=truth.technical_message,
                    status=truth.status,
                )
                state.emp_status = truth.status
                duplicate_retries_total.labels(resolution="adopted").inc()
                logger.info(
                    "Row %d: adopted existing transaction %s",
                    index,
                    attempt_id,
                    extra={
                        "event_type": "submit.duplicate.adopted",
                        "upload_id": run.upload_id,
                        "row_index": index,
                        "emp_status": truth.status,
                    },
                )
                self._finish(run, index, RowStatus.APPROVED if approved else RowStatus.SUBMITTED)
                return

            retry_count += 1
            duplicate_attempts += 1
            state.retry_count = retry_count
            state.duplicate_retries = duplicate_attempts

            if duplicate_attempts > self.max_duplicate_retries:
                detail = next((m for m in messages if m), "duplicate transaction")
                message = (
                    f"Duplicate transaction_id retries exhausted after "
                    f"{duplicate_attempts} attempts: {detail}"
                )
                state.emp = GatewayEcho(
                    message=message,
                    technical_message=response.technical_message if response else repr(error),
                    status=response.status if response else None,
                )
                duplicate_retries_total.labels(resolution="exhausted").inc()
                logger.warning(
                    "Row %d: %s",
                    index,
                    message,
                    extra={
                        "event_type": "submit.duplicate.exhausted",
                        "upload_id": run.upload_id,
                        "row_index": index,
                    },
                )
                self._finish(run, index, RowStatus.ERROR, message)
                return

            duplicate_retries_total.labels(resolution="retried").inc()
            logger.info(
                "Row %d: duplicate transaction id %s, retrying as %s",
                index,
                attempt_id,
                build_retry_transaction_id(base_id, retry_count),
                extra={
                    "event_type": "submit.duplicate.retry",
                    "upload_id": run.upload_id,
                    "row_index": index,
                    "retry_count": retry_count,
                },
            )
