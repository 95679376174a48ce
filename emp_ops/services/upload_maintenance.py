"""Upload maintenance: invalid-row cleanup and asynchronous gateway notifications."""

import logging
from dataclasses import dataclass
from typing import Any

from emp_ops.core.errors import InvalidTransitionError, UploadEmptyError
from emp_ops.core.metrics import rows_filtered_total
from emp_ops.db.stores import SettingsStore, UploadStore
from emp_ops.schemas.upload import GatewayEcho, RowState, RowStatus, normalize_rows
from emp_ops.services.gateway_policy import is_approved_status, is_declined_status
from emp_ops.services.locks import UploadLockRegistry, upload_locks
from emp_ops.services.validation import validate_rows

logger = logging.getLogger(__name__)


@dataclass
class DeleteInvalidResult:
    deleted_count: int
    new_record_count: int

    def as_dict(self) -> dict[str, Any]:
        if self.deleted_count:
            message = f"Deleted {self.deleted_count} invalid row(s)"
        else:
            message = "No invalid rows to delete"
        return {
            "ok": True,
            "message": message,
            "deletedCount": self.deleted_count,
            "newRecordCount": self.new_record_count,
        }


@dataclass
class NotificationResult:
    unique_id: str
    upload_id: str | None = None
    row_index: int | None = None
    status: str | None = None

    @property
    def matched(self) -> bool:
        return self.upload_id is not None


def notification_row_status(status: str | None) -> RowStatus:
    """Row status implied by a gateway notification status."""
    if is_approved_status(status):
        return RowStatus.APPROVED
    if is_declined_status(status):
        return RowStatus.ERROR
    return RowStatus.SUBMITTED


class UploadMaintenance:
    def __init__(
        self,
        uploads: UploadStore,
        settings_store: SettingsStore,
        locks: UploadLockRegistry = upload_locks,
    ):
        self.uploads = uploads
        self.settings_store = settings_store
        self.locks = locks

    async def delete_invalid_rows(self, upload_id: str) -> DeleteInvalidResult:
        """
        Remove rows that fail validation or are blacklisted.

        Records and rows are removed at the same indices and the aggregate
        counters are recomputed.

        Raises:
            UploadNotFoundError: unknown upload
            UploadEmptyError: upload has no records
        """
        async with self.locks.hold(upload_id, "delete-invalid"):
            upload = await self.uploads.get(upload_id)
            records = list(upload.records or [])
            if not records:
                raise UploadEmptyError(upload_id)
            rows = normalize_rows(records, upload.rows)

            custom_mapping = await self.settings_store.get_field_mapping()
            invalid = {r.index for r in validate_rows(records, custom_mapping).invalid_rows}
            invalid.update(
                index
                for index, row in enumerate(rows)
                if row.get("status") == RowStatus.BLACKLISTED.value
            )

            if not invalid:
                return DeleteInvalidResult(deleted_count=0, new_record_count=len(records))

            kept = [i for i in range(len(records)) if i not in invalid]
            await self.uploads.replace_records(
                upload_id,
                [records[i] for i in kept],
                [rows[i] for i in kept],
            )

        rows_filtered_total.labels(reason="invalid").inc(len(invalid))
        logger.info(
            "Deleted %d invalid row(s) from upload %s, %d remain",
            len(invalid),
            upload_id,
            len(kept),
            extra={"event_type": "upload.delete_invalid", "upload_id": upload_id},
        )
        return DeleteInvalidResult(deleted_count=len(invalid), new_record_count=len(kept))

    async def apply_gateway_notification(
        self, unique_id: str, status: str, message: str | None = None
    ) -> NotificationResult:
        """
        Apply an asynchronous status notification to the row that owns ``unique_id``.

        Unknown unique ids are not an error: the gateway also notifies about
        transactions created outside this system.
        """
        found = await self.uploads.find_by_remote_unique_id(unique_id)
        if found is None:
            logger.info(
                "Notification for unknown unique id %s",
                unique_id,
                extra={"event_type": "gateway.notification.unmatched", "status": status},
            )
            return NotificationResult(unique_id=unique_id)

        upload, index = found
        async with self.locks.hold(upload.id, "notification"):
            upload = await self.uploads.get(upload.id)
            rows = normalize_rows(upload.records or [], upload.rows)
            # Rows may have moved since the lookup
            index = next(
                (
                    i
                    for i, row in enumerate(rows)
                    if RowState.from_stored(row).remote_unique_id == unique_id
                ),
                -1,
            )
            if index < 0:
                return NotificationResult(unique_id=unique_id)
            state = RowState.from_stored(rows[index])

            patch: dict[str, Any] = {"emp_status": status}
            target = notification_row_status(status)
            try:
                state.transition_to(target)
            except InvalidTransitionError as exc:
                logger.warning(
                    "Notification for %s ignored for row status: %s",
                    unique_id,
                    exc,
                    extra={"event_type": "gateway.notification.rejected", "upload_id": upload.id},
                )
            else:
                patch["status"] = target.value

            echo = state.emp or GatewayEcho(unique_id=unique_id)
            patch["emp"] = echo.model_copy(
                update={"message": message or echo.message, "status": status}
            ).model_dump(mode="json", exclude_none=True)

            await self.uploads.patch_rows(upload.id, {index: patch}, recount=True)

        logger.info(
            "Notification %s applied to upload %s row %d: %s",
            unique_id,
            upload.id,
            index,
            patch.get("status", state.status.value),
            extra={
                "event_type": "gateway.notification.applied",
                "upload_id": upload.id,
                "row_index": index,
                "status": status,
            },
        )
        return NotificationResult(
            unique_id=unique_id,
            upload_id=upload.id,
            row_index=index,
            status=patch.get("status", state.status.value),
        )
