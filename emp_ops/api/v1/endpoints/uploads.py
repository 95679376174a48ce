"""Upload maintenance endpoints."""

from typing import Annotated, Any

from fastapi import APIRouter, Depends

from emp_ops.api.deps import (
    SessionOperator,
    SettingsStoreDep,
    Uploads,
    WriteOperator,
    get_chargeback_filter,
    get_upload_maintenance,
)
from emp_ops.schemas.upload import normalize_rows
from emp_ops.services.blacklist import ChargebackFilter
from emp_ops.services.upload_maintenance import UploadMaintenance
from emp_ops.services.validation import validate_rows

router = APIRouter()


@router.post("/filter-chargebacks/{upload_id}")
async def filter_chargebacks(
    upload_id: str,
    operator: WriteOperator,
    settings_store: SettingsStoreDep,
    chargeback_filter: Annotated[ChargebackFilter, Depends(get_chargeback_filter)],
) -> dict[str, Any]:
    """Remove rows with a chargeback history or a deny-list hit."""
    mapping = await settings_store.get_field_mapping()
    result = await chargeback_filter.filter_upload(upload_id, custom_mapping=mapping)
    return {
        "ok": True,
        "message": (
            f"Removed {result.removed_count} row(s) "
            f"({result.removed_by_chargeback} chargebacks, {result.removed_by_blacklist} blacklisted)"
        ),
        **result.as_stats(),
    }


@router.delete("/delete-invalid/{upload_id}")
async def delete_invalid(
    upload_id: str,
    operator: SessionOperator,
    maintenance: Annotated[UploadMaintenance, Depends(get_upload_maintenance)],
) -> dict[str, Any]:
    """Delete rows that fail validation or are blacklisted."""
    result = await maintenance.delete_invalid_rows(upload_id)
    return result.as_dict()


@router.get("/{upload_id}/validation")
async def validate_upload(
    upload_id: str,
    operator: SessionOperator,
    uploads: Uploads,
    settings_store: SettingsStoreDep,
) -> dict[str, Any]:
    """Validation summary of an upload's records."""
    upload = await uploads.get(upload_id)
    records = upload.records or []
    summary = validate_rows(records, await settings_store.get_field_mapping())
    rows = normalize_rows(records, upload.rows)
    response = summary.as_dict()
    response["recordCount"] = len(records)
    response["rowStatuses"] = [row.get("status", "pending") for row in rows]
    return response
