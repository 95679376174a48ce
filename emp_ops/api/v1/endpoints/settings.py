"""Operator settings endpoints."""

from typing import Any

from fastapi import APIRouter

from emp_ops.api.deps import SessionOperator, SettingsStoreDep, WriteOperator
from emp_ops.core.errors import ValidationAPIError
from emp_ops.schemas.emp import FieldMappingRequest

router = APIRouter()


@router.get("/mapping")
async def get_field_mapping(
    operator: SessionOperator,
    settings_store: SettingsStoreDep,
) -> dict[str, Any]:
    return {"mapping": await settings_store.get_field_mapping()}


@router.post("/mapping")
async def save_field_mapping(
    body: FieldMappingRequest,
    operator: WriteOperator,
    settings_store: SettingsStoreDep,
) -> dict[str, Any]:
    """Save the custom canonical-field -> CSV-column mapping."""
    if not isinstance(body.mapping, dict):
        raise ValidationAPIError("Invalid mapping")

    mapping = {
        str(field): str(column).strip()
        for field, column in body.mapping.items()
        if column is not None and str(column).strip()
    }
    await settings_store.save_field_mapping(mapping)
    return {"ok": True}
