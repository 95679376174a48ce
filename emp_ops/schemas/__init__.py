"""Pydantic schemas for API validation and row state."""

from emp_ops.schemas.common import HealthResponse
from emp_ops.schemas.emp import (
    BlacklistAddRequest,
    BlacklistCheckRequest,
    ComplianceCheckRequest,
    FieldMappingRequest,
    SubmitBatchRequest,
)
from emp_ops.schemas.upload import (
    ROW_TRANSITIONS,
    GatewayEcho,
    RowState,
    RowStatus,
    StatusCounts,
    count_statuses,
    normalize_rows,
)

__all__ = [
    "BlacklistAddRequest",
    "BlacklistCheckRequest",
    "ComplianceCheckRequest",
    "FieldMappingRequest",
    "GatewayEcho",
    "HealthResponse",
    "ROW_TRANSITIONS",
    "RowState",
    "RowStatus",
    "StatusCounts",
    "SubmitBatchRequest",
    "count_statuses",
    "normalize_rows",
]
