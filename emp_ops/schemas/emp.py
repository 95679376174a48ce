"""Request schemas for the operator endpoints.

Field names follow the operator UI (camelCase); Python attributes are
snake_case.
"""

from typing import Any

from pydantic import Field, field_validator

from emp_ops.schemas.common import BaseSchema


class SubmitBatchRequest(BaseSchema):
    """Batch submission options. Out-of-range values are clamped, not rejected."""

    concurrency: int | None = None
    chunk_size: int | None = Field(default=None, alias="chunkSize")
    max_records: int | None = Field(default=None, alias="maxRecords")
    filter_by_amount: str | None = Field(default=None, alias="filterByAmount")
    amount_limit: int | None = Field(default=None, alias="amountLimit")

    @field_validator("filter_by_amount", mode="before")
    @classmethod
    def amount_as_text(cls, v: Any) -> str | None:
        if v is None:
            return None
        return str(v)


class ComplianceCheckRequest(BaseSchema):
    ibans: list[str]
    exclude_upload_id: str | None = Field(default=None, alias="excludeUploadId")
    window_days: int | None = Field(default=None, alias="windowDays", ge=1, le=365)


class BlacklistCheckRequest(BaseSchema):
    ibans: list[str] = []
    emails: list[str] = []
    names: list[str] = []
    bics: list[str] = []


class BlacklistAddRequest(BaseSchema):
    iban: str | None = None
    name: str | None = None
    email: str | None = None
    bic: str | None = None
    reason: str | None = None
    chargeback_code: str | None = Field(default=None, alias="chargebackCode")


class FieldMappingRequest(BaseSchema):
    mapping: Any = None
