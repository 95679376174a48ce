"""Batch submission endpoint."""

from typing import Annotated, Any

from fastapi import APIRouter, Depends

from emp_ops.api.deps import WriteOperator, get_batch_submitter
from emp_ops.schemas.emp import SubmitBatchRequest
from emp_ops.services.batch_submitter import BatchSubmitter, SubmitOptions

router = APIRouter()


@router.post("/submit-batch/{upload_id}")
async def submit_batch(
    upload_id: str,
    operator: WriteOperator,
    submitter: Annotated[BatchSubmitter, Depends(get_batch_submitter)],
    body: SubmitBatchRequest | None = None,
) -> dict[str, Any]:
    """Submit the eligible rows of an upload to the gateway."""
    body = body or SubmitBatchRequest()
    options = SubmitOptions.from_request(
        concurrency=body.concurrency,
        chunk_size=body.chunk_size,
        max_records=body.max_records,
        filter_by_amount=body.filter_by_amount,
        amount_limit=body.amount_limit,
    )
    result = await submitter.submit_batch(upload_id, options)
    return result.as_dict()
