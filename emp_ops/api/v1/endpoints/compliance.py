"""IBAN cooldown compliance endpoint."""

from typing import Annotated, Any

from fastapi import APIRouter, Depends

from emp_ops.api.deps import SessionOperator, get_compliance_gate
from emp_ops.schemas.emp import ComplianceCheckRequest
from emp_ops.services.compliance import ComplianceGate, IbanRef

router = APIRouter()


@router.post("/check")
async def check_compliance(
    body: ComplianceCheckRequest,
    operator: SessionOperator,
    gate: Annotated[ComplianceGate, Depends(get_compliance_gate)],
) -> dict[str, Any]:
    """Report IBANs used inside the cooldown window; row indices follow the request order."""
    result = await gate.check_threshold(
        [IbanRef(iban=iban, row_index=index) for index, iban in enumerate(body.ibans)],
        exclude_upload_id=body.exclude_upload_id,
        window_days=body.window_days,
    )
    return {
        "violations": [
            {
                "iban": v.iban,
                "rowIndex": v.row_index,
                "daysAgo": v.days_ago,
                "source": v.source,
                "date": v.date.isoformat(),
                "filename": v.filename,
            }
            for v in result.violations
        ],
        "violatedIbans": sorted(result.violated_ibans),
        "checkedCount": result.checked_count,
    }
