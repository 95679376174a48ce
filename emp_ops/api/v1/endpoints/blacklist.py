"""Blacklist endpoints."""

from typing import Annotated, Any

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from emp_ops.api.deps import SessionOperator, Transactions, WriteOperator, get_blacklist_service
from emp_ops.core.errors import ValidationAPIError
from emp_ops.schemas.emp import BlacklistAddRequest, BlacklistCheckRequest
from emp_ops.services.blacklist import BlacklistService, blacklist_from_chargebacks
from emp_ops.services.field_aliases import mask_iban, normalize_iban

router = APIRouter()

BlacklistDep = Annotated[BlacklistService, Depends(get_blacklist_service)]


@router.post("/check")
async def check_blacklist(
    body: BlacklistCheckRequest,
    operator: SessionOperator,
    service: BlacklistDep,
) -> dict[str, Any]:
    matches = await service.check_blacklist(body.ibans, body.emails, body.names, body.bics)
    return {
        "blacklistedIbans": sorted(matches.ibans),
        "count": len(matches.ibans),
        "matches": {
            "ibans": sorted(matches.ibans),
            "emails": sorted(matches.emails),
            "names": sorted(matches.names),
            "bics": sorted(matches.bics),
        },
    }


@router.post("/add")
async def add_to_blacklist(
    body: BlacklistAddRequest,
    operator: WriteOperator,
    service: BlacklistDep,
):
    """Manually blacklist an IBAN. Answers 409 when it is already listed."""
    iban = normalize_iban(body.iban)
    if not iban:
        raise ValidationAPIError("IBAN is required")

    reason = body.reason or (
        f"Chargeback {body.chargeback_code}" if body.chargeback_code else "Manual blacklist"
    )
    added = await service.add_to_blacklist(
        iban,
        name=body.name,
        email=body.email,
        bic=body.bic,
        reason=reason,
        created_by="manual",
    )
    if not added:
        return JSONResponse(
            status_code=status.HTTP_409_CONFLICT,
            content={
                "success": False,
                "message": "IBAN already blacklisted",
                "iban": mask_iban(iban),
            },
        )
    return {
        "success": True,
        "message": "IBAN successfully blacklisted",
        "iban": mask_iban(iban),
    }


@router.post("/batch-from-chargebacks")
async def batch_from_chargebacks(
    operator: WriteOperator,
    service: BlacklistDep,
    transactions: Transactions,
) -> dict[str, Any]:
    """Blacklist the IBANs behind AC01/AC04 chargebacks."""
    report = await blacklist_from_chargebacks(service, transactions)
    return {
        "success": True,
        "processed": report.processed,
        "added": report.added,
        "skipped": report.skipped,
        "errors": report.errors,
        "details": report.details,
    }
