"""Gateway notification callback.

Called by the gateway, not by operators: authenticity comes from the
notification signature instead of a bearer token.
"""

import json
import logging
from typing import Annotated
from urllib.parse import parse_qsl

from fastapi import APIRouter, Depends, Request, Response

from emp_ops.api.deps import get_upload_maintenance
from emp_ops.core.errors import UnauthorizedError, ValidationAPIError
from emp_ops.integrations.adapters.genesis import (
    build_notification_echo,
    verify_notification_signature,
)
from emp_ops.services.upload_maintenance import UploadMaintenance

logger = logging.getLogger("emp.gateway")

router = APIRouter()


def _parse_body(body: bytes) -> dict[str, str]:
    """JSON object or form-encoded body."""
    text = body.decode("utf-8", errors="replace")
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        return dict(parse_qsl(text))
    return data if isinstance(data, dict) else {}


@router.post("/emerchantpay")
async def emerchantpay_notification(
    request: Request,
    maintenance: Annotated[UploadMaintenance, Depends(get_upload_maintenance)],
) -> Response:
    data = _parse_body(await request.body())
    unique_id = data.get("unique_id") or data.get("uniqueId")
    notification_status = data.get("status")
    signature = data.get("signature") or ""

    if not unique_id or not notification_status:
        raise ValidationAPIError("Missing fields")
    if not verify_notification_signature(str(unique_id), str(signature)):
        logger.warning(
            "Rejected notification with invalid signature",
            extra={"event_type": "gateway.notification.bad_signature"},
        )
        raise UnauthorizedError("Invalid signature")

    await maintenance.apply_gateway_notification(
        str(unique_id), str(notification_status), data.get("message") or None
    )
    return Response(content=build_notification_echo(str(unique_id)), media_type="application/xml")
