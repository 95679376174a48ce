"""Integration interfaces."""

from emp_ops.integrations.interfaces.base import (
    GatewayResponse,
    PaymentGateway,
    ReturnUrls,
    SddSaleRequest,
)

__all__ = [
    "GatewayResponse",
    "PaymentGateway",
    "ReturnUrls",
    "SddSaleRequest",
]
