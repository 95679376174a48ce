"""Base interface for payment gateway adapters.

The batch submitter and the reconciler only depend on this contract; the
wire format (Genesis XML over HTTPS) lives in the concrete adapter.
"""

from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field, replace
from typing import Any

from emp_ops.services.field_aliases import mask_iban


@dataclass(frozen=True)
class ReturnUrls:
    """Customer redirect targets after the hosted flow."""

    success: str
    failure: str
    pending: str
    cancel: str


@dataclass(frozen=True)
class SddSaleRequest:
    """A SEPA Direct Debit sale, ready to send."""

    transaction_id: str
    amount_minor: int
    currency: str
    iban: str
    usage: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    address1: str | None = None
    zip_code: str | None = None
    city: str | None = None
    country: str | None = None
    customer_email: str | None = None
    bic: str | None = None
    remote_ip: str | None = None
    merchant_name: str | None = None  # dynamic descriptor, max 25 chars
    return_urls: ReturnUrls | None = None

    def with_transaction_id(self, transaction_id: str) -> "SddSaleRequest":
        return replace(self, transaction_id=transaction_id)

    def masked(self) -> dict[str, Any]:
        """Request echo safe to persist and log."""
        echo = asdict(self)
        echo["iban"] = mask_iban(self.iban)
        return {key: value for key, value in echo.items() if value is not None}


@dataclass
class GatewayResponse:
    """Outcome of a submit or reconcile call.

    ``ok=False`` is an expected outcome (declined, not found, transport
    failure on reconcile) and carries the reason in ``message``.
    """

    ok: bool
    status: str | None = None
    unique_id: str | None = None
    transaction_id: str | None = None
    redirect_url: str | None = None
    message: str | None = None
    technical_message: str | None = None
    amount_minor: int | None = None
    currency: str | None = None
    raw: dict[str, Any] = field(default_factory=dict, repr=False)


class PaymentGateway(ABC):
    """Interface every gateway adapter implements."""

    name: str = "gateway"

    @abstractmethod
    async def submit(self, request: SddSaleRequest) -> GatewayResponse:
        """
        Submit one SDD sale.

        Returns:
            GatewayResponse (ok=False for gateway-side rejections)

        Raises:
            GatewayError: transport failure or unusable response
        """
        pass

    @abstractmethod
    async def reconcile(
        self,
        unique_id: str | None = None,
        transaction_id: str | None = None,
    ) -> GatewayResponse:
        """
        Look up the gateway's record of a transaction.

        Exactly one identifier is needed. Never raises for "not found" or
        transport problems: those come back as ``ok=False``.
        """
        pass

    async def close(self) -> None:
        """Release network resources."""
        return None
