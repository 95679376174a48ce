"""Mock gateway for development and testing.

Every submission succeeds with a configurable status unless a script says
otherwise. Scripts are queued per base transaction id, so a row's retries
(``<base>-r1``, ``<base>-r2``...) consume the same queue in order.
"""

import asyncio
import hashlib
from collections import defaultdict, deque
from collections.abc import Callable
from dataclasses import dataclass

from emp_ops.core.errors import GatewayError
from emp_ops.integrations.interfaces.base import GatewayResponse, PaymentGateway, SddSaleRequest
from emp_ops.services.sdd_mapper import strip_retry_suffix

Outcome = GatewayResponse | GatewayError | Callable[[SddSaleRequest], GatewayResponse]

DUPLICATE_MESSAGE = "Transaction with this transaction_id already exists"


def duplicate_error() -> GatewayResponse:
    return GatewayResponse(
        ok=False,
        status="error",
        message="Duplicate transaction",
        technical_message=DUPLICATE_MESSAGE,
    )


def declined(message: str = "Transaction declined") -> GatewayResponse:
    return GatewayResponse(ok=False, status="declined", message=message)


def not_found() -> GatewayResponse:
    return GatewayResponse(ok=False, status="error", message="Transaction not found")


@dataclass
class _Recorded:
    transaction_id: str
    status: str


class MockGateway(PaymentGateway):
    """
    In-memory gateway with scripted outcomes.

    Tracks every call, the number of concurrent submissions in flight and
    the maximum ever reached.
    """

    name = "mock"

    def __init__(self, latency: float = 0.0, default_status: str = "approved"):
        self.latency = latency
        self.default_status = default_status
        self.submissions: list[SddSaleRequest] = []
        self.reconcile_calls: list[tuple[str | None, str | None]] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self._scripts: dict[str, deque[Outcome]] = defaultdict(deque)
        self._reconcile_results: dict[str, GatewayResponse] = {}
        self._by_unique_id: dict[str, _Recorded] = {}
        self._by_transaction_id: dict[str, str] = {}

    def script(self, base_transaction_id: str, *outcomes: Outcome) -> None:
        """Queue outcomes for the next submissions of a row."""
        self._scripts[base_transaction_id].extend(outcomes)

    def set_reconcile_result(self, identifier: str, response: GatewayResponse) -> None:
        """Fix the reconcile answer for a unique id or transaction id."""
        self._reconcile_results[identifier] = response

    def submitted_ids(self) -> list[str]:
        return [r.transaction_id for r in self.submissions]

    @staticmethod
    def unique_id_for(transaction_id: str) -> str:
        return hashlib.sha1(transaction_id.encode("utf-8")).hexdigest()[:32]

    def _default(self, request: SddSaleRequest) -> GatewayResponse:
        return GatewayResponse(
            ok=True,
            status=self.default_status,
            unique_id=self.unique_id_for(request.transaction_id),
            transaction_id=request.transaction_id,
            message="Transaction successful",
            amount_minor=request.amount_minor,
            currency=request.currency,
        )

    async def submit(self, request: SddSaleRequest) -> GatewayResponse:
        self.submissions.append(request)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.latency:
                await asyncio.sleep(self.latency)
            else:
                await asyncio.sleep(0)

            queue = self._scripts.get(strip_retry_suffix(request.transaction_id))
            outcome: Outcome = queue.popleft() if queue else self._default
            if isinstance(outcome, GatewayError):
                raise outcome
            response = outcome(request) if callable(outcome) else outcome
        finally:
            self.in_flight -= 1

        if response.ok and response.unique_id:
            self._by_unique_id[response.unique_id] = _Recorded(
                request.transaction_id, response.status or self.default_status
            )
            self._by_transaction_id[request.transaction_id] = response.unique_id
        return response

    async def reconcile(
        self,
        unique_id: str | None = None,
        transaction_id: str | None = None,
    ) -> GatewayResponse:
        if not unique_id and not transaction_id:
            raise ValueError("reconcile requires unique_id or transaction_id")
        self.reconcile_calls.append((unique_id, transaction_id))
        await asyncio.sleep(0)

        for identifier in (unique_id, transaction_id):
            if identifier and identifier in self._reconcile_results:
                return self._reconcile_results[identifier]

        uid = unique_id or self._by_transaction_id.get(transaction_id or "")
        recorded = self._by_unique_id.get(uid or "")
        if recorded is None:
            return not_found()
        return GatewayResponse(
            ok=True,
            status=recorded.status,
            unique_id=uid,
            transaction_id=recorded.transaction_id,
        )
