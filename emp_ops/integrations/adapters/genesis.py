"""emerchantpay Genesis gateway adapter.

Talks the Genesis XML API over HTTPS with basic auth:

- ``POST {endpoint}/process/{terminal_token}`` with a ``payment_transaction``
  of type ``sdd_sale``
- ``POST {endpoint}/reconcile/{terminal_token}`` with a ``reconcile`` lookup
  by ``unique_id`` or ``transaction_id``

Responses are parsed with defusedxml.
"""

import hashlib
import hmac
import logging
import re
import time
import xml.etree.ElementTree as ElementTree
from urllib.parse import urlsplit, urlunsplit

import defusedxml.ElementTree as SafeElementTree  # nosec: untrusted gateway XML
import httpx
from defusedxml import DefusedXmlException

from emp_ops.core.config import settings
from emp_ops.core.errors import GatewayError
from emp_ops.core.metrics import gateway_call_duration_seconds, gateway_calls_total
from emp_ops.integrations.interfaces.base import GatewayResponse, PaymentGateway, SddSaleRequest
from emp_ops.services.field_aliases import mask_iban

logger = logging.getLogger("emp.gateway")

MERCHANT_NAME_MAX = 25

_RESPONSE_FIELDS = (
    "status",
    "unique_id",
    "transaction_id",
    "redirect_url",
    "message",
    "technical_message",
    "amount",
    "currency",
    "code",
)

_ACCEPT = "text/xml, application/xml;q=0.9, */*;q=0.8"


def sanitize_endpoint(raw: str) -> str:
    """Force a scheme and drop credentials, query and fragment from the endpoint."""
    value = (raw or "").strip()
    if not re.match(r"^https?://", value, re.IGNORECASE):
        value = "https://" + value.lstrip("/")
    parts = urlsplit(value)
    host = parts.hostname or ""
    if parts.port:
        host = f"{host}:{parts.port}"
    return urlunsplit((parts.scheme, host, parts.path, "", "")).rstrip("/")


def _service_root(base: str) -> str:
    return re.sub(r"/(process|reconcile)(/[^/]*)?$", "", base.rstrip("/"))


def build_process_url(base: str, terminal_token: str) -> str:
    return f"{_service_root(base)}/process/{terminal_token}"


def build_reconcile_url(base: str, terminal_token: str) -> str:
    return f"{_service_root(base)}/reconcile/{terminal_token}"


def _add(parent: ElementTree.Element, tag: str, value: object | None) -> None:
    if value is None or value == "":
        return
    ElementTree.SubElement(parent, tag).text = str(value)


def build_sdd_sale_xml(request: SddSaleRequest, notification_url: str | None = None) -> bytes:
    root = ElementTree.Element("payment_transaction")
    _add(root, "transaction_type", "sdd_sale")
    _add(root, "transaction_id", request.transaction_id)
    _add(root, "notification_url", notification_url)
    if request.return_urls is not None:
        _add(root, "return_success_url", request.return_urls.success)
        _add(root, "return_failure_url", request.return_urls.failure)
        _add(root, "return_pending_url", request.return_urls.pending)
        _add(root, "return_cancel_url", request.return_urls.cancel)
    _add(root, "usage", request.usage)
    _add(root, "remote_ip", request.remote_ip)
    _add(root, "amount", request.amount_minor)
    _add(root, "currency", request.currency)

    billing = ElementTree.SubElement(root, "billing_address")
    _add(billing, "first_name", request.first_name)
    _add(billing, "last_name", request.last_name)
    _add(billing, "address1", request.address1)
    _add(billing, "zip_code", request.zip_code)
    _add(billing, "city", request.city)
    _add(billing, "country", request.country)

    _add(root, "customer_email", request.customer_email)
    _add(root, "iban", request.iban)
    _add(root, "bic", request.bic)
    if request.merchant_name:
        descriptor = ElementTree.SubElement(root, "dynamic_descriptor_params")
        _add(descriptor, "merchant_name", request.merchant_name[:MERCHANT_NAME_MAX])

    return ElementTree.tostring(root, encoding="utf-8", xml_declaration=True)


def build_reconcile_xml(unique_id: str | None = None, transaction_id: str | None = None) -> bytes:
    root = ElementTree.Element("reconcile")
    _add(root, "unique_id", unique_id)
    if not unique_id:
        _add(root, "transaction_id", transaction_id)
    return ElementTree.tostring(root, encoding="utf-8", xml_declaration=True)


def parse_response_xml(text: str) -> dict[str, str]:
    """
    First occurrence of each known response field.

    Raises:
        GatewayError: the body is not well-formed XML
    """
    try:
        root = SafeElementTree.fromstring(text)
    except (SafeElementTree.ParseError, DefusedXmlException) as exc:
        raise GatewayError(f"Malformed gateway response: {exc}") from exc

    fields: dict[str, str] = {}
    for tag in _RESPONSE_FIELDS:
        element = root if root.tag == tag else root.find(f".//{tag}")
        if element is not None and element.text and element.text.strip():
            fields[tag] = element.text.strip()
    return fields


def build_notification_echo(unique_id: str) -> bytes:
    """Acknowledgement the gateway expects for a notification."""
    root = ElementTree.Element("notification_echo")
    _add(root, "unique_id", unique_id)
    return ElementTree.tostring(root, encoding="UTF-8", xml_declaration=True)


def verify_notification_signature(unique_id: str, signature: str, password: str | None = None) -> bool:
    """Notification signature is SHA-1 hex of unique id + API password."""
    password = settings.EMP_GENESIS_PASSWORD if password is None else password
    if not unique_id or not password or not signature:
        return False
    expected = hashlib.sha1(f"{unique_id}{password}".encode("utf-8")).hexdigest()
    return hmac.compare_digest(expected.lower(), signature.strip().lower())


def _minor_units(value: str | None) -> int | None:
    if value and value.isdigit():
        return int(value)
    return None


class GenesisGateway(PaymentGateway):
    """Genesis XML API client."""

    name = "genesis"

    def __init__(
        self,
        endpoint: str | None = None,
        username: str | None = None,
        password: str | None = None,
        terminal_token: str | None = None,
        notification_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        endpoint = endpoint or settings.EMP_GENESIS_ENDPOINT
        username = username or settings.EMP_GENESIS_USERNAME
        password = password or settings.EMP_GENESIS_PASSWORD
        terminal_token = terminal_token or settings.EMP_GENESIS_TERMINAL_TOKEN
        if not (endpoint and username and password and terminal_token):
            raise GatewayError("Genesis credentials are not configured")

        base = sanitize_endpoint(endpoint)
        self.process_url = build_process_url(base, terminal_token)
        self.reconcile_url = build_reconcile_url(base, terminal_token)
        self.notification_url = notification_url or settings.EMP_NOTIFICATION_URL or None
        self._client = httpx.AsyncClient(
            auth=(username, password),
            timeout=timeout or settings.GATEWAY_TIMEOUT_SECONDS,
            headers={"content-type": "text/xml", "accept": _ACCEPT},
            transport=transport,
        )

    async def _post(self, operation: str, url: str, body: bytes) -> httpx.Response:
        start = time.perf_counter()
        try:
            return await self._client.post(url, content=body)
        except httpx.HTTPError as exc:
            gateway_calls_total.labels(operation=operation, outcome="error").inc()
            raise GatewayError(f"Gateway {operation} request failed: {exc}") from exc
        finally:
            gateway_call_duration_seconds.labels(operation=operation).observe(
                time.perf_counter() - start
            )

    async def submit(self, request: SddSaleRequest) -> GatewayResponse:
        logger.info(
            "Submitting sdd_sale %s",
            request.transaction_id,
            extra={
                "event_type": "gateway.submit",
                "transaction_id": request.transaction_id,
                "amount_minor": request.amount_minor,
                "currency": request.currency,
                "iban": mask_iban(request.iban),
            },
        )
        response = await self._post(
            "submit", self.process_url, build_sdd_sale_xml(request, self.notification_url)
        )

        if response.text.strip():
            fields = parse_response_xml(response.text)
        elif response.is_success:
            gateway_calls_total.labels(operation="submit", outcome="error").inc()
            raise GatewayError(f"Empty gateway response (HTTP {response.status_code})")
        else:
            fields = {}

        status = fields.get("status") or ("approved" if response.is_success else "error")
        ok = response.is_success and status.lower() not in ("error", "declined")
        result = GatewayResponse(
            ok=ok,
            status=status,
            unique_id=fields.get("unique_id"),
            transaction_id=fields.get("transaction_id") or request.transaction_id,
            redirect_url=fields.get("redirect_url"),
            message=fields.get("message")
            or (None if response.is_success else f"HTTP {response.status_code}"),
            technical_message=fields.get("technical_message"),
            amount_minor=_minor_units(fields.get("amount")),
            currency=fields.get("currency"),
            raw=fields,
        )
        gateway_calls_total.labels(operation="submit", outcome="ok" if ok else "declined").inc()
        logger.info(
            "sdd_sale %s -> %s",
            request.transaction_id,
            status,
            extra={
                "event_type": "gateway.submit.response",
                "transaction_id": request.transaction_id,
                "http_status": response.status_code,
                "status": status,
                "unique_id": result.unique_id,
                "gateway_message": result.message,
            },
        )
        return result

    async def reconcile(
        self,
        unique_id: str | None = None,
        transaction_id: str | None = None,
    ) -> GatewayResponse:
        if not unique_id and not transaction_id:
            raise ValueError("reconcile requires unique_id or transaction_id")

        try:
            response = await self._post(
                "reconcile",
                self.reconcile_url,
                build_reconcile_xml(unique_id=unique_id, transaction_id=transaction_id),
            )
            fields = parse_response_xml(response.text) if response.text.strip() else {}
        except GatewayError as exc:
            logger.warning(
                "Reconcile failed: %s",
                exc,
                extra={
                    "event_type": "gateway.reconcile.failed",
                    "unique_id": unique_id,
                    "transaction_id": transaction_id,
                },
            )
            return GatewayResponse(ok=False, message=str(exc) or "Reconcile failed")

        status = fields.get("status")
        ok = response.is_success and (status or "").lower() != "error"
        gateway_calls_total.labels(operation="reconcile", outcome="ok" if ok else "declined").inc()
        return GatewayResponse(
            ok=ok,
            status=status,
            unique_id=fields.get("unique_id") or unique_id,
            transaction_id=fields.get("transaction_id") or transaction_id,
            message=fields.get("message")
            or (None if response.is_success else f"HTTP {response.status_code}"),
            technical_message=fields.get("technical_message"),
            amount_minor=_minor_units(fields.get("amount")),
            currency=fields.get("currency"),
            raw=fields,
        )

    async def close(self) -> None:
        await self._client.aclose()
