"""Tests for the Genesis gateway adapter (wire format and HTTP handling)."""

import hashlib
import xml.etree.ElementTree as ElementTree

import httpx
import pytest

from emp_ops.core.errors import GatewayError
from emp_ops.integrations.adapters.genesis import (
    GenesisGateway,
    build_notification_echo,
    build_process_url,
    build_reconcile_url,
    build_reconcile_xml,
    build_sdd_sale_xml,
    parse_response_xml,
    sanitize_endpoint,
    verify_notification_signature,
)
from emp_ops.integrations.interfaces.base import ReturnUrls, SddSaleRequest

APPROVED_XML = """<?xml version="1.0" encoding="UTF-8"?>
<payment_response>
  <transaction_type>sdd_sale</transaction_type>
  <status>approved</status>
  <unique_id>44177a21403427eb96664a6d7e5d5d48</unique_id>
  <transaction_id>sdd-u1-0</transaction_id>
  <message>Transaction successful</message>
  <amount>1999</amount>
  <currency>EUR</currency>
</payment_response>
"""

DUPLICATE_XML = """<payment_response>
  <status>error</status>
  <code>110</code>
  <message>Transaction failed</message>
  <technical_message>Transaction with this transaction_id already exists</technical_message>
</payment_response>
"""


def sale_request(**overrides) -> SddSaleRequest:
    values = dict(
        transaction_id="sdd-u1-0",
        amount_minor=1999,
        currency="EUR",
        iban="DE89370400440532013000",
        usage="Membership",
        first_name="Max",
        last_name="Mustermann",
        address1="Hauptstrasse 1",
        zip_code="10115",
        city="Berlin",
        country="DE",
        customer_email="max@example.com",
    )
    values.update(overrides)
    return SddSaleRequest(**values)


def make_gateway(handler) -> GenesisGateway:
    return GenesisGateway(
        endpoint="https://staging.gate.example.net",
        username="user",
        password="secret",
        terminal_token="tok123",
        transport=httpx.MockTransport(handler),
    )


class TestEndpoints:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("staging.gate.example.net/", "https://staging.gate.example.net"),
            ("https://user:pw@gate.example.net/base?x=1#frag", "https://gate.example.net/base"),
            ("http://localhost:8080", "http://localhost:8080"),
        ],
    )
    def test_sanitize_endpoint(self, raw, expected):
        assert sanitize_endpoint(raw) == expected

    def test_service_urls_replace_existing_operation(self):
        assert (
            build_process_url("https://gate.example.net/process/old", "tok")
            == "https://gate.example.net/process/tok"
        )
        assert (
            build_reconcile_url("https://gate.example.net/process/old", "tok")
            == "https://gate.example.net/reconcile/tok"
        )

    def test_missing_credentials(self):
        with pytest.raises(GatewayError):
            GenesisGateway(
                endpoint="https://gate.example.net",
                username="user",
                password="secret",
                terminal_token="",
            )


class TestXml:
    def test_sdd_sale_body(self):
        request = sale_request(
            bic="COBADEFFXXX",
            merchant_name="A descriptor that is far too long",
            return_urls=ReturnUrls(
                success="https://s/ok", failure="https://s/fail", pending="https://s/p", cancel="https://s/c"
            ),
        )
        root = ElementTree.fromstring(build_sdd_sale_xml(request, "https://ops.example/notify"))

        assert root.tag == "payment_transaction"
        assert root.findtext("transaction_type") == "sdd_sale"
        assert root.findtext("transaction_id") == "sdd-u1-0"
        assert root.findtext("notification_url") == "https://ops.example/notify"
        assert root.findtext("return_success_url") == "https://s/ok"
        assert root.findtext("amount") == "1999"
        assert root.findtext("iban") == "DE89370400440532013000"
        assert root.findtext("bic") == "COBADEFFXXX"
        assert root.findtext("billing_address/country") == "DE"
        assert root.findtext("dynamic_descriptor_params/merchant_name") == "A descriptor that is far "

    def test_optional_elements_omitted(self):
        root = ElementTree.fromstring(build_sdd_sale_xml(sale_request(customer_email=None)))
        assert root.find("notification_url") is None
        assert root.find("customer_email") is None
        assert root.find("dynamic_descriptor_params") is None

    def test_reconcile_body_prefers_unique_id(self):
        root = ElementTree.fromstring(build_reconcile_xml(unique_id="abc", transaction_id="tx"))
        assert root.findtext("unique_id") == "abc"
        assert root.find("transaction_id") is None

        root = ElementTree.fromstring(build_reconcile_xml(transaction_id="tx"))
        assert root.findtext("transaction_id") == "tx"

    def test_parse_response(self):
        fields = parse_response_xml(APPROVED_XML)
        assert fields["status"] == "approved"
        assert fields["unique_id"] == "44177a21403427eb96664a6d7e5d5d48"
        assert fields["amount"] == "1999"

    @pytest.mark.parametrize(
        "body",
        [
            "<payment_response><status>approved",
            '<!DOCTYPE r [<!ENTITY a "boom">]><r><status>&a;</status></r>',
        ],
    )
    def test_parse_rejects_malformed_and_entities(self, body):
        with pytest.raises(GatewayError):
            parse_response_xml(body)


class TestNotifications:
    def test_signature(self):
        signature = hashlib.sha1(b"uid-1secret").hexdigest()
        assert verify_notification_signature("uid-1", signature, password="secret")
        assert verify_notification_signature("uid-1", signature.upper(), password="secret")
        assert not verify_notification_signature("uid-1", signature, password="other")
        assert not verify_notification_signature("uid-1", "", password="secret")
        assert not verify_notification_signature("uid-1", signature, password="")

    def test_echo(self):
        root = ElementTree.fromstring(build_notification_echo("uid-1"))
        assert root.tag == "notification_echo"
        assert root.findtext("unique_id") == "uid-1"


class TestGenesisGateway:
    """HTTP behavior against a mocked transport."""

    @pytest.mark.asyncio
    async def test_submit_approved(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers.get("authorization")
            seen["body"] = request.content
            return httpx.Response(200, text=APPROVED_XML)

        gateway = make_gateway(handler)
        try:
            response = await gateway.submit(sale_request())
        finally:
            await gateway.close()

        assert seen["url"] == "https://staging.gate.example.net/process/tok123"
        assert seen["auth"].startswith("Basic ")
        assert b"<transaction_type>sdd_sale</transaction_type>" in seen["body"]
        assert response.ok
        assert response.status == "approved"
        assert response.unique_id == "44177a21403427eb96664a6d7e5d5d48"
        assert response.amount_minor == 1999

    @pytest.mark.asyncio
    async def test_submit_gateway_error_is_not_ok(self):
        gateway = make_gateway(lambda request: httpx.Response(200, text=DUPLICATE_XML))
        try:
            response = await gateway.submit(sale_request())
        finally:
            await gateway.close()

        assert not response.ok
        assert response.status == "error"
        assert "already exists" in response.technical_message

    @pytest.mark.asyncio
    async def test_submit_http_failure_without_body(self):
        gateway = make_gateway(lambda request: httpx.Response(503, text=""))
        try:
            response = await gateway.submit(sale_request())
        finally:
            await gateway.close()

        assert not response.ok
        assert response.status == "error"
        assert response.message == "HTTP 503"

    @pytest.mark.asyncio
    async def test_submit_empty_success_body_raises(self):
        gateway = make_gateway(lambda request: httpx.Response(200, text="  "))
        try:
            with pytest.raises(GatewayError):
                await gateway.submit(sale_request())
        finally:
            await gateway.close()

    @pytest.mark.asyncio
    async def test_submit_transport_failure_raises(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        gateway = make_gateway(handler)
        try:
            with pytest.raises(GatewayError):
                await gateway.submit(sale_request())
        finally:
            await gateway.close()

    @pytest.mark.asyncio
    async def test_reconcile_never_raises(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        gateway = make_gateway(handler)
        try:
            response = await gateway.reconcile(unique_id="abc")
        finally:
            await gateway.close()

        assert not response.ok
        assert "timed out" in response.message

    @pytest.mark.asyncio
    async def test_reconcile_found(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/reconcile/tok123"
            return httpx.Response(200, text=APPROVED_XML.replace("approved", "pending_async"))

        gateway = make_gateway(handler)
        try:
            response = await gateway.reconcile(transaction_id="sdd-u1-0")
        finally:
            await gateway.close()

        assert response.ok
        assert response.status == "pending_async"
        assert response.transaction_id == "sdd-u1-0"
