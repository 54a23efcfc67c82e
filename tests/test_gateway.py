"""Tests for the PayMongo adapter against a mocked HTTP transport."""

import asyncio
import base64
import json

import httpx
import pytest

from clinic_booking.domain.payments.gateway import (
    PaymentVerdict,
    PayMongoGateway,
    detect_payment_method,
    method_label,
    session_status_from_resource,
    status_from_webhook,
    to_minor_units,
    verdict_for_event,
)
from clinic_booking.exceptions import GatewayUnavailable


def session_resource(payment_status=None, method="gcash", session_status="active", intent=None):
    attributes = {"status": session_status, "payment_method_types": ["gcash", "card"]}
    if payment_status:
        attributes["payments"] = [
            {
                "id": "pay_123",
                "attributes": {
                    "status": payment_status,
                    "amount": 30000,
                    "currency": "PHP",
                    "source": {"type": method},
                },
            }
        ]
    if intent:
        attributes["payment_intent"] = {"attributes": {"status": intent}}
    return {"id": "cs_123", "type": "checkout_session", "attributes": attributes}


def gateway_with(handler, secret_key="sk_test_123"):
    return PayMongoGateway(
        secret_key=secret_key,
        base_url="https://api.paymongo.test/v1",
        transport=httpx.MockTransport(handler),
    )


class TestVerdict:
    def test_paid_payment(self):
        status = session_status_from_resource(session_resource("paid"))
        assert status.verdict == PaymentVerdict.PAID
        assert status.amount == 300.0
        assert status.method == "GCash"
        assert status.reference == "pay_123"

    def test_succeeded_intent_counts_as_paid(self):
        status = session_status_from_resource(session_resource(intent="succeeded"))
        assert status.verdict == PaymentVerdict.PAID

    def test_failed_payment(self):
        assert session_status_from_resource(session_resource("failed")).verdict == (
            PaymentVerdict.FAILED
        )

    def test_expired_session(self):
        status = session_status_from_resource(session_resource(session_status="expired"))
        assert status.verdict == PaymentVerdict.FAILED

    def test_unpaid_session_is_pending(self):
        status = session_status_from_resource(session_resource())
        assert status.verdict == PaymentVerdict.PENDING
        assert status.amount is None

    def test_open_session_exposes_checkout_page(self):
        resource = session_resource()
        resource["attributes"]["checkout_url"] = "https://checkout.paymongo.test/cs_123"
        status = session_status_from_resource(resource)
        assert status.checkout_url == "https://checkout.paymongo.test/cs_123"

    def test_event_types(self):
        assert verdict_for_event("checkout_session.payment.paid") == PaymentVerdict.PAID
        assert verdict_for_event("payment.failed") == PaymentVerdict.FAILED
        assert verdict_for_event("source.chargeable") is None

    def test_webhook_payment_resource(self):
        resource = {
            "id": "pay_789",
            "type": "payment",
            "attributes": {"amount": 30000, "currency": "PHP", "source": {"type": "paymaya"}},
        }
        status = status_from_webhook(resource, PaymentVerdict.PAID)
        assert status.reference == "pay_789"
        assert status.method == "Maya"
        assert status.amount == 300.0


class TestHelpers:
    def test_minor_units(self):
        assert to_minor_units(300.0) == 30000
        assert to_minor_units(199.99) == 19999

    def test_method_labels(self):
        assert method_label("grab_pay") == "GrabPay"
        assert method_label(None) == "Online Payment"
        assert method_label("billease") == "billease"

    def test_method_falls_back_to_requested_types(self):
        assert detect_payment_method(session_resource()) == "GCash"


class TestPayMongoGateway:
    def test_create_checkout_session(self):
        captured = {}

        def handler(request):
            captured["method"] = request.method
            captured["path"] = request.url.path
            captured["auth"] = request.headers["authorization"]
            captured["body"] = json.loads(request.content)
            return httpx.Response(
                200,
                json={
                    "data": {
                        "id": "cs_new",
                        "attributes": {"checkout_url": "https://checkout.paymongo.test/cs_new"},
                    }
                },
            )

        session = asyncio.run(
            gateway_with(handler).create_checkout_session(
                service_name="Dental Consultation",
                amount=300.0,
                currency="PHP",
                success_url="https://api.test/payments/success?appointment_id=abc",
                cancel_url="https://api.test/payments/cancelled?appointment_id=abc",
                metadata={"appointment_id": 7, "public_id": "abc"},
            )
        )

        assert session.session_id == "cs_new"
        assert session.checkout_url == "https://checkout.paymongo.test/cs_new"
        assert captured["method"] == "POST"
        assert captured["path"] == "/v1/checkout_sessions"
        expected_auth = base64.b64encode(b"sk_test_123:").decode()
        assert captured["auth"] == f"Basic {expected_auth}"
        attributes = captured["body"]["data"]["attributes"]
        assert attributes["line_items"][0]["amount"] == 30000
        assert attributes["metadata"] == {"appointment_id": "7", "public_id": "abc"}

    def test_get_session_status(self):
        def handler(request):
            assert request.url.path == "/v1/checkout_sessions/cs_123"
            return httpx.Response(200, json={"data": session_resource("paid")})

        status = asyncio.run(gateway_with(handler).get_session_status("cs_123"))
        assert status.verdict == PaymentVerdict.PAID

    def test_api_error_is_unavailable(self):
        def handler(request):
            return httpx.Response(400, json={"errors": [{"detail": "bad request"}]})

        with pytest.raises(GatewayUnavailable):
            asyncio.run(gateway_with(handler).get_session_status("cs_123"))

    def test_network_error_is_unavailable(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(GatewayUnavailable):
            asyncio.run(gateway_with(handler).get_session_status("cs_123"))

    def test_missing_checkout_url_is_unavailable(self):
        def handler(request):
            return httpx.Response(200, json={"data": {"id": "cs_new", "attributes": {}}})

        with pytest.raises(GatewayUnavailable):
            asyncio.run(
                gateway_with(handler).create_checkout_session(
                    "Dental Consultation", 300.0, "PHP", "https://s", "https://c", {}
                )
            )

    def test_missing_secret_key(self):
        def handler(request):
            raise AssertionError("no request expected")

        with pytest.raises(GatewayUnavailable):
            asyncio.run(gateway_with(handler, secret_key="").get_session_status("cs_123"))
