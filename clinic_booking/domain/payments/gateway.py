"""PayMongo checkout-session adapter.

Only two calls are needed by the booking engine: open a hosted checkout
session for an appointment and read a session's payment verdict back.
Every transport or API failure surfaces as ``GatewayUnavailable`` and is
never retried here.
"""

import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx

from ...config import (
    CLINIC_NAME,
    PAYMONGO_API_URL,
    PAYMONGO_PAYMENT_METHODS,
    PAYMONGO_SECRET_KEY,
    PAYMONGO_TIMEOUT_SECONDS,
)
from ...exceptions import GatewayUnavailable

logger = logging.getLogger(__name__)

METHOD_LABELS = {
    "gcash": "GCash",
    "grab_pay": "GrabPay",
    "paymaya": "Maya",
    "card": "Credit/Debit Card",
}
DEFAULT_METHOD_LABEL = "Online Payment"


class PaymentVerdict(str, enum.Enum):
    PAID = "paid"
    FAILED = "failed"
    PENDING = "pending"


@dataclass
class CheckoutSession:
    session_id: str
    checkout_url: str


@dataclass
class SessionStatus:
    session_id: str
    verdict: PaymentVerdict
    method: str = DEFAULT_METHOD_LABEL
    amount: Optional[float] = None  # Major units
    currency: Optional[str] = None
    reference: Optional[str] = None
    checkout_url: Optional[str] = None  # Hosted page, while the session is open
    raw: dict = field(default_factory=dict, repr=False)


def method_label(method_type: Optional[str]) -> str:
    """Human label for a PayMongo payment method type"""
    if not method_type:
        return DEFAULT_METHOD_LABEL
    return METHOD_LABELS.get(method_type, method_type)


def to_minor_units(amount: float) -> int:
    """PHP 300.00 -> 30000 centavos"""
    return int(round(amount * 100))


def _first_payment(attributes: dict) -> dict:
    payments = attributes.get("payments") or []
    return payments[0] if payments else {}


def detect_payment_method(resource: dict) -> str:
    """Payment method label from a checkout session or payment resource"""
    attributes = (resource or {}).get("attributes", {})
    payment = _first_payment(attributes)
    if payment:
        method_type = (
            payment.get("attributes", {})
            .get("payment_method", {})
            .get("attributes", {})
            .get("type")
        )
        if not method_type:
            method_type = payment.get("attributes", {}).get("source", {}).get("type")
        return method_label(method_type)
    # A bare payment resource carries its own source
    source_type = attributes.get("source", {}).get("type")
    if source_type:
        return method_label(source_type)
    requested = attributes.get("payment_method_types") or []
    return method_label(requested[0] if requested else None)


def session_status_from_resource(resource: dict) -> SessionStatus:
    """Interpret a checkout_sessions resource (API response or webhook payload)"""
    attributes = resource.get("attributes", {})
    payment = _first_payment(attributes)
    payment_attrs = payment.get("attributes", {})
    payment_status = payment_attrs.get("status")
    intent_status = (
        (attributes.get("payment_intent") or {}).get("attributes", {}).get("status")
    )

    if payment_status == "paid" or intent_status == "succeeded":
        verdict = PaymentVerdict.PAID
    elif payment_status == "failed" or attributes.get("status") == "expired":
        verdict = PaymentVerdict.FAILED
    else:
        verdict = PaymentVerdict.PENDING

    amount = payment_attrs.get("amount")
    return SessionStatus(
        session_id=resource.get("id", ""),
        verdict=verdict,
        method=detect_payment_method(resource),
        amount=amount / 100 if amount is not None else None,
        currency=payment_attrs.get("currency"),
        reference=payment.get("id") or resource.get("id"),
        checkout_url=attributes.get("checkout_url"),
        raw=resource,
    )


PAID_EVENTS = frozenset({"checkout_session.payment.paid", "payment.paid"})
FAILED_EVENTS = frozenset({"checkout_session.payment.failed", "payment.failed"})


def verdict_for_event(event_type: Optional[str]) -> Optional[PaymentVerdict]:
    """Verdict carried by a webhook event type; None for events we do not act on"""
    if event_type in PAID_EVENTS:
        return PaymentVerdict.PAID
    if event_type in FAILED_EVENTS:
        return PaymentVerdict.FAILED
    return None


def status_from_webhook(resource: dict, verdict: PaymentVerdict) -> SessionStatus:
    """SessionStatus for the resource embedded in a verified webhook event"""
    if resource.get("type") == "payment":
        attributes = resource.get("attributes", {})
        amount = attributes.get("amount")
        return SessionStatus(
            session_id="",
            verdict=verdict,
            method=detect_payment_method(resource),
            amount=amount / 100 if amount is not None else None,
            currency=attributes.get("currency"),
            reference=resource.get("id"),
            raw=resource,
        )
    status = session_status_from_resource(resource)
    status.verdict = verdict
    return status


class PayMongoGateway:
    """Thin async client for the PayMongo checkout-sessions API"""

    def __init__(
        self,
        secret_key: Optional[str] = None,
        base_url: str = PAYMONGO_API_URL,
        timeout: float = PAYMONGO_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.secret_key = secret_key if secret_key is not None else PAYMONGO_SECRET_KEY
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            auth=(self.secret_key or "", ""),
            timeout=self.timeout,
            transport=self.transport,
            headers={"Accept": "application/json", "Content-Type": "application/json"},
        )

    async def _request(self, method: str, path: str, **kwargs) -> dict[str, Any]:
        if not self.secret_key:
            logger.error("❌ PAYMONGO_SECRET_KEY is not configured")
            raise GatewayUnavailable("Payment provider is not configured.")

        try:
            async with self._client() as client:
                response = await client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"❌ PayMongo {method} {path} failed: {e}")
            raise GatewayUnavailable() from e

        if response.status_code >= 400:
            try:
                errors = response.json().get("errors") or [{}]
                detail = errors[0].get("detail", "Unknown API error")
            except ValueError:
                detail = response.text[:200]
            logger.error(f"❌ PayMongo {method} {path} returned {response.status_code}: {detail}")
            raise GatewayUnavailable()

        try:
            return response.json()
        except ValueError as e:
            logger.error(f"❌ PayMongo {method} {path} returned invalid JSON")
            raise GatewayUnavailable() from e

    async def create_checkout_session(
        self,
        service_name: str,
        amount: float,
        currency: str,
        success_url: str,
        cancel_url: str,
        metadata: dict,
    ) -> CheckoutSession:
        payload = {
            "data": {
                "attributes": {
                    "line_items": [
                        {
                            "name": f"{service_name} - {CLINIC_NAME}",
                            "amount": to_minor_units(amount),
                            "currency": currency,
                            "quantity": 1,
                        }
                    ],
                    "payment_method_types": PAYMONGO_PAYMENT_METHODS,
                    "description": f"Service fee for {service_name}",
                    "success_url": success_url,
                    "cancel_url": cancel_url,
                    "metadata": {k: str(v) for k, v in metadata.items()},
                    "statement_descriptor": CLINIC_NAME[:22],
                }
            }
        }

        data = await self._request("POST", "/checkout_sessions", json=payload)
        session = data.get("data") or {}
        checkout_url = session.get("attributes", {}).get("checkout_url")
        if not session.get("id") or not checkout_url:
            logger.error("❌ PayMongo response missing checkout_url")
            raise GatewayUnavailable()

        logger.info(
            f"✅ Checkout session {session['id']} created for appointment "
            f"{metadata.get('appointment_id')}"
        )
        return CheckoutSession(session_id=session["id"], checkout_url=checkout_url)

    async def get_session_status(self, session_id: str) -> SessionStatus:
        data = await self._request("GET", f"/checkout_sessions/{session_id}")
        status = session_status_from_resource(data.get("data") or {})
        logger.info(f"🔍 Checkout session {session_id} verdict: {status.verdict.value}")
        return status


def get_payment_gateway() -> PayMongoGateway:
    """FastAPI dependency; overridden in tests"""
    return PayMongoGateway()
