"""Shared fixtures: a throwaway SQLite database, a seeded catalog and a fake gateway."""

import os
import tempfile
from datetime import time, timedelta

# Settings are read at import time, so they must be in place before the app loads
_DB_DIR = tempfile.mkdtemp(prefix="clinic_booking_tests_")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_DB_DIR, 'test.db')}"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["PAYMONGO_SECRET_KEY"] = "sk_test_123"
os.environ["PAYMONGO_WEBHOOK_SECRET"] = "whsk_test_123"
os.environ["CLINIC_TIMEZONE"] = "UTC"
os.environ["CACHE_ENABLED"] = "false"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["DB_LOG_SLOW_QUERIES"] = "false"
os.environ["ONE_ACTIVE_BOOKING_PER_PATIENT"] = "true"
os.environ.pop("RESEND_API_KEY", None)

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from clinic_booking.auth import create_patient_token  # noqa: E402
from clinic_booking.database import Base, SessionLocal, engine  # noqa: E402
from clinic_booking.domain.payments.gateway import (  # noqa: E402
    CheckoutSession,
    PaymentVerdict,
    SessionStatus,
    get_payment_gateway,
)
from clinic_booking.exceptions import GatewayUnavailable  # noqa: E402
from clinic_booking.main import app  # noqa: E402
from clinic_booking.models import Patient, Service, Slot  # noqa: E402
from clinic_booking.shared.clock import clinic_today  # noqa: E402


class FakeGateway:
    """In-memory stand-in for PayMongoGateway"""

    def __init__(self):
        self.sessions: dict[str, SessionStatus] = {}
        self.created: list[dict] = []
        self.status_calls: list[str] = []
        self.unavailable = False

    async def create_checkout_session(
        self, service_name, amount, currency, success_url, cancel_url, metadata
    ):
        if self.unavailable:
            raise GatewayUnavailable()
        session_id = f"cs_test_{len(self.created) + 1}"
        self.created.append(
            {
                "session_id": session_id,
                "service_name": service_name,
                "amount": amount,
                "currency": currency,
                "success_url": success_url,
                "cancel_url": cancel_url,
                "metadata": metadata,
            }
        )
        checkout_url = f"https://checkout.test/{session_id}"
        self.sessions[session_id] = SessionStatus(
            session_id=session_id, verdict=PaymentVerdict.PENDING, checkout_url=checkout_url
        )
        return CheckoutSession(session_id=session_id, checkout_url=checkout_url)

    async def get_session_status(self, session_id):
        self.status_calls.append(session_id)
        if self.unavailable:
            raise GatewayUnavailable()
        return self.sessions[session_id]

    def mark(self, session_id, verdict, method="GCash", amount=300.0):
        self.sessions[session_id] = SessionStatus(
            session_id=session_id,
            verdict=verdict,
            method=method,
            amount=amount,
            currency="php",
            reference=f"pay_{session_id}",
            checkout_url=f"https://checkout.test/{session_id}",
        )


@pytest.fixture(autouse=True)
def reset_database():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def catalog(db):
    """Three single-seat daily slots plus one service"""
    slots = [
        Slot(label="morning", start_time=time(10, 0), end_time=time(12, 0), capacity=1),
        Slot(label="afternoon1", start_time=time(13, 0), end_time=time(15, 0), capacity=1),
        Slot(label="afternoon2", start_time=time(15, 0), end_time=time(17, 0), capacity=1),
    ]
    service = Service(name="Dental Consultation", price=300.0, currency="PHP")
    db.add_all(slots + [service])
    db.commit()
    for obj in slots + [service]:
        db.refresh(obj)
    return {"slots": slots, "service": service}


@pytest.fixture
def make_patient(db):
    counter = {"n": 0}

    def _make(first_name="Juan", last_name="Dela Cruz"):
        counter["n"] += 1
        patient = Patient(
            email=f"patient{counter['n']}@example.com", first_name=first_name, last_name=last_name
        )
        db.add(patient)
        db.commit()
        db.refresh(patient)
        return patient

    return _make


@pytest.fixture
def patient(make_patient):
    return make_patient()


@pytest.fixture
def booking_date():
    return clinic_today() + timedelta(days=5)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def client(gateway):
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    def _headers(patient) -> dict:
        return {"Authorization": f"Bearer {create_patient_token(patient.id, patient.email)}"}

    return _headers
