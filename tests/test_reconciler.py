"""Tests for payment confirmation through redirects and webhooks."""

import asyncio
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest

from clinic_booking.database import SessionLocal
from clinic_booking.domain.booking.repository import ReservationLedger
from clinic_booking.domain.booking.service import AppointmentService
from clinic_booking.domain.payments.checkout import open_checkout
from clinic_booking.domain.payments.gateway import PaymentVerdict, SessionStatus
from clinic_booking.domain.payments.reconciler import (
    ConfirmationChannel,
    ConfirmationReconciler,
    ReconcileOutcome,
)
from clinic_booking.exceptions import GatewayUnavailable, NotFound, PaymentInProgress
from clinic_booking.models import Payment
from clinic_booking.shared.clock import clinic_now


def paid_webhook(session_id="cs_test_1"):
    return SessionStatus(
        session_id=session_id,
        verdict=PaymentVerdict.PAID,
        method="GCash",
        amount=300.0,
        currency="php",
        reference="pay_webhook_1",
    )


@pytest.fixture
def pending(db, catalog, patient, booking_date, gateway):
    """A pending appointment whose checkout session has been opened"""
    service = AppointmentService(db)
    appointment = service.attempt_reserve(
        patient.id, catalog["service"].id, catalog["slots"][0].id, booking_date
    )
    asyncio.run(open_checkout(service, gateway, appointment))
    return appointment


@pytest.fixture
def reconciler(db, gateway):
    return ConfirmationReconciler(db, gateway)


def reconcile(reconciler, ref, channel, verdict=None, now=None):
    return asyncio.run(reconciler.reconcile(ref, channel, verdict=verdict, now=now))


def payment_count(db, appointment_id):
    return db.query(Payment).filter(Payment.appointment_id == appointment_id).count()


class TestRedirectConfirmation:
    def test_paid_session_confirms(self, db, pending, reconciler, gateway):
        gateway.mark(pending.payment_session_id, PaymentVerdict.PAID)

        result = reconcile(reconciler, pending.public_id, ConfirmationChannel.REDIRECT)

        assert result.outcome == ReconcileOutcome.CONFIRMED
        assert result.appointment.status == "confirmed"
        assert result.payment.amount == 300.0
        assert result.payment.currency == "PHP"
        assert result.payment.payment_method == "GCash"
        assert result.payment.transaction_reference == "pay_cs_test_1"

    def test_verdict_comes_from_stored_session(self, pending, reconciler, gateway):
        gateway.mark(pending.payment_session_id, PaymentVerdict.PAID)
        reconcile(reconciler, pending.public_id, ConfirmationChannel.REDIRECT)
        assert gateway.status_calls == [pending.payment_session_id]

    def test_pending_session_reports_processing(self, pending, reconciler):
        result = reconcile(reconciler, pending.public_id, ConfirmationChannel.REDIRECT)
        assert result.outcome == ReconcileOutcome.PROCESSING
        assert result.appointment.status == "pending"

    def test_failed_session_releases_slot(self, pending, reconciler, gateway):
        gateway.mark(pending.payment_session_id, PaymentVerdict.FAILED)
        result = reconcile(reconciler, pending.public_id, ConfirmationChannel.REDIRECT)
        assert result.outcome == ReconcileOutcome.RELEASED
        assert result.appointment.status == "cancelled"

    def test_cancel_redirect_releases_unpaid(self, pending, reconciler):
        result = reconcile(reconciler, pending.public_id, ConfirmationChannel.CANCEL_REDIRECT)
        assert result.outcome == ReconcileOutcome.RELEASED
        assert result.appointment.status == "cancelled"

    def test_cancel_redirect_still_confirms_paid_session(self, pending, reconciler, gateway):
        gateway.mark(pending.payment_session_id, PaymentVerdict.PAID)
        result = reconcile(reconciler, pending.public_id, ConfirmationChannel.CANCEL_REDIRECT)
        assert result.outcome == ReconcileOutcome.CONFIRMED

    def test_without_checkout_session_nothing_is_paid(
        self, db, catalog, patient, booking_date, reconciler, gateway
    ):
        appointment = AppointmentService(db).attempt_reserve(
            patient.id, catalog["service"].id, catalog["slots"][0].id, booking_date
        )
        result = reconcile(reconciler, appointment.public_id, ConfirmationChannel.REDIRECT)
        assert result.outcome == ReconcileOutcome.PROCESSING
        assert gateway.status_calls == []

    def test_gateway_outage_changes_nothing(self, db, pending, reconciler, gateway):
        gateway.unavailable = True
        with pytest.raises(GatewayUnavailable):
            reconcile(reconciler, pending.public_id, ConfirmationChannel.REDIRECT)
        db.refresh(pending)
        assert pending.status == "pending"

    def test_unknown_appointment(self, reconciler):
        with pytest.raises(NotFound):
            reconcile(reconciler, "no-such-public-id", ConfirmationChannel.REDIRECT)


class TestWebhookConfirmation:
    def test_verified_verdict_confirms(self, db, pending, reconciler, gateway):
        result = reconcile(
            reconciler, pending.id, ConfirmationChannel.WEBHOOK, verdict=paid_webhook()
        )
        assert result.outcome == ReconcileOutcome.CONFIRMED
        assert result.payment.transaction_reference == "pay_webhook_1"
        assert gateway.status_calls == []

    def test_webhook_requires_verdict(self, pending, reconciler):
        with pytest.raises(ValueError):
            reconcile(reconciler, pending.id, ConfirmationChannel.WEBHOOK)

    def test_failed_webhook_releases(self, pending, reconciler):
        failed = SessionStatus(session_id="cs_test_1", verdict=PaymentVerdict.FAILED)
        result = reconcile(reconciler, pending.id, ConfirmationChannel.WEBHOOK, verdict=failed)
        assert result.outcome == ReconcileOutcome.RELEASED


class TestIdempotence:
    def test_repeated_webhook_records_one_payment(self, db, pending, reconciler):
        first = reconcile(reconciler, pending.id, ConfirmationChannel.WEBHOOK, paid_webhook())
        second = reconcile(reconciler, pending.id, ConfirmationChannel.WEBHOOK, paid_webhook())

        assert first.outcome == ReconcileOutcome.CONFIRMED
        assert second.outcome == ReconcileOutcome.ALREADY_PROCESSED
        assert payment_count(db, pending.id) == 1

    def test_redirect_then_webhook(self, db, pending, reconciler, gateway):
        gateway.mark(pending.payment_session_id, PaymentVerdict.PAID)
        first = reconcile(reconciler, pending.public_id, ConfirmationChannel.REDIRECT)
        second = reconcile(reconciler, pending.id, ConfirmationChannel.WEBHOOK, paid_webhook())

        assert first.outcome == ReconcileOutcome.CONFIRMED
        assert second.outcome == ReconcileOutcome.ALREADY_PROCESSED
        assert payment_count(db, pending.id) == 1

    def test_webhook_then_redirect(self, db, pending, reconciler, gateway):
        gateway.mark(pending.payment_session_id, PaymentVerdict.PAID)
        first = reconcile(reconciler, pending.id, ConfirmationChannel.WEBHOOK, paid_webhook())
        second = reconcile(reconciler, pending.public_id, ConfirmationChannel.REDIRECT)

        assert first.outcome == ReconcileOutcome.CONFIRMED
        assert second.outcome == ReconcileOutcome.ALREADY_PROCESSED
        assert second.payment.id == first.payment.id
        assert payment_count(db, pending.id) == 1

    def test_concurrent_channels_confirm_once(self, db, pending):
        appointment_id = pending.id

        def deliver(_):
            session = SessionLocal()
            try:
                reconciler = ConfirmationReconciler(session, gateway=None)
                result = asyncio.run(
                    reconciler.reconcile(
                        appointment_id, ConfirmationChannel.WEBHOOK, verdict=paid_webhook()
                    )
                )
                return result.outcome
            finally:
                session.close()

        with ThreadPoolExecutor(max_workers=4) as pool:
            outcomes = list(pool.map(deliver, range(4)))

        assert outcomes.count(ReconcileOutcome.CONFIRMED) == 1
        assert outcomes.count(ReconcileOutcome.ALREADY_PROCESSED) == 3
        assert payment_count(db, appointment_id) == 1


class TestExpiryRace:
    def test_expired_first_is_not_confirmed(self, db, catalog, patient, booking_date, gateway):
        service = AppointmentService(db)
        created = clinic_now() - timedelta(minutes=30)
        appointment = service.attempt_reserve(
            patient.id, catalog["service"].id, catalog["slots"][0].id, booking_date, created
        )
        assert service.expire(appointment.id, created + timedelta(minutes=16))

        result = reconcile(
            ConfirmationReconciler(db, gateway),
            appointment.id,
            ConfirmationChannel.WEBHOOK,
            paid_webhook(),
        )

        assert result.outcome == ReconcileOutcome.NOT_APPLICABLE
        assert result.appointment.status == "failed_timeout"
        assert payment_count(db, appointment.id) == 0

    def test_confirmed_first_is_not_expired(self, db, pending, reconciler):
        reconcile(reconciler, pending.id, ConfirmationChannel.WEBHOOK, paid_webhook())

        service = AppointmentService(db)
        assert service.expire(pending.id, clinic_now() + timedelta(hours=1)) is False
        db.refresh(pending)
        assert pending.status == "confirmed"
        assert ReservationLedger.get_payment(db, pending.id) is not None


class TestScenarios:
    def test_paid_booking_survives_sweep_and_slot_reopens_after_cancel(
        self, db, catalog, make_patient, booking_date, gateway
    ):
        from clinic_booking.exceptions import SlotConflict
        from clinic_booking.services.expiry_sweeper import sweep_expired_pending

        service = AppointmentService(db)
        slot_id = catalog["slots"][0].id
        patient_a, patient_b = make_patient(), make_patient()
        start = clinic_now()

        a = service.attempt_reserve(
            patient_a.id, catalog["service"].id, slot_id, booking_date, start
        )
        with pytest.raises(SlotConflict):
            service.attempt_reserve(patient_b.id, catalog["service"].id, slot_id, booking_date)

        asyncio.run(open_checkout(service, gateway, a))
        gateway.mark(a.payment_session_id, PaymentVerdict.PAID)
        result = reconcile(
            ConfirmationReconciler(db, gateway), a.public_id, ConfirmationChannel.REDIRECT
        )
        assert result.appointment.status == "confirmed"
        assert payment_count(db, a.id) == 1

        assert sweep_expired_pending(db, start + timedelta(minutes=20))["expired"] == 0
        db.refresh(a)
        assert a.status == "confirmed"

        service.cancel(a, actor="patient")
        retry = service.attempt_reserve(
            patient_b.id, catalog["service"].id, slot_id, booking_date
        )
        assert retry.status == "pending"
        assert retry.id != a.id

    def test_unpaid_booking_expires_and_late_redirect_is_refused(
        self, db, catalog, patient, booking_date, gateway
    ):
        from clinic_booking.services.expiry_sweeper import sweep_expired_pending

        service = AppointmentService(db)
        created = clinic_now() - timedelta(minutes=17)
        appointment = service.attempt_reserve(
            patient.id, catalog["service"].id, catalog["slots"][0].id, booking_date, created
        )
        asyncio.run(open_checkout(service, gateway, appointment))

        assert sweep_expired_pending(db, created + timedelta(minutes=16))["expired"] == 1
        gateway.mark(appointment.payment_session_id, PaymentVerdict.PAID)

        result = reconcile(
            ConfirmationReconciler(db, gateway),
            appointment.public_id,
            ConfirmationChannel.REDIRECT,
            now=created + timedelta(minutes=17),
        )

        assert result.outcome == ReconcileOutcome.NOT_APPLICABLE
        assert result.appointment.status == "failed_timeout"
        assert payment_count(db, appointment.id) == 0


class TestCheckoutSessions:
    def test_retry_hands_back_the_open_session(self, db, pending, gateway):
        session = asyncio.run(open_checkout(AppointmentService(db), gateway, pending))

        assert session.session_id == "cs_test_1"
        assert session.checkout_url == "https://checkout.test/cs_test_1"
        assert len(gateway.created) == 1
        db.refresh(pending)
        assert pending.payment_session_id == "cs_test_1"

    def test_retry_after_failed_session_opens_a_new_one(self, db, pending, gateway):
        gateway.mark("cs_test_1", PaymentVerdict.FAILED)

        session = asyncio.run(open_checkout(AppointmentService(db), gateway, pending))

        assert session.session_id == "cs_test_2"
        db.refresh(pending)
        assert pending.payment_session_id == "cs_test_2"

    def test_retry_refused_once_session_is_paid(self, db, pending, gateway):
        gateway.mark("cs_test_1", PaymentVerdict.PAID)

        with pytest.raises(PaymentInProgress):
            asyncio.run(open_checkout(AppointmentService(db), gateway, pending))
        assert len(gateway.created) == 1

    def test_failure_of_replaced_session_keeps_the_booking(self, db, pending, reconciler, gateway):
        gateway.mark("cs_test_1", PaymentVerdict.FAILED)
        asyncio.run(open_checkout(AppointmentService(db), gateway, pending))

        stale = SessionStatus(session_id="cs_test_1", verdict=PaymentVerdict.FAILED)
        ignored = reconcile(reconciler, pending.id, ConfirmationChannel.WEBHOOK, stale)
        assert ignored.outcome == ReconcileOutcome.PROCESSING
        assert ignored.appointment.status == "pending"

        paid = reconcile(
            reconciler, pending.id, ConfirmationChannel.WEBHOOK, paid_webhook("cs_test_2")
        )
        assert paid.outcome == ReconcileOutcome.CONFIRMED
        assert payment_count(db, pending.id) == 1

    def test_failure_without_session_id_still_releases(self, pending, reconciler):
        bare = SessionStatus(session_id="", verdict=PaymentVerdict.FAILED)
        result = reconcile(reconciler, pending.id, ConfirmationChannel.WEBHOOK, bare)
        assert result.outcome == ReconcileOutcome.RELEASED
