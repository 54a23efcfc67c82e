"""Confirmation reconciler.

Payment confirmation reaches us through two independent, unordered and
possibly repeated channels: the browser redirect back from checkout and the
signed gateway webhook. Both funnel through ``ConfirmationReconciler`` so that
an appointment is confirmed, and its payment recorded, exactly once.
"""

import enum
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Union

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...cache import invalidate_availability
from ...exceptions import NotFound
from ...models import Appointment, Payment
from ...shared.clock import clinic_now
from ..booking.repository import ReservationLedger
from ..booking.service import AppointmentService
from ..booking.state_machine import AppointmentStatus
from .gateway import PayMongoGateway, PaymentVerdict, SessionStatus

logger = logging.getLogger(__name__)


class ConfirmationChannel(str, enum.Enum):
    REDIRECT = "redirect"
    CANCEL_REDIRECT = "cancel_redirect"
    WEBHOOK = "webhook"


class ReconcileOutcome(str, enum.Enum):
    CONFIRMED = "confirmed"
    ALREADY_PROCESSED = "already_processed"
    NOT_APPLICABLE = "not_applicable"
    RELEASED = "released"
    PROCESSING = "processing"


@dataclass
class ReconcileResult:
    outcome: ReconcileOutcome
    appointment: Appointment
    payment: Optional[Payment] = None


class ConfirmationReconciler:
    def __init__(
        self,
        db: Session,
        gateway: PayMongoGateway,
        appointments: Optional[AppointmentService] = None,
    ):
        self.db = db
        self.gateway = gateway
        self.ledger = ReservationLedger()
        self.appointments = appointments or AppointmentService(db)

    def _load(self, appointment_ref: Union[int, str]) -> Appointment:
        if isinstance(appointment_ref, int):
            appointment = self.ledger.get(self.db, appointment_ref)
        else:
            appointment = self.ledger.get_by_public_id(self.db, appointment_ref)
        if not appointment:
            raise NotFound()
        return appointment

    def _settled(self, appointment: Appointment) -> ReconcileResult:
        """Result for a row another actor already moved out of pending"""
        self.db.refresh(appointment)
        payment = self.ledger.get_payment(self.db, appointment.id)
        if payment:
            return ReconcileResult(ReconcileOutcome.ALREADY_PROCESSED, appointment, payment)
        return ReconcileResult(ReconcileOutcome.NOT_APPLICABLE, appointment)

    @staticmethod
    def _is_current_session(appointment: Appointment, status: SessionStatus) -> bool:
        """Bare payment events carry no session id and are taken as current"""
        return not status.session_id or status.session_id == appointment.payment_session_id

    async def _trusted_status(
        self, appointment: Appointment, channel: ConfirmationChannel
    ) -> SessionStatus:
        if channel == ConfirmationChannel.WEBHOOK:
            raise ValueError("Webhook reconciliation requires a verified verdict")
        if not appointment.payment_session_id:
            # Checkout was never opened, nothing can have been paid
            return SessionStatus(session_id="", verdict=PaymentVerdict.PENDING)
        return await self.gateway.get_session_status(appointment.payment_session_id)

    async def reconcile(
        self,
        appointment_ref: Union[int, str],
        channel: ConfirmationChannel,
        verdict: Optional[SessionStatus] = None,
        now: Optional[datetime] = None,
    ) -> ReconcileResult:
        """
        Drive a pending appointment to its payment outcome.

        Args:
            appointment_ref: internal id (webhook metadata) or public id (redirects)
            channel: where the confirmation came from
            verdict: signature-verified session status; required for webhooks.
                Redirect channels always ask the gateway using the stored session id.

        Raises:
            NotFound: unknown appointment
            GatewayUnavailable: verdict could not be fetched; nothing changed
        """
        now = now or clinic_now()
        appointment = self._load(appointment_ref)

        payment = self.ledger.get_payment(self.db, appointment.id)
        if payment:
            logger.info(f"ℹ️ Appointment {appointment.id} already processed ({channel.value})")
            return ReconcileResult(ReconcileOutcome.ALREADY_PROCESSED, appointment, payment)

        if appointment.state != AppointmentStatus.PENDING:
            logger.warning(
                f"⚠️ {channel.value} for appointment {appointment.id} in status "
                f"{appointment.status}; not confirming"
            )
            return ReconcileResult(ReconcileOutcome.NOT_APPLICABLE, appointment)

        status = verdict or await self._trusted_status(appointment, channel)

        if status.verdict == PaymentVerdict.PAID:
            return self._confirm(appointment, status, channel, now)

        if status.verdict == PaymentVerdict.FAILED and not self._is_current_session(
            appointment, status
        ):
            # A replaced session failing says nothing about the one the patient can still pay
            logger.warning(
                f"⚠️ Ignoring failed session {status.session_id} for appointment {appointment.id}; "
                f"current session is {appointment.payment_session_id}"
            )
            return ReconcileResult(ReconcileOutcome.PROCESSING, appointment)

        if status.verdict == PaymentVerdict.FAILED or channel == ConfirmationChannel.CANCEL_REDIRECT:
            return self._release(appointment, status, channel, now)

        logger.info(f"⏳ Payment for appointment {appointment.id} still processing")
        return ReconcileResult(ReconcileOutcome.PROCESSING, appointment)

    def _confirm(
        self,
        appointment: Appointment,
        status: SessionStatus,
        channel: ConfirmationChannel,
        now: datetime,
    ) -> ReconcileResult:
        try:
            won = self.appointments.confirm_payment(appointment.id, now)
            if not won:
                self.db.rollback()
                logger.info(f"ℹ️ Lost confirmation race for appointment {appointment.id}")
                return self._settled(appointment)

            service = appointment.service
            payment = Payment(
                appointment_id=appointment.id,
                amount=status.amount if status.amount is not None else service.price,
                currency=status.currency.upper() if status.currency else service.currency,
                payment_method=status.method,
                payment_status="completed",
                transaction_reference=status.reference or status.session_id,
                paid_at=now,
                created_at=now,
            )
            self.db.add(payment)
            if status.session_id and not appointment.payment_session_id:
                appointment.payment_session_id = status.session_id
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            logger.info(f"ℹ️ Payment for appointment {appointment.id} recorded concurrently")
            return self._settled(appointment)
        except Exception:
            self.db.rollback()
            logger.exception(f"❌ Failed to confirm appointment {appointment.id}")
            raise

        self.db.refresh(appointment)
        self.db.refresh(payment)
        logger.info(
            f"✅ Appointment {appointment.id} confirmed via {channel.value} "
            f"({payment.payment_method}, {payment.amount:.2f} {payment.currency})"
        )
        return ReconcileResult(ReconcileOutcome.CONFIRMED, appointment, payment)

    def _release(
        self,
        appointment: Appointment,
        status: SessionStatus,
        channel: ConfirmationChannel,
        now: datetime,
    ) -> ReconcileResult:
        if not self.appointments.release_failed_payment(appointment.id, now):
            return self._settled(appointment)

        self.db.refresh(appointment)
        invalidate_availability(appointment.appointment_date)
        logger.info(
            f"✅ Appointment {appointment.id} released after {status.verdict.value} "
            f"payment ({channel.value})"
        )
        return ReconcileResult(ReconcileOutcome.RELEASED, appointment)
