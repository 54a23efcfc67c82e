"""Opening gateway checkout for a pending appointment"""

import logging
from typing import Optional

from ...config import BACKEND_URL
from ...exceptions import InvalidTransition, PaymentInProgress
from ...models import Appointment
from ..booking.service import AppointmentService
from ..booking.state_machine import AppointmentStatus
from .gateway import CheckoutSession, PaymentVerdict, PayMongoGateway

logger = logging.getLogger(__name__)


def redirect_urls(appointment: Appointment) -> tuple[str, str]:
    """Gateway success/cancel URLs; they carry the unguessable public id only"""
    base = BACKEND_URL.rstrip("/")
    return (
        f"{base}/payments/success?appointment_id={appointment.public_id}",
        f"{base}/payments/cancelled?appointment_id={appointment.public_id}",
    )


async def _resume_existing(
    gateway: PayMongoGateway, appointment: Appointment
) -> Optional[CheckoutSession]:
    """The stored session if it can still be paid; None once it has failed or expired"""
    session_id = appointment.payment_session_id
    current = await gateway.get_session_status(session_id)

    if current.verdict == PaymentVerdict.FAILED:
        logger.info(f"ℹ️ Checkout session {session_id} is no longer payable; opening a new one")
        return None
    if current.verdict == PaymentVerdict.PENDING and current.checkout_url:
        logger.info(f"ℹ️ Reusing open checkout session {session_id} for appointment {appointment.id}")
        return CheckoutSession(session_id=session_id, checkout_url=current.checkout_url)

    # Paid but not reconciled yet, or open without a page to send the patient to
    logger.warning(
        f"⚠️ Checkout for appointment {appointment.id} refused: session {session_id} "
        f"is {current.verdict.value}"
    )
    raise PaymentInProgress()


async def open_checkout(
    appointments: AppointmentService, gateway: PayMongoGateway, appointment: Appointment
) -> CheckoutSession:
    """
    Create a checkout session for a pending appointment and store its id.

    An appointment holds at most one payable session: a still-open stored
    session is handed back instead of opening a second one.

    Raises:
        InvalidTransition: appointment is no longer pending
        PaymentInProgress: the stored session is already paid
        GatewayUnavailable: session could not be created or checked; appointment untouched
    """
    if appointment.state != AppointmentStatus.PENDING:
        raise InvalidTransition(appointment.status, "checkout")

    if appointment.payment_session_id:
        existing = await _resume_existing(gateway, appointment)
        if existing:
            return existing

    service = appointment.service
    success_url, cancel_url = redirect_urls(appointment)
    session = await gateway.create_checkout_session(
        service_name=service.name,
        amount=service.price,
        currency=service.currency,
        success_url=success_url,
        cancel_url=cancel_url,
        metadata={
            "appointment_id": appointment.id,
            "public_id": appointment.public_id,
            "patient_id": appointment.patient_id,
        },
    )

    if not appointments.attach_payment_session(appointment, session.session_id):
        raise InvalidTransition(appointment.status, "checkout")
    return session
