"""
Post-commit patient notifications
Runs as a FastAPI background task after the confirming transaction committed;
failures are logged and never affect the appointment
"""

import logging
from typing import Callable

from sqlalchemy.orm import Session, joinedload

from ..database import SessionLocal
from ..domain.booking.repository import ReservationLedger
from ..email_service import send_payment_receipt
from ..models import Appointment

logger = logging.getLogger(__name__)


async def send_receipt_for_appointment(
    appointment_id: int, session_factory: Callable[[], Session] = SessionLocal
) -> bool:
    """Send the payment receipt for a confirmed appointment"""
    db = session_factory()
    try:
        appointment = (
            db.query(Appointment)
            .options(
                joinedload(Appointment.patient),
                joinedload(Appointment.service),
                joinedload(Appointment.slot),
            )
            .filter(Appointment.id == appointment_id)
            .first()
        )
        payment = ReservationLedger.get_payment(db, appointment_id)
        if not appointment or not payment:
            logger.warning(f"⚠️ No confirmed payment for appointment {appointment_id}; receipt skipped")
            return False

        await send_payment_receipt(appointment, payment)
        logger.info(f"✅ Payment receipt sent for appointment {appointment_id}")
        return True
    except Exception as e:
        logger.error(f"❌ Failed to send receipt for appointment {appointment_id}: {e}")
        return False
    finally:
        db.close()
