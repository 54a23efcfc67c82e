"""
Automated status transitions for appointments
Handles confirmed → completed once an appointment's time slot has ended
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from ..domain.booking.repository import ReservationLedger
from ..domain.booking.service import AppointmentService, appointment_end
from ..shared.clock import clinic_now

logger = logging.getLogger(__name__)


def complete_past_appointments(db: Session, now: Optional[datetime] = None) -> dict:
    """
    Mark confirmed appointments whose end time has passed as completed
    Should be run as a scheduled job (e.g., daily cron)

    Returns:
        dict: Summary of status changes made
    """
    now = now or clinic_now()
    service = AppointmentService(db)
    summary = {"checked": 0, "completed": 0}

    try:
        past = [
            a
            for a in ReservationLedger.confirmed_until(db, now.date())
            if appointment_end(a) <= now
        ]
        summary["checked"] = len(past)

        for appointment in past:
            if service.complete(appointment.id, now):
                summary["completed"] += 1
                logger.info(f"✅ Appointment {appointment.id} transitioned: confirmed → completed")

        if summary["completed"]:
            logger.info(f"📊 Status automation summary: {summary}")
        else:
            logger.debug("ℹ️ No appointment status updates needed")
        return summary

    except Exception as e:
        logger.error(f"❌ Error completing past appointments: {str(e)}")
        db.rollback()
        raise
