"""
Expiry sweeper for unpaid bookings
Marks pending appointments as failed_timeout once their payment window has
elapsed, which releases the slot they were holding
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from ..cache import invalidate_availability
from ..config import PAYMENT_WINDOW_MINUTES
from ..domain.booking.repository import ReservationLedger
from ..domain.booking.service import AppointmentService
from ..shared.clock import clinic_now

logger = logging.getLogger(__name__)


def sweep_expired_pending(db: Session, now: Optional[datetime] = None) -> dict:
    """
    Expire every pending appointment older than the payment window.
    Should be run as a scheduled job (every minute)

    Each row goes through the same conditional update as a single ``expire``
    call, so a confirmation that lands first simply makes the sweep skip it.

    Returns:
        dict: {"checked": candidates found, "expired": rows actually expired}
    """
    now = now or clinic_now()
    cutoff = now - timedelta(minutes=PAYMENT_WINDOW_MINUTES)
    service = AppointmentService(db)

    candidates = ReservationLedger.stale_pending(db, cutoff)
    summary = {"checked": len(candidates), "expired": 0}
    if not candidates:
        logger.debug("ℹ️ No expired pending appointments found")
        return summary

    released_dates = set()
    for appointment_id, appointment_date in candidates:
        if service.expire(appointment_id, now):
            summary["expired"] += 1
            released_dates.add(appointment_date)
            logger.info(f"⏰ Appointment {appointment_id} expired: pending → failed_timeout")
        else:
            logger.debug(f"ℹ️ Appointment {appointment_id} left pending before it could expire")

    if released_dates:
        invalidate_availability(*released_dates)
    logger.info(f"📊 Expiry sweep summary: {summary}")
    return summary
