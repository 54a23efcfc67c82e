"""
Appointment reminder emails
Each confirmed appointment gets at most one reminder; the reminder is claimed
with a conditional update on ``reminder_sent_at`` before the email goes out
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from ..domain.booking.repository import ReservationLedger
from ..email_service import send_appointment_reminder
from ..shared.clock import clinic_now

logger = logging.getLogger(__name__)


async def send_daily_reminders(db: Session, now: Optional[datetime] = None) -> dict:
    """
    Email patients whose confirmed appointment is tomorrow

    Returns:
        dict: {"sent", "failed", "total"}
    """
    now = now or clinic_now()
    target = now.date() + timedelta(days=1)
    appointments = ReservationLedger.due_reminders(db, target)
    result = {"sent": 0, "failed": 0, "total": len(appointments)}

    for appointment in appointments:
        claimed = ReservationLedger.claim_reminder(db, appointment.id, now)
        db.commit()
        if not claimed:
            continue

        try:
            await send_appointment_reminder(appointment)
            result["sent"] += 1
            logger.info(f"📧 Reminder sent for appointment {appointment.id}")
        except Exception as e:
            # Release the claim so the next run can retry
            ReservationLedger.release_reminder(db, appointment.id)
            db.commit()
            result["failed"] += 1
            logger.error(f"❌ Failed to send reminder for appointment {appointment.id}: {e}")

    logger.info(
        f"📊 Reminders for {target}: sent={result['sent']}, "
        f"failed={result['failed']}, total={result['total']}"
    )
    return result
