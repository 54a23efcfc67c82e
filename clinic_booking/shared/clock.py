"""Clinic wall-clock helpers.

All timestamps are stored as naive datetimes in the clinic's timezone so that
slot times, lead-time checks and the payment window compare directly.
"""

from datetime import date, datetime
from zoneinfo import ZoneInfo

from ..config import CLINIC_TIMEZONE

_TZ = ZoneInfo(CLINIC_TIMEZONE)


def clinic_now() -> datetime:
    """Current naive datetime in the clinic's timezone"""
    return datetime.now(_TZ).replace(tzinfo=None)


def clinic_today() -> date:
    return clinic_now().date()
