"""Appointment lifecycle: statuses, events and the legal transition table.

Every status change in the engine is looked up here first; a (status, event)
pair that is not in ``TRANSITIONS`` is illegal.
"""

import enum
from typing import Optional

from ...exceptions import InvalidTransition


class AppointmentStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    FAILED_TIMEOUT = "failed_timeout"
    COMPLETED = "completed"


class AppointmentEvent(str, enum.Enum):
    CONFIRM_PAYMENT = "confirm_payment"
    PAYMENT_FAILED = "payment_failed"
    CANCEL = "cancel"
    EXPIRE = "expire"
    RESCHEDULE = "reschedule"
    COMPLETE = "complete"


TRANSITIONS: dict[tuple[AppointmentStatus, AppointmentEvent], AppointmentStatus] = {
    (AppointmentStatus.PENDING, AppointmentEvent.CONFIRM_PAYMENT): AppointmentStatus.CONFIRMED,
    (AppointmentStatus.PENDING, AppointmentEvent.PAYMENT_FAILED): AppointmentStatus.CANCELLED,
    (AppointmentStatus.PENDING, AppointmentEvent.CANCEL): AppointmentStatus.CANCELLED,
    (AppointmentStatus.PENDING, AppointmentEvent.EXPIRE): AppointmentStatus.FAILED_TIMEOUT,
    (AppointmentStatus.CONFIRMED, AppointmentEvent.CANCEL): AppointmentStatus.CANCELLED,
    (AppointmentStatus.CONFIRMED, AppointmentEvent.COMPLETE): AppointmentStatus.COMPLETED,
    # Rescheduling keeps the same row and returns it to confirmed
    (AppointmentStatus.CONFIRMED, AppointmentEvent.RESCHEDULE): AppointmentStatus.CONFIRMED,
}

# Statuses that hold their (slot, date)
OCCUPYING_STATUSES = frozenset({AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED})
TERMINAL_STATUSES = frozenset(
    {AppointmentStatus.CANCELLED, AppointmentStatus.FAILED_TIMEOUT, AppointmentStatus.COMPLETED}
)
OCCUPYING_VALUES = tuple(sorted(s.value for s in OCCUPYING_STATUSES))


def next_status(
    current: AppointmentStatus, event: AppointmentEvent
) -> Optional[AppointmentStatus]:
    """Return the target status, or None when the transition is not allowed"""
    return TRANSITIONS.get((AppointmentStatus(current), event))


def require_transition(current: AppointmentStatus, event: AppointmentEvent) -> AppointmentStatus:
    """Return the target status or raise InvalidTransition"""
    target = next_status(current, event)
    if target is None:
        raise InvalidTransition(AppointmentStatus(current).value, event.value)
    return target


def allowed_sources(event: AppointmentEvent) -> tuple[str, ...]:
    """Statuses from which ``event`` is legal, as stored column values"""
    return tuple(sorted(src.value for (src, ev) in TRANSITIONS if ev == event))


def is_terminal(status: AppointmentStatus) -> bool:
    return AppointmentStatus(status) in TERMINAL_STATUSES
