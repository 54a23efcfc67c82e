"""Appointment service - reservation and lifecycle operations.

All status changes go through ``ReservationLedger.transition`` so that two
actors racing on the same row resolve by rowcount: exactly one wins, the other
observes zero affected rows.
"""

import logging
from datetime import date, datetime, timedelta
from typing import Optional

from dateutil.relativedelta import relativedelta
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...cache import invalidate_availability
from ...config import (
    BOOKING_HORIZON_MONTHS,
    CANCELLATION_LEAD_HOURS,
    ONE_ACTIVE_BOOKING_PER_PATIENT,
    PAYMENT_WINDOW_MINUTES,
)
from ...exceptions import (
    ActiveBookingExists,
    BookingError,
    InvalidTransition,
    LeadTimeViolation,
    NotFound,
    SlotConflict,
)
from ...models import Appointment, Service
from ...shared.clock import clinic_now
from .repository import ReservationLedger, SlotAvailability, SlotRegistry
from .state_machine import AppointmentEvent, AppointmentStatus, allowed_sources, require_transition

logger = logging.getLogger(__name__)


def appointment_start(appointment: Appointment) -> datetime:
    return datetime.combine(appointment.appointment_date, appointment.slot.start_time)


def appointment_end(appointment: Appointment) -> datetime:
    return datetime.combine(appointment.appointment_date, appointment.slot.end_time)


def booking_window(today: date) -> tuple[date, date]:
    """First and last bookable dates"""
    return today + timedelta(days=1), today + relativedelta(months=BOOKING_HORIZON_MONTHS)


class AppointmentService:
    """Service layer for the appointment lifecycle"""

    def __init__(self, db: Session, one_active_booking_per_patient: Optional[bool] = None):
        self.db = db
        self.slots = SlotRegistry()
        self.ledger = ReservationLedger()
        self.one_active_booking_per_patient = (
            ONE_ACTIVE_BOOKING_PER_PATIENT
            if one_active_booking_per_patient is None
            else one_active_booking_per_patient
        )

    # ------------------------------------------------------------------ #
    # Validation
    # ------------------------------------------------------------------ #

    def validate_booking_date(self, on_date: date, now: Optional[datetime] = None) -> None:
        first, last = booking_window((now or clinic_now()).date())
        if on_date < first:
            raise LeadTimeViolation()
        if on_date > last:
            raise LeadTimeViolation(
                f"Appointments can only be booked up to {BOOKING_HORIZON_MONTHS} months in advance."
            )

    def _check_lead_time(self, appointment: Appointment, action: str, now: datetime) -> None:
        if appointment_start(appointment) - now < timedelta(hours=CANCELLATION_LEAD_HOURS):
            raise LeadTimeViolation(
                f"Appointments can only be {action} at least "
                f"{CANCELLATION_LEAD_HOURS} hours before the scheduled time."
            )

    # ------------------------------------------------------------------ #
    # Queries
    # ------------------------------------------------------------------ #

    def get_appointment(self, appointment_id: int) -> Appointment:
        appointment = self.ledger.get(self.db, appointment_id)
        if not appointment:
            raise NotFound()
        return appointment

    def get_patient_appointment(self, appointment_id: int, patient_id: int) -> Appointment:
        appointment = self.ledger.get_for_patient(self.db, appointment_id, patient_id)
        if not appointment:
            raise NotFound()
        return appointment

    def list_patient_appointments(self, patient_id: int) -> list[Appointment]:
        return self.ledger.list_for_patient(self.db, patient_id)

    def list_services(self) -> list[Service]:
        return (
            self.db.query(Service)
            .filter(Service.is_active.is_(True))
            .order_by(Service.name)
            .all()
        )

    def slots_for_date(self, on_date: date) -> list[SlotAvailability]:
        return self.slots.list_slots_for_date(self.db, on_date)

    def slot_availability(self, slot_id: int, on_date: date) -> SlotAvailability:
        slot = self.slots.get_slot(self.db, slot_id)
        if not slot:
            raise NotFound("Time slot not found.")
        return SlotAvailability(slot=slot, occupied=self.slots.occupied_count(self.db, slot.id, on_date))

    def available_dates(self, now: Optional[datetime] = None) -> list[tuple[date, int]]:
        """Bookable dates that still have free seats, with the free seat count"""
        first, last = booking_window((now or clinic_now()).date())
        capacity = self.slots.total_capacity(self.db)
        if capacity == 0:
            return []
        occupied = self.slots.occupied_counts_by_date(self.db, first, last)

        result = []
        day = first
        while day <= last:
            free = capacity - occupied.get(day, 0)
            if free > 0:
                result.append((day, free))
            day += timedelta(days=1)
        return result

    def can_cancel(self, appointment: Appointment, now: Optional[datetime] = None) -> bool:
        if appointment.state == AppointmentStatus.PENDING:
            return True
        if appointment.state != AppointmentStatus.CONFIRMED:
            return False
        now = now or clinic_now()
        return appointment_start(appointment) - now >= timedelta(hours=CANCELLATION_LEAD_HOURS)

    def can_reschedule(self, appointment: Appointment, now: Optional[datetime] = None) -> bool:
        return appointment.state == AppointmentStatus.CONFIRMED and self.can_cancel(appointment, now)

    def get_active_service(self, service_id: int) -> Service:
        service = (
            self.db.query(Service)
            .filter(Service.id == service_id, Service.is_active.is_(True))
            .first()
        )
        if not service:
            raise NotFound("Service not found.")
        return service

    # ------------------------------------------------------------------ #
    # Mutations
    # ------------------------------------------------------------------ #

    def attempt_reserve(
        self,
        patient_id: int,
        service_id: int,
        slot_id: int,
        on_date: date,
        now: Optional[datetime] = None,
    ) -> Appointment:
        """Claim (slot, date) for a patient and create a pending appointment"""
        now = now or clinic_now()
        logger.info(f"📥 Reserving slot {slot_id} on {on_date} for patient {patient_id}")

        self.validate_booking_date(on_date, now)
        self.get_active_service(service_id)

        try:
            if self.one_active_booking_per_patient:
                # Held until commit; a second reservation by the same patient waits here
                if not self.ledger.lock_patient(self.db, patient_id, now):
                    raise NotFound("Patient not found.")
                if self.ledger.active_for_patient(self.db, patient_id):
                    raise ActiveBookingExists()

            slot = self.ledger.lock_slot(self.db, slot_id)
            if not slot:
                raise NotFound("Time slot not found.")

            seat = self.ledger.free_seat(self.db, slot, on_date)
            if seat is None:
                raise SlotConflict()

            appointment = self.ledger.insert_pending(
                self.db, patient_id, service_id, slot.id, on_date, seat, now
            )
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            logger.warning(f"⚠️ Lost race for slot {slot_id} on {on_date} (claim index)")
            raise SlotConflict()
        except BookingError:
            self.db.rollback()
            raise
        except Exception:
            self.db.rollback()
            logger.exception(f"❌ Failed to reserve slot {slot_id} on {on_date}")
            raise

        invalidate_availability(on_date)
        self.db.refresh(appointment)
        logger.info(
            f"✅ Appointment {appointment.id} pending for slot {slot_id} on {on_date} (seat {seat})"
        )
        return appointment

    def attach_payment_session(self, appointment: Appointment, session_id: str) -> bool:
        """Record the gateway session; a no-op once the appointment left pending"""
        attached = self.ledger.set_payment_session(self.db, appointment.id, session_id)
        self.db.commit()
        if attached:
            self.db.refresh(appointment)
        else:
            logger.warning(
                f"⚠️ Appointment {appointment.id} is no longer pending; session {session_id} not attached"
            )
        return attached

    def cancel(
        self, appointment: Appointment, actor: str = "patient", now: Optional[datetime] = None
    ) -> Appointment:
        now = now or clinic_now()
        observed = appointment.state
        require_transition(observed, AppointmentEvent.CANCEL)

        if observed == AppointmentStatus.CONFIRMED:
            self._check_lead_time(appointment, "cancelled", now)

        won = self.ledger.transition(
            self.db, appointment.id, (observed.value,), AppointmentStatus.CANCELLED, now
        )
        self.db.commit()
        self.db.refresh(appointment)
        if not won:
            raise InvalidTransition(appointment.status, AppointmentEvent.CANCEL.value)

        invalidate_availability(appointment.appointment_date)
        logger.info(f"✅ Appointment {appointment.id} cancelled by {actor} (was {observed.value})")
        return appointment

    def reschedule(
        self,
        appointment: Appointment,
        new_slot_id: int,
        new_date: date,
        now: Optional[datetime] = None,
    ) -> Appointment:
        now = now or clinic_now()
        require_transition(appointment.state, AppointmentEvent.RESCHEDULE)
        self._check_lead_time(appointment, "rescheduled", now)
        self.validate_booking_date(new_date, now)

        old_date = appointment.appointment_date
        try:
            slot = self.ledger.lock_slot(self.db, new_slot_id)
            if not slot:
                raise NotFound("Time slot not found.")

            seat = self.ledger.free_seat(
                self.db, slot, new_date, exclude_appointment_id=appointment.id
            )
            if seat is None:
                raise SlotConflict()

            won = self.ledger.transition(
                self.db,
                appointment.id,
                allowed_sources(AppointmentEvent.RESCHEDULE),
                AppointmentStatus.CONFIRMED,
                now,
                slot_id=slot.id,
                appointment_date=new_date,
                seat=seat,
                reminder_sent_at=None,
            )
            if not won:
                self.db.rollback()
                self.db.refresh(appointment)
                raise InvalidTransition(appointment.status, AppointmentEvent.RESCHEDULE.value)
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise SlotConflict()
        except BookingError:
            self.db.rollback()
            raise
        except Exception:
            self.db.rollback()
            logger.exception(f"❌ Failed to reschedule appointment {appointment.id}")
            raise

        self.db.refresh(appointment)
        invalidate_availability(old_date, new_date)
        logger.info(
            f"✅ Appointment {appointment.id} rescheduled to slot {new_slot_id} on {new_date}"
        )
        return appointment

    def expire(self, appointment_id: int, now: Optional[datetime] = None) -> bool:
        """pending -> failed_timeout once the payment window has elapsed.

        Returns False (and changes nothing) for confirmed or terminal rows and
        for rows still inside the window.
        """
        now = now or clinic_now()
        cutoff = now - timedelta(minutes=PAYMENT_WINDOW_MINUTES)
        expired = self.ledger.transition(
            self.db,
            appointment_id,
            allowed_sources(AppointmentEvent.EXPIRE),
            AppointmentStatus.FAILED_TIMEOUT,
            now,
            extra_filters=(Appointment.created_at <= cutoff,),
        )
        self.db.commit()
        return expired

    def confirm_payment(self, appointment_id: int, now: Optional[datetime] = None) -> bool:
        """pending -> confirmed; True only for the caller whose update applied.

        Does not commit: the caller records the payment in the same transaction.
        """
        return self.ledger.confirm(self.db, appointment_id, now or clinic_now())

    def release_failed_payment(self, appointment_id: int, now: Optional[datetime] = None) -> bool:
        """pending -> cancelled after a verified failed or abandoned payment"""
        released = self.ledger.transition(
            self.db,
            appointment_id,
            allowed_sources(AppointmentEvent.PAYMENT_FAILED),
            AppointmentStatus.CANCELLED,
            now or clinic_now(),
        )
        self.db.commit()
        return released

    def complete(self, appointment_id: int, now: Optional[datetime] = None) -> bool:
        completed = self.ledger.transition(
            self.db,
            appointment_id,
            allowed_sources(AppointmentEvent.COMPLETE),
            AppointmentStatus.COMPLETED,
            now or clinic_now(),
        )
        self.db.commit()
        return completed


def payment_expires_at(appointment: Appointment) -> Optional[datetime]:
    if appointment.state != AppointmentStatus.PENDING:
        return None
    return appointment.created_at + timedelta(minutes=PAYMENT_WINDOW_MINUTES)
