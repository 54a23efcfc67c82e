"""Booking repository - Slot Registry and Reservation Ledger queries.

Occupancy is never stored; it is always derived from appointments whose status
is occupying (pending / confirmed).
"""

from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload

from ...models import Appointment, Patient, Payment, Slot
from .state_machine import OCCUPYING_VALUES, AppointmentEvent, AppointmentStatus, allowed_sources


@dataclass
class SlotAvailability:
    slot: Slot
    occupied: int

    @property
    def remaining(self) -> int:
        return max(0, self.slot.capacity - self.occupied)

    @property
    def is_booked(self) -> bool:
        return self.remaining == 0


class SlotRegistry:
    """Read-only view of the slot catalog and its derived occupancy"""

    @staticmethod
    def get_slot(db: Session, slot_id: int) -> Optional[Slot]:
        return db.query(Slot).filter(Slot.id == slot_id, Slot.is_active.is_(True)).first()

    @staticmethod
    def list_slots(db: Session) -> list[Slot]:
        return db.query(Slot).filter(Slot.is_active.is_(True)).order_by(Slot.start_time).all()

    @staticmethod
    def occupied_count(
        db: Session, slot_id: int, on_date: date, exclude_appointment_id: Optional[int] = None
    ) -> int:
        query = db.query(func.count(Appointment.id)).filter(
            Appointment.slot_id == slot_id,
            Appointment.appointment_date == on_date,
            Appointment.status.in_(OCCUPYING_VALUES),
        )
        if exclude_appointment_id is not None:
            query = query.filter(Appointment.id != exclude_appointment_id)
        return query.scalar() or 0

    @classmethod
    def is_occupied(cls, db: Session, slot: Slot, on_date: date) -> bool:
        return cls.occupied_count(db, slot.id, on_date) >= slot.capacity

    @classmethod
    def list_slots_for_date(cls, db: Session, on_date: date) -> list[SlotAvailability]:
        """All active slots for a date, ordered by start time, with occupancy"""
        counts = dict(
            db.query(Appointment.slot_id, func.count(Appointment.id))
            .filter(
                Appointment.appointment_date == on_date,
                Appointment.status.in_(OCCUPYING_VALUES),
            )
            .group_by(Appointment.slot_id)
            .all()
        )
        return [SlotAvailability(slot=s, occupied=counts.get(s.id, 0)) for s in cls.list_slots(db)]

    @staticmethod
    def occupied_counts_by_date(db: Session, start: date, end: date) -> dict[date, int]:
        """Occupying appointments per date in [start, end], in one query"""
        rows = (
            db.query(Appointment.appointment_date, func.count(Appointment.id))
            .join(Slot, Slot.id == Appointment.slot_id)
            .filter(
                Appointment.appointment_date >= start,
                Appointment.appointment_date <= end,
                Appointment.status.in_(OCCUPYING_VALUES),
                Slot.is_active.is_(True),
            )
            .group_by(Appointment.appointment_date)
            .all()
        )
        return {row[0]: row[1] for row in rows}

    @staticmethod
    def total_capacity(db: Session) -> int:
        return (
            db.query(func.coalesce(func.sum(Slot.capacity), 0))
            .filter(Slot.is_active.is_(True))
            .scalar()
            or 0
        )


class ReservationLedger:
    """Authoritative record of slot claims.

    Every mutation here is a conditional update scoped by the expected prior
    status; the returned rowcount tells the caller whether it won.
    """

    @staticmethod
    def lock_slot(db: Session, slot_id: int) -> Optional[Slot]:
        """Row-lock the slot so claims for it serialize (no-op on SQLite)"""
        return (
            db.query(Slot)
            .filter(Slot.id == slot_id, Slot.is_active.is_(True))
            .with_for_update()
            .first()
        )

    @staticmethod
    def lock_patient(db: Session, patient_id: int, now: datetime) -> bool:
        """Write-lock the patient row so one patient's reservations serialize.

        Issued as an UPDATE, which takes the write lock on SQLite as well as Postgres.
        """
        updated = (
            db.query(Patient)
            .filter(Patient.id == patient_id)
            .update({Patient.last_booking_at: now}, synchronize_session=False)
        )
        return updated == 1

    @staticmethod
    def taken_seats(
        db: Session, slot_id: int, on_date: date, exclude_appointment_id: Optional[int] = None
    ) -> set[int]:
        query = db.query(Appointment.seat).filter(
            Appointment.slot_id == slot_id,
            Appointment.appointment_date == on_date,
            Appointment.status.in_(OCCUPYING_VALUES),
        )
        if exclude_appointment_id is not None:
            query = query.filter(Appointment.id != exclude_appointment_id)
        return {row[0] for row in query.all()}

    @classmethod
    def free_seat(
        cls, db: Session, slot: Slot, on_date: date, exclude_appointment_id: Optional[int] = None
    ) -> Optional[int]:
        """Lowest free seat for (slot, date), or None if the slot is full"""
        taken = cls.taken_seats(db, slot.id, on_date, exclude_appointment_id)
        for seat in range(slot.capacity):
            if seat not in taken:
                return seat
        return None

    @staticmethod
    def insert_pending(
        db: Session,
        patient_id: int,
        service_id: int,
        slot_id: int,
        on_date: date,
        seat: int,
        now: datetime,
    ) -> Appointment:
        appointment = Appointment(
            patient_id=patient_id,
            service_id=service_id,
            slot_id=slot_id,
            appointment_date=on_date,
            seat=seat,
            status=AppointmentStatus.PENDING.value,
            created_at=now,
            updated_at=now,
        )
        db.add(appointment)
        db.flush()
        return appointment

    @staticmethod
    def transition(
        db: Session,
        appointment_id: int,
        expected: tuple[str, ...],
        target: AppointmentStatus,
        now: datetime,
        extra_filters: tuple = (),
        **values,
    ) -> bool:
        """UPDATE ... SET status=target WHERE id=X AND status IN expected"""
        changes = {Appointment.status: target.value, Appointment.updated_at: now}
        changes.update({getattr(Appointment, key): value for key, value in values.items()})
        updated = (
            db.query(Appointment)
            .filter(
                Appointment.id == appointment_id,
                Appointment.status.in_(expected),
                *extra_filters,
            )
            .update(changes, synchronize_session=False)
        )
        return updated == 1

    @staticmethod
    def set_payment_session(db: Session, appointment_id: int, session_id: str) -> bool:
        """Attach a gateway session to a still-pending appointment"""
        updated = (
            db.query(Appointment)
            .filter(
                Appointment.id == appointment_id,
                Appointment.status == AppointmentStatus.PENDING.value,
            )
            .update({Appointment.payment_session_id: session_id}, synchronize_session=False)
        )
        return updated == 1

    @classmethod
    def confirm(cls, db: Session, appointment_id: int, now: datetime) -> bool:
        return cls.transition(
            db,
            appointment_id,
            allowed_sources(AppointmentEvent.CONFIRM_PAYMENT),
            AppointmentStatus.CONFIRMED,
            now,
        )

    @staticmethod
    def get(db: Session, appointment_id: int) -> Optional[Appointment]:
        return (
            db.query(Appointment)
            .options(joinedload(Appointment.slot), joinedload(Appointment.service))
            .filter(Appointment.id == appointment_id)
            .first()
        )

    @staticmethod
    def get_by_public_id(db: Session, public_id: str) -> Optional[Appointment]:
        return db.query(Appointment).filter(Appointment.public_id == public_id).first()

    @staticmethod
    def get_for_patient(db: Session, appointment_id: int, patient_id: int) -> Optional[Appointment]:
        return (
            db.query(Appointment)
            .filter(Appointment.id == appointment_id, Appointment.patient_id == patient_id)
            .first()
        )

    @staticmethod
    def list_for_patient(db: Session, patient_id: int) -> list[Appointment]:
        return (
            db.query(Appointment)
            .options(
                joinedload(Appointment.slot),
                joinedload(Appointment.service),
                joinedload(Appointment.payment),
            )
            .filter(Appointment.patient_id == patient_id)
            .order_by(Appointment.appointment_date.desc(), Appointment.id.desc())
            .all()
        )

    @staticmethod
    def active_for_patient(
        db: Session, patient_id: int, exclude_appointment_id: Optional[int] = None
    ) -> Optional[Appointment]:
        query = db.query(Appointment).filter(
            Appointment.patient_id == patient_id,
            Appointment.status.in_(OCCUPYING_VALUES),
        )
        if exclude_appointment_id is not None:
            query = query.filter(Appointment.id != exclude_appointment_id)
        return query.first()

    @staticmethod
    def stale_pending(db: Session, cutoff: datetime) -> list[tuple[int, date]]:
        """(id, date) of pending appointments created at or before ``cutoff``"""
        rows = (
            db.query(Appointment.id, Appointment.appointment_date)
            .filter(
                Appointment.status == AppointmentStatus.PENDING.value,
                Appointment.created_at <= cutoff,
            )
            .order_by(Appointment.created_at)
            .all()
        )
        return [(row[0], row[1]) for row in rows]

    @staticmethod
    def confirmed_until(db: Session, last_date: date) -> list[Appointment]:
        return (
            db.query(Appointment)
            .options(joinedload(Appointment.slot))
            .filter(
                Appointment.status == AppointmentStatus.CONFIRMED.value,
                Appointment.appointment_date <= last_date,
            )
            .all()
        )

    @staticmethod
    def due_reminders(db: Session, on_date: date) -> list[Appointment]:
        return (
            db.query(Appointment)
            .options(
                joinedload(Appointment.patient),
                joinedload(Appointment.service),
                joinedload(Appointment.slot),
            )
            .filter(
                Appointment.status == AppointmentStatus.CONFIRMED.value,
                Appointment.appointment_date == on_date,
                Appointment.reminder_sent_at.is_(None),
            )
            .order_by(Appointment.id)
            .all()
        )

    @staticmethod
    def claim_reminder(db: Session, appointment_id: int, now: datetime) -> bool:
        """Mark a reminder as sent; False if another run already claimed it"""
        updated = (
            db.query(Appointment)
            .filter(
                Appointment.id == appointment_id,
                Appointment.status == AppointmentStatus.CONFIRMED.value,
                Appointment.reminder_sent_at.is_(None),
            )
            .update({Appointment.reminder_sent_at: now}, synchronize_session=False)
        )
        return updated == 1

    @staticmethod
    def release_reminder(db: Session, appointment_id: int) -> None:
        db.query(Appointment).filter(Appointment.id == appointment_id).update(
            {Appointment.reminder_sent_at: None}, synchronize_session=False
        )

    @staticmethod
    def get_payment(db: Session, appointment_id: int) -> Optional[Payment]:
        return db.query(Payment).filter(Payment.appointment_id == appointment_id).first()
