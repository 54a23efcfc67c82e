import uuid

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Time,
    text,
)
from sqlalchemy.orm import relationship

from .database import Base
from .domain.booking.state_machine import OCCUPYING_VALUES, AppointmentStatus
from .shared.clock import clinic_now


def generate_public_id():
    """Generate a unique public ID for secure public access"""
    return str(uuid.uuid4())


_OCCUPYING_SQL = "status IN ({})".format(", ".join(f"'{v}'" for v in OCCUPYING_VALUES))


class Patient(Base):
    __tablename__ = "patients"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)
    last_booking_at = Column(DateTime, nullable=True)  # Written under lock by each reservation
    created_at = Column(DateTime, default=clinic_now)

    appointments = relationship("Appointment", back_populates="patient")

    @property
    def full_name(self) -> str:
        return " ".join(p for p in (self.first_name, self.last_name) if p) or self.email


class Service(Base):
    __tablename__ = "services"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    description = Column(String(1000), nullable=True)
    price = Column(Float, nullable=False)  # Major currency units (e.g. 300.00 PHP)
    currency = Column(String(3), default="PHP", nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)


class Slot(Base):
    """A fixed daily time range, bookable on every date inside the booking horizon"""

    __tablename__ = "slots"

    id = Column(Integer, primary_key=True, index=True)
    label = Column(String(50), nullable=True)  # morning, afternoon1, ...
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    capacity = Column(Integer, default=1, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    @property
    def display_time(self) -> str:
        return (
            f"{self.start_time.strftime('%I:%M %p').lstrip('0')} - "
            f"{self.end_time.strftime('%I:%M %p').lstrip('0')}"
        )


class Appointment(Base):
    __tablename__ = "appointments"
    __table_args__ = (
        # At most one occupying appointment per (slot, date, seat)
        Index(
            "uq_appointments_active_claim",
            "slot_id",
            "appointment_date",
            "seat",
            unique=True,
            postgresql_where=text(_OCCUPYING_SQL),
            sqlite_where=text(_OCCUPYING_SQL),
        ),
        Index("ix_appointments_status_created", "status", "created_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    public_id = Column(String(36), unique=True, index=True, default=generate_public_id)
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=False, index=True)
    service_id = Column(Integer, ForeignKey("services.id"), nullable=False)
    slot_id = Column(Integer, ForeignKey("slots.id"), nullable=False)
    appointment_date = Column(Date, nullable=False)
    seat = Column(Integer, default=0, nullable=False)  # 0..capacity-1
    status = Column(String(20), default=AppointmentStatus.PENDING.value, nullable=False)
    payment_session_id = Column(String(255), nullable=True, index=True)  # Gateway checkout session
    reminder_sent_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=clinic_now, nullable=False)
    updated_at = Column(DateTime, default=clinic_now, nullable=False)  # Last transition

    patient = relationship("Patient", back_populates="appointments")
    service = relationship("Service")
    slot = relationship("Slot")
    payment = relationship("Payment", back_populates="appointment", uselist=False)

    @property
    def state(self) -> AppointmentStatus:
        return AppointmentStatus(self.status)


class Payment(Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    # One payment per appointment; doubles as the reconciliation idempotence key
    appointment_id = Column(Integer, ForeignKey("appointments.id"), unique=True, nullable=False)
    amount = Column(Float, nullable=False)
    currency = Column(String(3), default="PHP", nullable=False)
    payment_method = Column(String(50), nullable=False)
    payment_status = Column(String(20), default="completed", nullable=False)
    transaction_reference = Column(String(255), nullable=True)
    paid_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=clinic_now)

    appointment = relationship("Appointment", back_populates="payment")
