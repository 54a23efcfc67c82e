"""Booking domain schemas - Pydantic models for validation"""

from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel


class ServiceResponse(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    price: float
    currency: str


class SlotResponse(BaseModel):
    """A daily slot with its occupancy on a given date"""

    id: int
    label: Optional[str] = None
    start_time: str
    end_time: str
    display_time: str
    capacity: int
    remaining: int
    is_booked: bool


class SlotsForDateResponse(BaseModel):
    date: date
    slots: list[SlotResponse]


class SlotAvailabilityResponse(BaseModel):
    slot_id: int
    date: date
    available: bool
    remaining: int


class AvailableDate(BaseModel):
    date: date
    available_slots: int


class AvailableDatesResponse(BaseModel):
    start_date: date
    end_date: date
    dates: list[AvailableDate]


class AppointmentCreate(BaseModel):
    """Schema for booking a slot"""

    service_id: int
    slot_id: int
    appointment_date: date


class AppointmentReschedule(BaseModel):
    slot_id: int
    appointment_date: date


class AppointmentResponse(BaseModel):
    id: int
    public_id: str
    status: str
    appointment_date: date
    slot_id: int
    time: str
    service_id: int
    service_name: str
    price: float
    currency: str
    payment_status: str  # Paid / Pending Payment / N/A
    payment_method: Optional[str] = None
    can_cancel: bool
    can_reschedule: bool
    payment_expires_at: Optional[datetime] = None
    created_at: datetime


class BookingResponse(BaseModel):
    """Result of a reservation; ``checkout_url`` is missing if the gateway was unreachable"""

    appointment: AppointmentResponse
    checkout_url: Optional[str] = None
    message: str


class CheckoutResponse(BaseModel):
    appointment_id: int
    checkout_url: str
