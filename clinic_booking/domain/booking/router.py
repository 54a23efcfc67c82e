"""Booking router - FastAPI endpoints for slots and appointments"""

import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from ...auth import get_current_patient
from ...cache import (
    get_available_dates_cached,
    get_available_slots_cached,
    set_available_dates_cached,
    set_available_slots_cached,
)
from ...database import get_db
from ...exceptions import GatewayUnavailable
from ...models import Appointment, Patient
from ...rate_limiter import create_rate_limiter
from ...shared.clock import clinic_today
from ..payments.checkout import open_checkout
from ..payments.gateway import PayMongoGateway, get_payment_gateway
from .repository import SlotAvailability
from .schemas import (
    AppointmentCreate,
    AppointmentReschedule,
    AppointmentResponse,
    AvailableDate,
    AvailableDatesResponse,
    BookingResponse,
    CheckoutResponse,
    ServiceResponse,
    SlotAvailabilityResponse,
    SlotResponse,
    SlotsForDateResponse,
)
from .service import AppointmentService, booking_window, payment_expires_at
from .state_machine import AppointmentStatus

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Booking"])

booking_rate_limit = create_rate_limiter(limit=10, window_seconds=60, key_prefix="booking")


def get_appointment_service(db: Session = Depends(get_db)) -> AppointmentService:
    """Dependency injection for AppointmentService"""
    return AppointmentService(db)


def _slot_response(availability: SlotAvailability) -> SlotResponse:
    slot = availability.slot
    return SlotResponse(
        id=slot.id,
        label=slot.label,
        start_time=slot.start_time.strftime("%H:%M"),
        end_time=slot.end_time.strftime("%H:%M"),
        display_time=slot.display_time,
        capacity=slot.capacity,
        remaining=availability.remaining,
        is_booked=availability.is_booked,
    )


def _appointment_response(
    appointment: Appointment, service: AppointmentService
) -> AppointmentResponse:
    payment = appointment.payment
    if payment:
        payment_status = "Paid"
    elif appointment.state == AppointmentStatus.PENDING:
        payment_status = "Pending Payment"
    else:
        payment_status = "N/A"

    return AppointmentResponse(
        id=appointment.id,
        public_id=appointment.public_id,
        status=appointment.status,
        appointment_date=appointment.appointment_date,
        slot_id=appointment.slot_id,
        time=appointment.slot.display_time,
        service_id=appointment.service_id,
        service_name=appointment.service.name,
        price=appointment.service.price,
        currency=appointment.service.currency,
        payment_status=payment_status,
        payment_method=payment.payment_method if payment else None,
        can_cancel=service.can_cancel(appointment),
        can_reschedule=service.can_reschedule(appointment),
        payment_expires_at=payment_expires_at(appointment),
        created_at=appointment.created_at,
    )


# ============================================================================
# CATALOG & AVAILABILITY
# ============================================================================


@router.get("/services", response_model=list[ServiceResponse])
async def list_services(service: AppointmentService = Depends(get_appointment_service)):
    return [
        ServiceResponse(
            id=s.id, name=s.name, description=s.description, price=s.price, currency=s.currency
        )
        for s in service.list_services()
    ]


@router.get("/slots", response_model=SlotsForDateResponse)
async def get_slots_for_date(
    on_date: date = Query(..., alias="date"),
    service: AppointmentService = Depends(get_appointment_service),
):
    """All slots for a date with their remaining seats"""
    cached = get_available_slots_cached(on_date)
    if cached is not None:
        return SlotsForDateResponse(date=on_date, slots=cached)

    slots = [_slot_response(a) for a in service.slots_for_date(on_date)]
    set_available_slots_cached(on_date, [s.model_dump() for s in slots])
    return SlotsForDateResponse(date=on_date, slots=slots)


@router.get("/slots/availability", response_model=SlotAvailabilityResponse)
async def check_slot_availability(
    slot_id: int,
    on_date: date = Query(..., alias="date"),
    service: AppointmentService = Depends(get_appointment_service),
):
    availability = service.slot_availability(slot_id, on_date)
    return SlotAvailabilityResponse(
        slot_id=slot_id,
        date=on_date,
        available=not availability.is_booked,
        remaining=availability.remaining,
    )


@router.get("/slots/dates", response_model=AvailableDatesResponse)
async def get_available_dates(service: AppointmentService = Depends(get_appointment_service)):
    """Dates inside the booking horizon that still have free slots"""
    first, last = booking_window(clinic_today())
    cached = get_available_dates_cached()
    if cached is None:
        cached = [
            {"date": d.isoformat(), "available_slots": free} for d, free in service.available_dates()
        ]
        set_available_dates_cached(cached)

    return AvailableDatesResponse(
        start_date=first,
        end_date=last,
        dates=[AvailableDate(**item) for item in cached],
    )


# ============================================================================
# APPOINTMENTS
# ============================================================================


@router.get("/appointments", response_model=list[AppointmentResponse])
async def list_appointments(
    patient: Patient = Depends(get_current_patient),
    service: AppointmentService = Depends(get_appointment_service),
):
    return [
        _appointment_response(a, service) for a in service.list_patient_appointments(patient.id)
    ]


@router.get("/appointments/{appointment_id}", response_model=AppointmentResponse)
async def get_appointment(
    appointment_id: int,
    patient: Patient = Depends(get_current_patient),
    service: AppointmentService = Depends(get_appointment_service),
):
    return _appointment_response(service.get_patient_appointment(appointment_id, patient.id), service)


@router.post(
    "/appointments",
    response_model=BookingResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(booking_rate_limit)],
)
async def book_appointment(
    data: AppointmentCreate,
    patient: Patient = Depends(get_current_patient),
    service: AppointmentService = Depends(get_appointment_service),
    gateway: PayMongoGateway = Depends(get_payment_gateway),
):
    """Reserve a slot and open the payment checkout for it"""
    appointment = service.attempt_reserve(
        patient.id, data.service_id, data.slot_id, data.appointment_date
    )

    checkout_url: Optional[str] = None
    try:
        checkout = await open_checkout(service, gateway, appointment)
        checkout_url = checkout.checkout_url
        message = "Appointment reserved. Complete payment to confirm it."
    except GatewayUnavailable:
        logger.warning(f"⚠️ Checkout not opened for appointment {appointment.id}; retry possible")
        message = (
            "Appointment reserved, but the payment page could not be opened. "
            "Please retry payment shortly."
        )

    return BookingResponse(
        appointment=_appointment_response(appointment, service),
        checkout_url=checkout_url,
        message=message,
    )


@router.post(
    "/appointments/{appointment_id}/checkout",
    response_model=CheckoutResponse,
    dependencies=[Depends(booking_rate_limit)],
)
async def retry_checkout(
    appointment_id: int,
    patient: Patient = Depends(get_current_patient),
    service: AppointmentService = Depends(get_appointment_service),
    gateway: PayMongoGateway = Depends(get_payment_gateway),
):
    """Open a new checkout session for a still-pending appointment"""
    appointment = service.get_patient_appointment(appointment_id, patient.id)
    checkout = await open_checkout(service, gateway, appointment)
    return CheckoutResponse(appointment_id=appointment.id, checkout_url=checkout.checkout_url)


@router.post("/appointments/{appointment_id}/cancel", response_model=AppointmentResponse)
async def cancel_appointment(
    appointment_id: int,
    patient: Patient = Depends(get_current_patient),
    service: AppointmentService = Depends(get_appointment_service),
):
    appointment = service.get_patient_appointment(appointment_id, patient.id)
    appointment = service.cancel(appointment, actor=f"patient:{patient.id}")
    return _appointment_response(appointment, service)


@router.post("/appointments/{appointment_id}/reschedule", response_model=AppointmentResponse)
async def reschedule_appointment(
    appointment_id: int,
    data: AppointmentReschedule,
    patient: Patient = Depends(get_current_patient),
    service: AppointmentService = Depends(get_appointment_service),
):
    appointment = service.get_patient_appointment(appointment_id, patient.id)
    appointment = service.reschedule(appointment, data.slot_id, data.appointment_date)
    return _appointment_response(appointment, service)
