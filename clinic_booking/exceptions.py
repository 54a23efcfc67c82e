"""Booking engine error taxonomy.

Each error carries the HTTP status it maps to and a user-facing message;
``main.py`` renders them through a single exception handler.
"""

from typing import Optional


class BookingError(Exception):
    """Base class for all booking engine errors"""

    status_code = 400
    code = "booking_error"
    default_detail = "Booking request failed"

    def __init__(self, detail: Optional[str] = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class SlotConflict(BookingError):
    """Requested slot/date is already occupied"""

    status_code = 409
    code = "slot_conflict"
    default_detail = "This time slot is already booked. Please choose another time."


class ActiveBookingExists(BookingError):
    """Patient already holds a pending or confirmed appointment"""

    status_code = 409
    code = "active_booking_exists"
    default_detail = (
        "You already have a pending or scheduled appointment. "
        "Please cancel it first to book a new one."
    )


class LeadTimeViolation(BookingError):
    """Date too soon / too far, or cancellation too close to the start time"""

    status_code = 422
    code = "lead_time_violation"
    default_detail = "Appointments must be scheduled at least 1 day in advance."


class NotFound(BookingError):
    status_code = 404
    code = "not_found"
    default_detail = "Appointment not found."


class InvalidTransition(BookingError):
    """Status change not allowed from the appointment's current status"""

    status_code = 409
    code = "invalid_transition"

    def __init__(self, current: str, event: str):
        self.current = current
        self.event = event
        super().__init__(f"Cannot {event.replace('_', ' ')} an appointment that is {current}.")


class GatewayUnavailable(BookingError):
    """Payment gateway call failed or timed out; caller may retry later"""

    status_code = 503
    code = "gateway_unavailable"
    default_detail = "Payment provider is temporarily unavailable. Please try again shortly."


class SignatureInvalid(BookingError):
    """Webhook signature missing or wrong"""

    status_code = 401
    code = "signature_invalid"
    default_detail = "Invalid webhook signature"


class PaymentInProgress(BookingError):
    """Checkout session already paid or still being processed by the gateway"""

    status_code = 409
    code = "payment_in_progress"
    default_detail = "A payment for this appointment is already being processed."
