"""Tests for the appointment transition table."""

import pytest

from clinic_booking.domain.booking.state_machine import (
    OCCUPYING_VALUES,
    TRANSITIONS,
    AppointmentEvent,
    AppointmentStatus,
    allowed_sources,
    is_terminal,
    next_status,
    require_transition,
)
from clinic_booking.exceptions import InvalidTransition


class TestTransitions:
    def test_pending_can_be_confirmed(self):
        assert (
            next_status(AppointmentStatus.PENDING, AppointmentEvent.CONFIRM_PAYMENT)
            == AppointmentStatus.CONFIRMED
        )

    def test_pending_expires_to_failed_timeout(self):
        assert (
            next_status(AppointmentStatus.PENDING, AppointmentEvent.EXPIRE)
            == AppointmentStatus.FAILED_TIMEOUT
        )

    def test_failed_payment_cancels_pending(self):
        assert (
            next_status(AppointmentStatus.PENDING, AppointmentEvent.PAYMENT_FAILED)
            == AppointmentStatus.CANCELLED
        )

    def test_reschedule_keeps_confirmed(self):
        assert (
            next_status(AppointmentStatus.CONFIRMED, AppointmentEvent.RESCHEDULE)
            == AppointmentStatus.CONFIRMED
        )

    def test_confirmed_cannot_expire(self):
        """A paid appointment is never released by the sweeper"""
        assert next_status(AppointmentStatus.CONFIRMED, AppointmentEvent.EXPIRE) is None

    def test_pending_cannot_be_rescheduled(self):
        assert next_status(AppointmentStatus.PENDING, AppointmentEvent.RESCHEDULE) is None

    @pytest.mark.parametrize(
        "status",
        [AppointmentStatus.CANCELLED, AppointmentStatus.FAILED_TIMEOUT, AppointmentStatus.COMPLETED],
    )
    def test_terminal_statuses_have_no_exits(self, status):
        assert is_terminal(status)
        for event in AppointmentEvent:
            assert next_status(status, event) is None

    def test_accepts_raw_status_strings(self):
        assert next_status("pending", AppointmentEvent.CANCEL) == AppointmentStatus.CANCELLED

    def test_require_transition_raises_for_illegal_pair(self):
        with pytest.raises(InvalidTransition) as exc_info:
            require_transition(AppointmentStatus.FAILED_TIMEOUT, AppointmentEvent.CONFIRM_PAYMENT)
        assert exc_info.value.status_code == 409
        assert exc_info.value.current == "failed_timeout"
        assert "confirm payment" in exc_info.value.detail


class TestHelpers:
    def test_allowed_sources_for_cancel(self):
        assert allowed_sources(AppointmentEvent.CANCEL) == ("confirmed", "pending")

    def test_allowed_sources_for_expire(self):
        assert allowed_sources(AppointmentEvent.EXPIRE) == ("pending",)

    def test_occupying_values(self):
        assert OCCUPYING_VALUES == ("confirmed", "pending")

    def test_every_target_is_a_known_status(self):
        for target in TRANSITIONS.values():
            assert isinstance(target, AppointmentStatus)
