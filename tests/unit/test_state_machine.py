# tests/unit/test_state_machine.py

import pytest

from src.domain.state_machine import (
    BookingStateMachine,
    BookingStatus,
    PaymentStateMachine,
    PaymentStatus,
)
from src.domain.exceptions import InvalidStateTransitionError, InvariantViolationError


# ---------------------
# VALID TRANSITIONS
# ---------------------

def test_valid_happy_path():
    assert BookingStateMachine.can_transition(
        BookingStatus.PENDING,
        BookingStatus.CONFIRMED,
    )

    assert BookingStateMachine.can_transition(
        BookingStatus.CONFIRMED,
        BookingStatus.CANCELLED,
    )


def test_pending_can_be_cancelled():
    assert BookingStateMachine.can_transition(
        BookingStatus.PENDING,
        BookingStatus.CANCELLED,
    )


def test_payment_happy_path():
    assert PaymentStateMachine.can_transition(PaymentStatus.UNPAID, PaymentStatus.PAID)
    assert PaymentStateMachine.can_transition(PaymentStatus.PAID, PaymentStatus.REFUNDED)


# ---------------------
# INVALID TRANSITIONS
# ---------------------

def test_confirmed_cannot_return_to_pending():
    with pytest.raises(InvalidStateTransitionError):
        BookingStateMachine.validate_transition(
            BookingStatus.CONFIRMED,
            BookingStatus.PENDING,
        )


def test_terminal_state_cancelled():
    assert BookingStateMachine.is_terminal(BookingStatus.CANCELLED)

    with pytest.raises(InvalidStateTransitionError):
        BookingStateMachine.validate_transition(
            BookingStatus.CANCELLED,
            BookingStatus.CONFIRMED,
        )


def test_invalid_transition_is_an_invariant_violation():
    with pytest.raises(InvariantViolationError) as exc_info:
        BookingStateMachine.validate_transition(
            BookingStatus.CANCELLED,
            BookingStatus.CONFIRMED,
        )

    assert exc_info.value.from_state == "cancelled"
    assert exc_info.value.to_state == "confirmed"


def test_cannot_refund_unpaid():
    with pytest.raises(InvalidStateTransitionError):
        PaymentStateMachine.validate_transition(
            PaymentStatus.UNPAID,
            PaymentStatus.REFUNDED,
        )


def test_terminal_state_refunded():
    assert PaymentStateMachine.is_terminal(PaymentStatus.REFUNDED)
    assert PaymentStateMachine.get_allowed_transitions(PaymentStatus.REFUNDED) == set()


def test_invalid_type_guard():
    with pytest.raises(TypeError):
        BookingStateMachine.validate_transition(
            "pending",  # invalid type
            BookingStatus.CONFIRMED,
        )


def test_payment_status_rejected_by_booking_machine():
    with pytest.raises(TypeError):
        BookingStateMachine.can_transition(PaymentStatus.UNPAID, BookingStatus.CONFIRMED)
