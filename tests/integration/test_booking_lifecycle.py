import hashlib
import hmac
from concurrent.futures import ThreadPoolExecutor

import pytest

from src.application.reservation_engine import ReservationRequest
from src.domain.exceptions import (
    BookingNotFoundError,
    CapacityOverflowError,
    InvalidStateTransitionError,
    InvariantViolationError,
    TicketIssuanceError,
)
from src.domain.state_machine import BookingStatus, PaymentStatus
from src.infrastructure.db.session import session_scope
from src.infrastructure.repositories.booking_repository import BookingRepository
from src.infrastructure.repositories.inventory_repository import InventoryRepository


class FailingTicketIssuer:
    def __init__(self):
        self.calls = 0

    def issue_ticket(self, booking):
        self.calls += 1
        raise TicketIssuanceError("ticket backend unavailable")


def _reserve(services, flight, passenger_count=1, fare_class="economy", **extra):
    return services.reservations.reserve(
        ReservationRequest(
            user_id=extra.pop("user_id", "user-1"),
            flight_id=flight.id,
            fare_class=fare_class,
            passenger_count=passenger_count,
            **extra,
        )
    )


def _seats_available(services, flight_id, fare_class="economy"):
    with session_scope(services.session_factory) as db:
        return InventoryRepository(db).get_fare_class(flight_id, fare_class).seats_available


# ---------------------
# CONFIRM
# ---------------------

def test_confirm_assigns_pnr_ticket_and_drops_hold(services, flight):
    booking = _reserve(services, flight)

    result = services.bookings.confirm(booking.id)

    assert result.already_confirmed is False
    assert result.booking.status == BookingStatus.CONFIRMED
    assert result.booking.payment_status == PaymentStatus.PAID
    assert len(result.booking.pnr) == 6
    assert result.ticket_reference.startswith(f"ETK-{result.booking.pnr}-")
    assert services.bookings.get_hold(booking.id) is None
    assert _seats_available(services, flight.id) == 1

    stored = services.bookings.get_booking(booking.id)
    assert stored.ticket_reference == result.ticket_reference
    assert stored.confirmed_at is not None

    expected_barcode = hmac.new(
        b"test-secret",
        f"{stored.id}:{stored.pnr}".encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()
    assert stored.ticket_barcode == expected_barcode


def test_confirm_is_idempotent(services, flight):
    booking = _reserve(services, flight)
    first = services.bookings.confirm(booking.id)

    second = services.bookings.confirm(booking.id)

    assert second.already_confirmed is True
    assert second.booking.pnr == first.booking.pnr
    assert second.ticket_reference == first.ticket_reference
    assert _seats_available(services, flight.id) == 1


def test_concurrent_confirms_apply_once(services, flight):
    booking = _reserve(services, flight)

    with ThreadPoolExecutor(max_workers=2) as pool:
        results = list(pool.map(lambda _: services.bookings.confirm(booking.id), range(2)))

    assert sorted(r.already_confirmed for r in results) == [False, True]
    assert len({r.booking.pnr for r in results}) == 1


def test_confirm_after_cancel_is_rejected(services, flight):
    booking = _reserve(services, flight)
    services.bookings.cancel(booking.id)

    with pytest.raises(InvalidStateTransitionError) as exc_info:
        services.bookings.confirm(booking.id)

    assert isinstance(exc_info.value, InvariantViolationError)
    assert _seats_available(services, flight.id) == 2
    assert services.bookings.get_booking(booking.id).status == BookingStatus.CANCELLED


def test_confirm_unknown_booking(services):
    with pytest.raises(BookingNotFoundError):
        services.bookings.confirm("missing")


def test_ticket_failure_keeps_confirmation(service_factory, flight):
    issuer = FailingTicketIssuer()
    graph = service_factory(ticket_issuer=issuer)
    booking = _reserve(graph, flight)

    result = graph.bookings.confirm(booking.id)

    assert issuer.calls == 1
    assert result.ticket_reference is None
    stored = graph.bookings.get_booking(booking.id)
    assert stored.status == BookingStatus.CONFIRMED
    assert stored.pnr is not None
    assert stored.ticket_reference is None


def test_ticket_can_be_retried_after_failure(service_factory, services, flight):
    failing = service_factory(ticket_issuer=FailingTicketIssuer())
    booking = _reserve(failing, flight)
    failing.bookings.confirm(booking.id)

    reference = services.bookings.retry_ticket_issuance(booking.id)

    assert reference.startswith("ETK-")
    assert services.bookings.retry_ticket_issuance(booking.id) == reference


def test_ticket_retry_requires_confirmation(services, flight):
    booking = _reserve(services, flight)

    with pytest.raises(InvalidStateTransitionError):
        services.bookings.retry_ticket_issuance(booking.id)


# ---------------------
# CANCEL
# ---------------------

def test_cancel_pending_restores_seats(services, flight):
    booking = _reserve(services, flight, passenger_count=2)
    assert _seats_available(services, flight.id) == 0

    cancelled = services.bookings.cancel(booking.id, reason="changed plans")

    assert cancelled.status == BookingStatus.CANCELLED
    assert cancelled.cancellation_reason == "changed plans"
    assert cancelled.cancelled_at is not None
    assert services.bookings.get_hold(booking.id) is None
    assert _seats_available(services, flight.id) == 2


def test_cancel_is_idempotent(services, flight):
    booking = _reserve(services, flight)

    services.bookings.cancel(booking.id)
    services.bookings.cancel(booking.id)

    assert _seats_available(services, flight.id) == 2


def test_cancel_confirmed_keeps_payment_status(services, flight):
    booking = _reserve(services, flight)
    services.bookings.confirm(booking.id)

    cancelled = services.bookings.cancel(booking.id)

    assert cancelled.status == BookingStatus.CANCELLED
    assert cancelled.payment_status == PaymentStatus.PAID
    assert _seats_available(services, flight.id) == 2


def test_reserve_cancel_then_seats_can_be_resold(services, flight):
    first = _reserve(services, flight, passenger_count=2)
    services.bookings.cancel(first.id)

    second = _reserve(services, flight, passenger_count=2, user_id="user-2")

    assert second.status == BookingStatus.PENDING
    assert _seats_available(services, flight.id) == 0


def test_release_overflow_rolls_back_cancel(services, flight, monkeypatch):
    booking = _reserve(services, flight)
    monkeypatch.setattr(InventoryRepository, "release", lambda self, *args: False)

    with pytest.raises(CapacityOverflowError):
        services.bookings.cancel(booking.id)

    stored = services.bookings.get_booking(booking.id)
    assert stored.status == BookingStatus.PENDING
    assert stored.cancelled_at is None
    assert services.bookings.get_hold(booking.id) is not None
    assert _seats_available(services, flight.id) == 1


# ---------------------
# PAYMENT BOOKKEEPING
# ---------------------

def test_mark_paid_does_not_confirm(services, flight):
    booking = _reserve(services, flight)

    paid = services.bookings.mark_paid(booking.id)

    assert paid.payment_status == PaymentStatus.PAID
    assert paid.status == BookingStatus.PENDING
    assert paid.paid_at is not None


def test_mark_paid_rejected_on_cancelled(services, flight):
    booking = _reserve(services, flight)
    services.bookings.cancel(booking.id)

    with pytest.raises(InvalidStateTransitionError):
        services.bookings.mark_paid(booking.id)


def test_mark_paid_loses_to_concurrent_cancel(services, flight, monkeypatch):
    booking = _reserve(services, flight)
    original = BookingRepository.transition_payment_status

    def cancel_first(self, *args, **kwargs):
        # The booking row was read as pending; cancel it before the write.
        services.bookings.cancel(booking.id)
        return original(self, *args, **kwargs)

    monkeypatch.setattr(BookingRepository, "transition_payment_status", cancel_first)

    with pytest.raises(InvalidStateTransitionError):
        services.bookings.mark_paid(booking.id)

    stored = services.bookings.get_booking(booking.id)
    assert stored.status == BookingStatus.CANCELLED
    assert stored.payment_status == PaymentStatus.UNPAID
    assert stored.paid_at is None


def test_refund_after_cancel(services, flight):
    booking = _reserve(services, flight)
    services.bookings.confirm(booking.id)
    services.bookings.cancel(booking.id)

    refunded = services.bookings.mark_refunded(booking.id)

    assert refunded.payment_status == PaymentStatus.REFUNDED


def test_refund_requires_cancellation(services, flight):
    booking = _reserve(services, flight)
    services.bookings.confirm(booking.id)

    with pytest.raises(InvalidStateTransitionError):
        services.bookings.mark_refunded(booking.id)


def test_refund_requires_payment(services, flight):
    booking = _reserve(services, flight)
    services.bookings.cancel(booking.id)

    with pytest.raises(InvalidStateTransitionError):
        services.bookings.mark_refunded(booking.id)


# ---------------------
# READ ACCESSORS
# ---------------------

def test_lookup_by_pnr_is_case_insensitive(services, flight):
    booking = _reserve(services, flight)
    confirmed = services.bookings.confirm(booking.id).booking

    found = services.bookings.get_booking_by_pnr(f" {confirmed.pnr.lower()} ")

    assert found.id == booking.id


def test_list_user_bookings(services, flight):
    _reserve(services, flight, user_id="user-1")
    _reserve(services, flight, fare_class="business", user_id="user-1")
    _reserve(services, flight, fare_class="business", user_id="user-2")

    bookings = services.bookings.list_user_bookings("user-1")

    assert len(bookings) == 2
    assert {b.user_id for b in bookings} == {"user-1"}
    assert len(services.bookings.list_user_bookings("user-1", limit=1)) == 1
