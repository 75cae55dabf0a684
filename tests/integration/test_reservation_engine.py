from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest

from src.application.reservation_engine import ReservationRequest
from src.domain.exceptions import (
    FareClassNotFoundError,
    FlightNotFoundError,
    InsufficientCapacityError,
    InvalidReservationError,
)
from src.domain.payment import PaymentMethod
from src.domain.state_machine import BookingStatus, PaymentStatus
from src.infrastructure.db.session import session_scope
from src.infrastructure.repositories.inventory_repository import InventoryRepository


@pytest.fixture(params=["transactional", "conditional"])
def capacity_strategy(request):
    return request.param


def _request(flight, fare_class="economy", passenger_count=1, **overrides):
    return ReservationRequest(
        user_id=overrides.pop("user_id", "user-1"),
        flight_id=flight.id,
        fare_class=fare_class,
        passenger_count=passenger_count,
        **overrides,
    )


def _seats_available(services, flight_id, fare_class="economy"):
    with session_scope(services.session_factory) as db:
        return InventoryRepository(db).get_fare_class(flight_id, fare_class).seats_available


def test_reserve_creates_pending_booking_and_hold(services, flight, clock):
    booking = services.reservations.reserve(
        _request(
            flight,
            passenger_count=2,
            passengers=[{"name": "Asha Rao"}, {"name": "Vikram Rao"}],
            seat_numbers=["12A", "12B"],
            payment_method=PaymentMethod.CARD,
        )
    )

    assert booking.status == BookingStatus.PENDING
    assert booking.payment_status == PaymentStatus.UNPAID
    assert booking.payment_method == PaymentMethod.CARD
    assert booking.fare_amount == 2 * 4500
    assert booking.pnr is None
    assert _seats_available(services, flight.id) == 0

    hold = services.bookings.get_hold(booking.id)
    assert hold.count == 2
    assert hold.seat_numbers == ["12A", "12B"]
    expected_expiry = (clock() + timedelta(minutes=10)).replace(tzinfo=None)
    assert hold.expires_at.replace(tzinfo=None) == expected_expiry


def test_sold_out_leaves_capacity_untouched(services, flight):
    services.reservations.reserve(_request(flight, passenger_count=1))

    with pytest.raises(InsufficientCapacityError) as exc_info:
        services.reservations.reserve(_request(flight, passenger_count=2))

    assert str(exc_info.value).startswith("Sold out")
    assert _seats_available(services, flight.id) == 1


def test_unknown_flight(services, flight):
    with pytest.raises(FlightNotFoundError):
        services.reservations.reserve(
            ReservationRequest(
                user_id="user-1",
                flight_id="missing",
                fare_class="economy",
                passenger_count=1,
            )
        )


def test_unknown_fare_class(services, flight):
    with pytest.raises(FareClassNotFoundError):
        services.reservations.reserve(_request(flight, fare_class="first"))


@pytest.mark.parametrize(
    "overrides",
    [
        {"passenger_count": 0},
        {"passenger_count": 1, "passengers": [{"name": "A"}, {"name": "B"}]},
        {"passenger_count": 2, "seat_numbers": ["1A"]},
        {"passenger_count": 2, "seat_numbers": ["1A", "1A"]},
    ],
)
def test_invalid_requests_rejected(services, flight, overrides):
    with pytest.raises(InvalidReservationError):
        services.reservations.reserve(_request(flight, **overrides))

    assert _seats_available(services, flight.id) == 2


def test_fare_classes_are_independent(services, flight):
    services.reservations.reserve(_request(flight, passenger_count=2))
    services.reservations.reserve(_request(flight, fare_class="business", passenger_count=3))

    assert _seats_available(services, flight.id, "economy") == 0
    assert _seats_available(services, flight.id, "business") == 1


def test_concurrent_reservations_never_oversell(services, flight):
    def attempt(user_id):
        try:
            services.reservations.reserve(
                _request(flight, passenger_count=2, user_id=user_id)
            )
            return "ok"
        except InsufficientCapacityError:
            return "sold_out"

    with ThreadPoolExecutor(max_workers=2) as pool:
        outcomes = list(pool.map(attempt, ["user-a", "user-b"]))

    assert sorted(outcomes) == ["ok", "sold_out"]
    assert _seats_available(services, flight.id) == 0


def test_many_concurrent_single_seat_reservations(services, flight):
    def attempt(index):
        try:
            services.reservations.reserve(
                _request(flight, fare_class="business", user_id=f"user-{index}")
            )
            return True
        except InsufficientCapacityError:
            return False

    with ThreadPoolExecutor(max_workers=6) as pool:
        results = list(pool.map(attempt, range(10)))

    assert results.count(True) == 4
    assert _seats_available(services, flight.id, "business") == 0
    audit = services.inventory.audit_capacity(flight.id)
    assert all(entry.is_consistent for entry in audit)


def test_pnr_assigned_on_reserve_when_configured(service_factory, flight):
    graph = service_factory(pnr_on_reserve=True)

    booking = graph.reservations.reserve(_request(flight))

    assert booking.pnr is not None
    assert len(booking.pnr) == 6
