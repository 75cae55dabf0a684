import pytest

from src.application.pnr_allocator import PnrAllocator
from src.application.reservation_engine import ReservationRequest
from src.domain.exceptions import PnrAllocationError
from src.infrastructure.db.session import session_scope


def _confirmed_pnr(services, flight):
    booking = services.reservations.reserve(
        ReservationRequest(user_id="u1", flight_id=flight.id, fare_class="economy", passenger_count=1)
    )
    return services.bookings.confirm(booking.id).booking.pnr


def test_collision_is_retried(services, flight, caplog):
    taken = _confirmed_pnr(services, flight)
    candidates = iter([taken, "NEW234"])
    allocator = PnrAllocator(generate=lambda: next(candidates), max_attempts=3)

    with session_scope(services.session_factory) as db:
        with caplog.at_level("WARNING"):
            assert allocator.allocate(db) == "NEW234"

    assert "PNR collision" in caplog.text


def test_exhausted_attempts_raise(services, flight):
    taken = _confirmed_pnr(services, flight)
    allocator = PnrAllocator(generate=lambda: taken, max_attempts=2)

    with session_scope(services.session_factory) as db:
        with pytest.raises(PnrAllocationError):
            allocator.allocate(db)
