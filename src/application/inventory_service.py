import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from src.domain.exceptions import FlightNotFoundError, InvalidReservationError
from src.infrastructure.db.models import Flight
from src.infrastructure.db.session import session_scope
from src.infrastructure.repositories.booking_repository import BookingRepository
from src.infrastructure.repositories.inventory_repository import InventoryRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FareClassDefinition:
    name: str
    price: int
    total_seats: int


@dataclass(frozen=True)
class CapacityAuditEntry:
    flight_id: str
    fare_class: str
    total_seats: int
    seats_available: int
    held_or_sold: int

    @property
    def expected_available(self) -> int:
        return self.total_seats - self.held_or_sold

    @property
    def discrepancy(self) -> int:
        # Negative: seats missing from the counter (e.g. orphaned decrements).
        return self.seats_available - self.expected_available

    @property
    def is_consistent(self) -> bool:
        return self.discrepancy == 0


class InventoryService:
    """Flight setup and a read-only capacity audit."""

    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory

    def create_flight(
        self,
        flight_number: str,
        origin: str,
        destination: str,
        departure_time: datetime,
        arrival_time: datetime,
        fare_classes: list[FareClassDefinition],
    ) -> Flight:
        names = [fare.name for fare in fare_classes]
        if not names:
            raise InvalidReservationError("A flight needs at least one fare class")
        if len(set(names)) != len(names):
            raise InvalidReservationError(f"Duplicate fare class names: {names}")
        for fare in fare_classes:
            if fare.price < 0 or fare.total_seats < 0:
                raise InvalidReservationError(
                    f"Fare class '{fare.name}' needs a non-negative price and seat total"
                )
        if arrival_time <= departure_time:
            raise InvalidReservationError("arrival_time must be after departure_time")

        try:
            with session_scope(self._session_factory) as db:
                flight = InventoryRepository(db).create_flight(
                    flight_number=flight_number,
                    origin=origin,
                    destination=destination,
                    departure_time=departure_time,
                    arrival_time=arrival_time,
                    fare_classes=[(fare.name, fare.price, fare.total_seats) for fare in fare_classes],
                )
        except IntegrityError as exc:
            raise InvalidReservationError(
                f"Flight {flight_number} departing {departure_time.isoformat()} already exists"
            ) from exc

        logger.info(
            "Created flight %s %s-%s with fare classes %s",
            flight.flight_number,
            flight.origin,
            flight.destination,
            names,
        )
        return flight

    def get_flight(self, flight_id: str) -> Flight:
        with session_scope(self._session_factory) as db:
            flight = InventoryRepository(db).get_flight(flight_id)
            if not flight:
                raise FlightNotFoundError(flight_id)
            return flight

    def audit_capacity(self, flight_id: str | None = None) -> list[CapacityAuditEntry]:
        """
        Compare each fare class counter with the seats its live bookings
        account for. Mismatches are reported, never corrected.
        """
        with session_scope(self._session_factory) as db:
            inventory = InventoryRepository(db)
            if flight_id and inventory.get_flight(flight_id) is None:
                raise FlightNotFoundError(flight_id)

            bookings = BookingRepository(db)
            entries = [
                CapacityAuditEntry(
                    flight_id=fare_class.flight_id,
                    fare_class=fare_class.name,
                    total_seats=fare_class.total_seats,
                    seats_available=fare_class.seats_available,
                    held_or_sold=bookings.seats_held_or_sold(fare_class.flight_id, fare_class.name),
                )
                for fare_class in inventory.list_fare_classes(flight_id)
            ]

        for entry in entries:
            if not entry.is_consistent:
                logger.warning(
                    "Capacity mismatch flight=%s fare_class=%s available=%s expected=%s",
                    entry.flight_id,
                    entry.fare_class,
                    entry.seats_available,
                    entry.expected_available,
                )
        return entries
