import logging
from dataclasses import dataclass, field
from datetime import timedelta

from sqlalchemy.exc import OperationalError, TimeoutError as SQLAlchemyTimeoutError
from sqlalchemy.orm import Session, sessionmaker

from src.application.capacity import CapacityReservation, ConditionalUpdateReservation
from src.application.clock import Clock, utc_now
from src.application.pnr_allocator import PnrAllocator
from src.domain.exceptions import (
    CapacityConflictError,
    FareClassNotFoundError,
    FlightNotFoundError,
    InfrastructureError,
    InvalidReservationError,
    SeatInventoryError,
    UnreconciledCapacityError,
)
from src.domain.payment import PaymentMethod
from src.infrastructure.config import Settings
from src.infrastructure.db.models import Booking, FareClass
from src.infrastructure.db.session import session_scope
from src.infrastructure.repositories.booking_repository import BookingRepository
from src.infrastructure.repositories.hold_repository import HoldRepository
from src.infrastructure.repositories.inventory_repository import InventoryRepository

logger = logging.getLogger(__name__)

# Failures of the capacity step that say nothing about seat availability.
_STORE_FAILURES = (OperationalError, SQLAlchemyTimeoutError)


@dataclass
class ReservationRequest:
    user_id: str
    flight_id: str
    fare_class: str
    passenger_count: int
    passengers: list[dict] = field(default_factory=list)
    seat_numbers: list[str] = field(default_factory=list)
    payment_method: PaymentMethod = PaymentMethod.IN_PERSON


class ReservationEngine:
    """
    Turns a seat request into a pending booking backed by a hold.

    Seats are taken from the fare class before the booking exists.
    With a transactional strategy the decrement, booking and hold commit
    together. With the conditional-update strategy the decrement commits
    first and the booking is written in a second unit of work.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        settings: Settings,
        capacity: CapacityReservation,
        pnr_allocator: PnrAllocator,
        clock: Clock = utc_now,
    ):
        self._session_factory = session_factory
        self._settings = settings
        self._capacity = capacity
        self._fallback = ConditionalUpdateReservation()
        self._pnr_allocator = pnr_allocator
        self._clock = clock

    def reserve(self, request: ReservationRequest) -> Booking:
        self._validate(request)

        try:
            return self._reserve_with(self._capacity, request)
        except (CapacityConflictError, *_STORE_FAILURES) as exc:
            if not self._can_fall_back():
                raise self._as_infrastructure_error(exc) from exc
            logger.warning(
                "Capacity strategy '%s' failed for flight=%s fare_class=%s (%s); "
                "falling back to conditional update",
                self._capacity.name,
                request.flight_id,
                request.fare_class,
                exc.__class__.__name__,
            )

        try:
            return self._reserve_with(self._fallback, request)
        except _STORE_FAILURES as exc:
            raise self._as_infrastructure_error(exc) from exc

    def _can_fall_back(self) -> bool:
        return self._settings.capacity_fallback_enabled and self._capacity.shares_transaction

    @staticmethod
    def _as_infrastructure_error(exc: Exception) -> InfrastructureError:
        if isinstance(exc, InfrastructureError):
            return exc
        return InfrastructureError("Inventory store unavailable, retry the reservation")

    @staticmethod
    def _validate(request: ReservationRequest) -> None:
        if request.passenger_count < 1:
            raise InvalidReservationError("passenger_count must be >= 1")
        if len(request.passengers) > request.passenger_count:
            raise InvalidReservationError(
                "more passenger details than passenger_count"
            )
        if request.seat_numbers:
            if len(request.seat_numbers) != request.passenger_count:
                raise InvalidReservationError(
                    "seat_numbers must list one seat per passenger"
                )
            if len(set(request.seat_numbers)) != len(request.seat_numbers):
                raise InvalidReservationError("seat_numbers contains duplicates")

    def _reserve_with(
        self,
        capacity: CapacityReservation,
        request: ReservationRequest,
    ) -> Booking:
        with session_scope(self._session_factory) as db:
            fare_class = self._resolve_fare_class(db, request)
            capacity.take(db, fare_class, request.passenger_count)
            if capacity.shares_transaction:
                return self._open_booking(db, request, fare_class)

        # The decrement is committed. From here a failure leaves seats
        # taken with no booking; the capacity audit reports it.
        try:
            with session_scope(self._session_factory) as db:
                return self._open_booking(db, request, fare_class)
        except Exception as exc:
            logger.error(
                "Seats decremented without a booking: flight=%s fare_class=%s seats=%s user=%s. "
                "Reconcile with the capacity audit.",
                request.flight_id,
                request.fare_class,
                request.passenger_count,
                request.user_id,
            )
            if isinstance(exc, SeatInventoryError):
                raise
            raise UnreconciledCapacityError(
                "Booking could not be recorded after seats were taken; retry the reservation"
            ) from exc

    @staticmethod
    def _resolve_fare_class(db: Session, request: ReservationRequest) -> FareClass:
        inventory = InventoryRepository(db)

        if inventory.get_flight(request.flight_id) is None:
            raise FlightNotFoundError(request.flight_id)

        fare_class = inventory.get_fare_class(request.flight_id, request.fare_class)
        if fare_class is None:
            raise FareClassNotFoundError(request.flight_id, request.fare_class)
        return fare_class

    def _open_booking(
        self,
        db: Session,
        request: ReservationRequest,
        fare_class: FareClass,
    ) -> Booking:
        booking = BookingRepository(db).create_booking(
            user_id=request.user_id,
            flight_id=request.flight_id,
            fare_class=fare_class.name,
            passenger_count=request.passenger_count,
            passengers=list(request.passengers),
            seat_numbers=list(request.seat_numbers),
            fare_amount=fare_class.price * request.passenger_count,
            payment_method=request.payment_method,
        )
        if self._settings.pnr_on_reserve:
            booking.pnr = self._pnr_allocator.allocate(db)

        expires_at = self._clock() + timedelta(minutes=self._settings.hold_duration_minutes)
        HoldRepository(db).create_hold(
            booking_id=booking.id,
            flight_id=request.flight_id,
            fare_class=fare_class.name,
            count=request.passenger_count,
            seat_numbers=list(request.seat_numbers),
            expires_at=expires_at,
        )
        db.flush()

        logger.info(
            "Reserved %s seat(s) flight=%s fare_class=%s booking=%s hold_expires_at=%s",
            request.passenger_count,
            request.flight_id,
            fare_class.name,
            booking.id,
            expires_at.isoformat(),
        )
        return booking
