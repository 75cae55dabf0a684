import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.exc import OperationalError, TimeoutError as SQLAlchemyTimeoutError

from src.api.schemas.schemas import (
    BookingResponse,
    CancelRequest,
    CapacityAuditResponse,
    ConfirmationResponse,
    FareClassResponse,
    FlightCreate,
    FlightResponse,
    HoldResponse,
    PaymentConfirmedEvent,
    PublicBookingResponse,
    ReserveRequest,
    SweepResponse,
    TicketResponse,
)
from src.application.booking_service import ConfirmationResult
from src.application.inventory_service import FareClassDefinition
from src.application.reservation_engine import ReservationRequest
from src.bootstrap import Services
from src.domain.exceptions import (
    InfrastructureError,
    InsufficientCapacityError,
    InvalidReservationError,
    InvariantViolationError,
    NotFoundError,
    PnrAllocationError,
    SeatInventoryError,
    TicketIssuanceError,
)
from src.domain.state_machine import BookingStatus, PaymentStatus
from src.infrastructure.db.models import Booking, Flight, Hold

router = APIRouter()
logger = logging.getLogger(__name__)

# Errors a route translates; anything else is a 500 from FastAPI.
_HANDLED_ERRORS = (SeatInventoryError, OperationalError, SQLAlchemyTimeoutError)


def get_services(request: Request) -> Services:
    return request.app.state.services


def _is_db_degraded(exc: Exception) -> bool:
    return isinstance(exc, (OperationalError, SQLAlchemyTimeoutError))


def _http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, InsufficientCapacityError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if isinstance(exc, InvalidReservationError):
        return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))
    if isinstance(exc, PnrAllocationError):
        logger.error("PNR allocation exhausted: %s", exc)
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Could not allocate a booking reference",
        )
    if isinstance(exc, InvariantViolationError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if isinstance(exc, TicketIssuanceError):
        return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc))
    if isinstance(exc, InfrastructureError) or _is_db_degraded(exc):
        logger.warning("Request failed on the inventory store: %s", exc)
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Inventory temporarily unavailable. Please retry.",
        )
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="Unexpected inventory error",
    )


def _iso(value) -> str | None:
    return value.isoformat() if value else None


def _booking_response(booking: Booking, hold: Hold | None = None) -> BookingResponse:
    return BookingResponse(
        booking_id=booking.id,
        user_id=booking.user_id,
        flight_id=booking.flight_id,
        fare_class=booking.fare_class,
        passenger_count=booking.passenger_count,
        passengers=list(booking.passengers or []),
        seat_numbers=list(booking.seat_numbers or []),
        fare_amount=booking.fare_amount,
        payment_method=booking.payment_method.value,
        payment_status=booking.payment_status.value,
        status=booking.status.value,
        pnr=booking.pnr,
        ticket_reference=booking.ticket_reference,
        cancellation_reason=booking.cancellation_reason,
        hold_expires_at=_iso(hold.expires_at) if hold else None,
        created_at=_iso(booking.created_at),
    )


def _confirmation_response(result: ConfirmationResult) -> ConfirmationResponse:
    return ConfirmationResponse(
        booking=_booking_response(result.booking),
        ticket_reference=result.ticket_reference,
        already_confirmed=result.already_confirmed,
    )


def _flight_response(flight: Flight) -> FlightResponse:
    return FlightResponse(
        id=flight.id,
        flight_number=flight.flight_number,
        origin=flight.origin,
        destination=flight.destination,
        departure_time=flight.departure_time.isoformat(),
        arrival_time=flight.arrival_time.isoformat(),
        status=flight.status,
        fare_classes=[
            FareClassResponse(
                name=fare.name,
                price=fare.price,
                total_seats=fare.total_seats,
                seats_available=fare.seats_available,
            )
            for fare in flight.fare_classes
        ],
    )


def _mask_passport(value: str | None) -> str | None:
    if not value:
        return None
    if len(value) <= 4:
        return "****"
    return f"{value[:2]}****{value[-2:]}"


def _mask_email(value: str | None) -> str | None:
    if not value or "@" not in value:
        return None
    local, domain = value.split("@", 1)
    return f"{local[:2]}****@{domain}"


def _public_booking_response(booking: Booking) -> PublicBookingResponse:
    return PublicBookingResponse(
        pnr=booking.pnr,
        flight_id=booking.flight_id,
        fare_class=booking.fare_class,
        passenger_count=booking.passenger_count,
        passengers=[
            {
                "name": passenger.get("name"),
                "passport": _mask_passport(passenger.get("passport")),
                "email": _mask_email(passenger.get("email")),
            }
            for passenger in booking.passengers or []
        ],
        seat_numbers=list(booking.seat_numbers or []),
        status=booking.status.value,
        payment_status=booking.payment_status.value,
    )


# -----------------------------
# Service
# -----------------------------
@router.get("/health")
def health():
    return {"message": "Seat Inventory Engine is running"}


# -----------------------------
# Flights and capacity
# -----------------------------
@router.post("/flights", response_model=FlightResponse, status_code=status.HTTP_201_CREATED)
def create_flight(
    request: FlightCreate,
    services: Services = Depends(get_services),
):
    try:
        flight = services.inventory.create_flight(
            flight_number=request.flight_number,
            origin=request.origin,
            destination=request.destination,
            departure_time=request.departure_time,
            arrival_time=request.arrival_time,
            fare_classes=[
                FareClassDefinition(name=fare.name, price=fare.price, total_seats=fare.total_seats)
                for fare in request.fare_classes
            ],
        )
    except _HANDLED_ERRORS as exc:
        raise _http_error(exc) from exc

    return _flight_response(flight)


@router.get("/flights/{flight_id}", response_model=FlightResponse)
def get_flight(
    flight_id: str,
    services: Services = Depends(get_services),
):
    try:
        flight = services.inventory.get_flight(flight_id)
    except _HANDLED_ERRORS as exc:
        raise _http_error(exc) from exc

    return _flight_response(flight)


@router.get("/inventory/audit", response_model=list[CapacityAuditResponse])
def audit_inventory(
    flight_id: str | None = None,
    services: Services = Depends(get_services),
):
    try:
        entries = services.inventory.audit_capacity(flight_id)
    except _HANDLED_ERRORS as exc:
        raise _http_error(exc) from exc

    return [
        CapacityAuditResponse(
            flight_id=entry.flight_id,
            fare_class=entry.fare_class,
            total_seats=entry.total_seats,
            seats_available=entry.seats_available,
            held_or_sold=entry.held_or_sold,
            expected_available=entry.expected_available,
            discrepancy=entry.discrepancy,
            consistent=entry.is_consistent,
        )
        for entry in entries
    ]


# -----------------------------
# Bookings
# -----------------------------
@router.post("/bookings", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
def reserve_seats(
    request: ReserveRequest,
    services: Services = Depends(get_services),
):
    try:
        booking = services.reservations.reserve(
            ReservationRequest(
                user_id=request.user_id,
                flight_id=request.flight_id,
                fare_class=request.fare_class,
                passenger_count=request.passenger_count,
                passengers=[p.model_dump(exclude_none=True) for p in request.passengers],
                seat_numbers=request.seat_numbers,
                payment_method=request.payment_method,
            )
        )
        hold = services.bookings.get_hold(booking.id)
    except _HANDLED_ERRORS as exc:
        raise _http_error(exc) from exc

    return _booking_response(booking, hold)


@router.get("/bookings", response_model=list[BookingResponse])
def list_bookings(
    user_id: str,
    limit: int = 20,
    offset: int = 0,
    services: Services = Depends(get_services),
):
    safe_limit = max(1, min(limit, 100))
    try:
        bookings = services.bookings.list_user_bookings(
            user_id,
            limit=safe_limit,
            offset=max(0, offset),
        )
    except _HANDLED_ERRORS as exc:
        raise _http_error(exc) from exc

    return [_booking_response(booking) for booking in bookings]


@router.get("/bookings/lookup", response_model=PublicBookingResponse)
def lookup_booking(
    pnr: str,
    services: Services = Depends(get_services),
):
    if not pnr.strip():
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="pnr is required",
        )

    try:
        booking = services.bookings.get_booking_by_pnr(pnr)
    except _HANDLED_ERRORS as exc:
        raise _http_error(exc) from exc

    is_public = (
        booking.status == BookingStatus.CONFIRMED
        or booking.payment_status == PaymentStatus.PAID
    )
    if not is_public:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Booking is not available for public viewing",
        )
    return _public_booking_response(booking)


@router.get("/bookings/{booking_id}", response_model=BookingResponse)
def get_booking(
    booking_id: str,
    services: Services = Depends(get_services),
):
    try:
        booking = services.bookings.get_booking(booking_id)
        hold = services.bookings.get_hold(booking_id)
    except _HANDLED_ERRORS as exc:
        raise _http_error(exc) from exc

    return _booking_response(booking, hold)


@router.get("/bookings/{booking_id}/hold", response_model=HoldResponse)
def get_hold(
    booking_id: str,
    services: Services = Depends(get_services),
):
    try:
        hold = services.bookings.get_hold(booking_id)
    except _HANDLED_ERRORS as exc:
        raise _http_error(exc) from exc

    if not hold:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No active hold for booking {booking_id}",
        )
    return HoldResponse(
        booking_id=hold.booking_id,
        fare_class=hold.fare_class,
        count=hold.count,
        expires_at=hold.expires_at.isoformat(),
    )


@router.post("/bookings/{booking_id}/confirm", response_model=ConfirmationResponse)
def confirm_booking(
    booking_id: str,
    services: Services = Depends(get_services),
):
    try:
        result = services.bookings.confirm(booking_id)
    except _HANDLED_ERRORS as exc:
        raise _http_error(exc) from exc

    return _confirmation_response(result)


@router.post("/bookings/{booking_id}/cancel", response_model=BookingResponse)
def cancel_booking(
    booking_id: str,
    request: CancelRequest | None = None,
    services: Services = Depends(get_services),
):
    reason = request.reason if request else None
    try:
        booking = services.bookings.cancel(booking_id, reason=reason)
    except _HANDLED_ERRORS as exc:
        raise _http_error(exc) from exc

    return _booking_response(booking)


@router.post("/bookings/{booking_id}/mark-paid", response_model=BookingResponse)
def mark_booking_paid(
    booking_id: str,
    services: Services = Depends(get_services),
):
    try:
        booking = services.bookings.mark_paid(booking_id)
    except _HANDLED_ERRORS as exc:
        raise _http_error(exc) from exc

    return _booking_response(booking)


@router.post("/bookings/{booking_id}/refund", response_model=BookingResponse)
def refund_booking(
    booking_id: str,
    services: Services = Depends(get_services),
):
    try:
        booking = services.bookings.mark_refunded(booking_id)
    except _HANDLED_ERRORS as exc:
        raise _http_error(exc) from exc

    return _booking_response(booking)


@router.post("/bookings/{booking_id}/ticket", response_model=TicketResponse)
def issue_ticket(
    booking_id: str,
    services: Services = Depends(get_services),
):
    try:
        reference = services.bookings.retry_ticket_issuance(booking_id)
    except _HANDLED_ERRORS as exc:
        raise _http_error(exc) from exc

    return TicketResponse(booking_id=booking_id, ticket_reference=reference)


# -----------------------------
# Payment signal
# -----------------------------
@router.post("/payments/confirmed", response_model=ConfirmationResponse)
def payment_confirmed(
    event: PaymentConfirmedEvent,
    services: Services = Depends(get_services),
):
    try:
        result = services.bookings.confirm(event.booking_id)
    except _HANDLED_ERRORS as exc:
        raise _http_error(exc) from exc

    logger.info(
        "Payment signal handled for booking %s (already_confirmed=%s)",
        event.booking_id,
        result.already_confirmed,
    )
    return _confirmation_response(result)


# -----------------------------
# Hold expiry
# -----------------------------
@router.post("/holds/sweep", response_model=SweepResponse)
def sweep_holds(services: Services = Depends(get_services)):
    try:
        result = services.sweeper.sweep_once()
    except _HANDLED_ERRORS as exc:
        raise _http_error(exc) from exc

    return SweepResponse(
        expired=result.expired,
        skipped=result.skipped,
        failed=result.failed,
    )
