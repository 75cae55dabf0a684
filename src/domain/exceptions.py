

class SeatInventoryError(Exception):
    """
    Base exception for all domain-level errors
    inside the seat inventory engine.
    """


# -----------------------------
# Not found (client errors, never retried)
# -----------------------------
class NotFoundError(SeatInventoryError):
    """Raised when a referenced flight, fare class or booking is absent."""


class FlightNotFoundError(NotFoundError):

    def __init__(self, flight_id: str):
        self.flight_id = flight_id
        super().__init__(f"Flight {flight_id} not found")


class FareClassNotFoundError(NotFoundError):

    def __init__(self, flight_id: str, fare_class: str):
        self.flight_id = flight_id
        self.fare_class = fare_class
        super().__init__(
            f"Fare class '{fare_class}' not found on flight {flight_id}"
        )


class BookingNotFoundError(NotFoundError):

    def __init__(self, booking_id: str):
        self.booking_id = booking_id
        super().__init__(f"Booking {booking_id} not found")


# -----------------------------
# Capacity
# -----------------------------
class InsufficientCapacityError(SeatInventoryError):
    """Raised when the fare class cannot cover the requested seats."""

    def __init__(self, flight_id: str, fare_class: str, requested: int):
        self.flight_id = flight_id
        self.fare_class = fare_class
        self.requested = requested
        super().__init__(
            f"Sold out: fewer than {requested} seat(s) left in "
            f"'{fare_class}' on flight {flight_id}"
        )


class InvalidReservationError(SeatInventoryError, ValueError):
    """Raised when a reservation request is malformed."""


# -----------------------------
# Infrastructure (safe to retry the whole call)
# -----------------------------
class InfrastructureError(SeatInventoryError):
    """Transient store failure or lost race. The caller may retry."""


class CapacityConflictError(InfrastructureError):
    """Raised when a compare-and-set on seats_available loses a race."""


class ConcurrentModificationError(InfrastructureError):
    """Raised when a booking changed underneath a state transition."""


class UnreconciledCapacityError(InfrastructureError):
    """
    Seats were decremented but the booking could not be written.
    Left for the capacity audit, never retried automatically.
    """


# -----------------------------
# Invariant violations (fatal to the call)
# -----------------------------
class InvariantViolationError(SeatInventoryError):
    """Raised when an operation would break a domain invariant."""


class InvalidStateTransitionError(InvariantViolationError):
    """
    Raised when an illegal state transition is attempted.
    """

    def __init__(self, from_state: str, to_state: str):
        self.from_state = from_state
        self.to_state = to_state

        message = (
            f"Illegal state transition attempted: "
            f"{from_state} -> {to_state}"
        )
        super().__init__(message)


class PnrAllocationError(InvariantViolationError):
    """Raised when no unique PNR could be found within the retry budget."""


class CapacityOverflowError(InvariantViolationError):
    """Raised when releasing seats would exceed the fare class total."""


# -----------------------------
# Collaborators
# -----------------------------
class TicketIssuanceError(SeatInventoryError):
    """Raised by ticket issuers. Never reverses a confirmation."""
