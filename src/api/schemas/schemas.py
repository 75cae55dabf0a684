from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from src.domain.payment import PaymentMethod


class PassengerDetails(BaseModel):
    name: str = Field(min_length=1)
    dob: str | None = None
    passport: str | None = None
    email: str | None = None
    phone: str | None = None


class ReserveRequest(BaseModel):
    user_id: str
    flight_id: str
    fare_class: str
    passenger_count: int = Field(gt=0)
    passengers: list[PassengerDetails] = Field(default_factory=list)
    seat_numbers: list[str] = Field(default_factory=list)
    payment_method: PaymentMethod = PaymentMethod.IN_PERSON

    @field_validator("payment_method", mode="before")
    @classmethod
    def _normalize_payment_method(cls, value):
        if isinstance(value, str):
            return PaymentMethod.from_legacy(value)
        return value


class BookingResponse(BaseModel):
    booking_id: str
    user_id: str
    flight_id: str
    fare_class: str
    passenger_count: int
    passengers: list[dict]
    seat_numbers: list[str]
    fare_amount: int
    payment_method: str
    payment_status: str
    status: str
    pnr: str | None = None
    ticket_reference: str | None = None
    cancellation_reason: str | None = None
    hold_expires_at: str | None = None
    created_at: str | None = None


class PublicBookingResponse(BaseModel):
    pnr: str
    flight_id: str
    fare_class: str
    passenger_count: int
    passengers: list[dict]
    seat_numbers: list[str]
    status: str
    payment_status: str


class HoldResponse(BaseModel):
    booking_id: str
    fare_class: str
    count: int
    expires_at: str


class ConfirmationResponse(BaseModel):
    booking: BookingResponse
    ticket_reference: str | None = None
    already_confirmed: bool


class CancelRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=255)


class PaymentConfirmedEvent(BaseModel):
    booking_id: str


class FareClassCreate(BaseModel):
    name: str = Field(min_length=1, max_length=32)
    price: int = Field(ge=0)
    total_seats: int = Field(ge=0)


class FlightCreate(BaseModel):
    flight_number: str = Field(min_length=1, max_length=16)
    origin: str = Field(min_length=3, max_length=3)
    destination: str = Field(min_length=3, max_length=3)
    departure_time: datetime
    arrival_time: datetime
    fare_classes: list[FareClassCreate] = Field(min_length=1)


class FareClassResponse(BaseModel):
    name: str
    price: int
    total_seats: int
    seats_available: int


class FlightResponse(BaseModel):
    id: str
    flight_number: str
    origin: str
    destination: str
    departure_time: str
    arrival_time: str
    status: str
    fare_classes: list[FareClassResponse]


class CapacityAuditResponse(BaseModel):
    flight_id: str
    fare_class: str
    total_seats: int
    seats_available: int
    held_or_sold: int
    expected_available: int
    discrepancy: int
    consistent: bool


class SweepResponse(BaseModel):
    expired: int
    skipped: int
    failed: int


class TicketResponse(BaseModel):
    booking_id: str
    ticket_reference: str
