# src/infrastructure/db/models.py

from sqlalchemy import (
    JSON,
    String,
    Integer,
    DateTime,
    Enum,
    UniqueConstraint,
    CheckConstraint,
    ForeignKey,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from datetime import datetime
from typing import List
from uuid import uuid4

from src.infrastructure.db.session import Base
from src.domain.payment import PaymentMethod
from src.domain.state_machine import BookingStatus, PaymentStatus


def _enum_values(enum_cls) -> list[str]:
    return [member.value for member in enum_cls]


class Flight(Base):
    __tablename__ = "flights"
    __mapper_args__ = {"eager_defaults": True}

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    flight_number: Mapped[str] = mapped_column(String(16), nullable=False)
    origin: Mapped[str] = mapped_column(String(3), nullable=False)
    destination: Mapped[str] = mapped_column(String(3), nullable=False)
    departure_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    arrival_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="scheduled")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    fare_classes: Mapped[List["FareClass"]] = relationship(
        back_populates="flight",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="FareClass.name",
    )

    __table_args__ = (
        UniqueConstraint(
            "flight_number",
            "departure_time",
            name="uq_flight_number_departure",
        ),
    )


class FareClass(Base):
    """
    Capacity counter for one priced seating category.
    seats_available is only ever changed by conditional updates.
    """

    __tablename__ = "fare_classes"
    __mapper_args__ = {"eager_defaults": True}

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    flight_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("flights.id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String(32), nullable=False)
    price: Mapped[int] = mapped_column(Integer, nullable=False)
    total_seats: Mapped[int] = mapped_column(Integer, nullable=False)
    seats_available: Mapped[int] = mapped_column(Integer, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    flight: Mapped[Flight] = relationship(back_populates="fare_classes")

    __table_args__ = (
        UniqueConstraint(
            "flight_id",
            "name",
            name="uq_fare_class_per_flight",
        ),
        CheckConstraint("price >= 0", name="ck_fare_price_nonnegative"),
        CheckConstraint("total_seats >= 0", name="ck_fare_total_seats_nonnegative"),
        CheckConstraint("seats_available >= 0", name="ck_fare_seats_available_nonnegative"),
        CheckConstraint("seats_available <= total_seats", name="ck_fare_available_lte_total"),
    )


class Booking(Base):
    """
    Booking table reflecting domain state.
    Domain controls transitions.
    Rows are never deleted; cancellation is a status.
    """

    __tablename__ = "bookings"
    __mapper_args__ = {"eager_defaults": True}

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    flight_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("flights.id"),
        nullable=False,
    )
    fare_class: Mapped[str] = mapped_column(String(32), nullable=False)
    passenger_count: Mapped[int] = mapped_column(Integer, nullable=False)
    passengers: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    seat_numbers: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    fare_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    payment_method: Mapped[PaymentMethod] = mapped_column(
        Enum(PaymentMethod, name="payment_method", values_callable=_enum_values),
        nullable=False,
        default=PaymentMethod.IN_PERSON,
    )
    payment_status: Mapped[PaymentStatus] = mapped_column(
        Enum(PaymentStatus, name="payment_status", values_callable=_enum_values),
        nullable=False,
        default=PaymentStatus.UNPAID,
    )
    status: Mapped[BookingStatus] = mapped_column(
        Enum(BookingStatus, name="booking_status", values_callable=_enum_values),
        nullable=False,
        default=BookingStatus.PENDING,
    )
    pnr: Mapped[str | None] = mapped_column(String(8), nullable=True)
    ticket_reference: Mapped[str | None] = mapped_column(String(64), nullable=True)
    ticket_barcode: Mapped[str | None] = mapped_column(String(64), nullable=True)
    ticket_issued_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(String(255), nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    confirmed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("pnr", name="uq_booking_pnr"),
        CheckConstraint(
            "passenger_count > 0",
            name="ck_passenger_count_positive",
        ),
        CheckConstraint("fare_amount >= 0", name="ck_fare_amount_nonnegative"),
    )


class Hold(Base):
    """Lease on capacity for a pending booking. Seats are already decremented."""

    __tablename__ = "holds"
    __mapper_args__ = {"eager_defaults": True}

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    booking_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("bookings.id"),
        nullable=False,
    )
    flight_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("flights.id"),
        nullable=False,
    )
    fare_class: Mapped[str] = mapped_column(String(32), nullable=False)
    count: Mapped[int] = mapped_column(Integer, nullable=False)
    seat_numbers: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        index=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("booking_id", name="uq_hold_booking"),
        CheckConstraint("count > 0", name="ck_hold_count_positive"),
    )
