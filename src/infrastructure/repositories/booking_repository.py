# src/infrastructure/repositories/booking_repository.py

from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from src.domain.payment import PaymentMethod
from src.domain.state_machine import BookingStatus, PaymentStatus
from src.infrastructure.db.models import Booking


class BookingRepository:

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(
        self,
        booking_id: str,
    ) -> Booking | None:

        stmt = select(Booking).where(Booking.id == booking_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def get_for_update(
        self,
        booking_id: str,
    ) -> Booking | None:

        stmt = (
            select(Booking)
            .where(Booking.id == booking_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def get_by_pnr(self, pnr: str) -> Booking | None:
        stmt = select(Booking).where(Booking.pnr == pnr)
        return self.db.execute(stmt).scalar_one_or_none()

    def pnr_exists(self, pnr: str) -> bool:
        stmt = select(func.count(Booking.id)).where(Booking.pnr == pnr)
        return self.db.execute(stmt).scalar_one() > 0

    def list_for_user(
        self,
        user_id: str,
        limit: int,
        offset: int,
    ) -> list[Booking]:

        stmt = (
            select(Booking)
            .where(Booking.user_id == user_id)
            .order_by(Booking.created_at.desc(), Booking.id)
            .limit(limit)
            .offset(offset)
        )
        return list(self.db.execute(stmt).scalars().all())

    def seats_held_or_sold(self, flight_id: str, fare_class: str) -> int:
        stmt = (
            select(func.coalesce(func.sum(Booking.passenger_count), 0))
            .where(Booking.flight_id == flight_id)
            .where(Booking.fare_class == fare_class)
            .where(Booking.status != BookingStatus.CANCELLED)
        )
        return int(self.db.execute(stmt).scalar_one())

    def create_booking(
        self,
        user_id: str,
        flight_id: str,
        fare_class: str,
        passenger_count: int,
        passengers: list[dict],
        seat_numbers: list[str],
        fare_amount: int,
        payment_method: PaymentMethod,
    ) -> Booking:

        booking = Booking(
            user_id=user_id,
            flight_id=flight_id,
            fare_class=fare_class,
            passenger_count=passenger_count,
            passengers=passengers,
            seat_numbers=seat_numbers,
            fare_amount=fare_amount,
            payment_method=payment_method,
            payment_status=PaymentStatus.UNPAID,
            status=BookingStatus.PENDING,
            pnr=None,
        )

        self.db.add(booking)
        self.db.flush()
        return booking

    def transition_status(
        self,
        booking: Booking,
        from_status: BookingStatus,
        to_status: BookingStatus,
        **values,
    ) -> bool:
        """
        Conditional status update. Returns False when another writer
        moved the booking away from from_status first.
        """

        stmt = (
            update(Booking)
            .where(Booking.id == booking.id)
            .where(Booking.status == from_status)
            .values(status=to_status, **values)
            .execution_options(synchronize_session=False)
        )
        if self.db.execute(stmt).rowcount != 1:
            return False

        self.db.refresh(booking)
        return True

    def transition_payment_status(
        self,
        booking: Booking,
        from_status: PaymentStatus,
        to_status: PaymentStatus,
        booking_statuses: tuple[BookingStatus, ...],
        **values,
    ) -> bool:
        """
        Conditional payment update, applied only while the booking is in
        one of booking_statuses. Returns False when another writer got there first.
        """

        stmt = (
            update(Booking)
            .where(Booking.id == booking.id)
            .where(Booking.payment_status == from_status)
            .where(Booking.status.in_(booking_statuses))
            .values(payment_status=to_status, **values)
            .execution_options(synchronize_session=False)
        )
        if self.db.execute(stmt).rowcount != 1:
            return False

        self.db.refresh(booking)
        return True

    def record_ticket(
        self,
        booking_id: str,
        ticket_reference: str,
        barcode_token: str,
        issued_at: datetime,
    ) -> bool:
        """Store the first ticket reference only; later issuances lose."""

        stmt = (
            update(Booking)
            .where(Booking.id == booking_id)
            .where(Booking.ticket_reference.is_(None))
            .values(
                ticket_reference=ticket_reference,
                ticket_barcode=barcode_token,
                ticket_issued_at=issued_at,
            )
            .execution_options(synchronize_session=False)
        )
        return self.db.execute(stmt).rowcount == 1
