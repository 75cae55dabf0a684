# src/infrastructure/repositories/inventory_repository.py

from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from src.infrastructure.db.models import FareClass, Flight


class InventoryRepository:
    """
    Access to flights and fare-class capacity counters.
    seats_available is never assigned directly: every change is an
    UPDATE whose WHERE clause the database re-checks at write time.
    """

    def __init__(self, db: Session):
        self.db = db

    def get_flight(self, flight_id: str) -> Flight | None:
        stmt = select(Flight).where(Flight.id == flight_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def get_fare_class(self, flight_id: str, name: str) -> FareClass | None:
        stmt = (
            select(FareClass)
            .where(FareClass.flight_id == flight_id)
            .where(FareClass.name == name)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def list_fare_classes(self, flight_id: str | None = None) -> list[FareClass]:
        stmt = select(FareClass).order_by(FareClass.flight_id, FareClass.name)
        if flight_id:
            stmt = stmt.where(FareClass.flight_id == flight_id)
        return list(self.db.execute(stmt).scalars().all())

    def create_flight(
        self,
        flight_number: str,
        origin: str,
        destination: str,
        departure_time: datetime,
        arrival_time: datetime,
        fare_classes: list[tuple[str, int, int]],
    ) -> Flight:
        flight = Flight(
            flight_number=flight_number,
            origin=origin.upper(),
            destination=destination.upper(),
            departure_time=departure_time,
            arrival_time=arrival_time,
        )
        for name, price, total_seats in fare_classes:
            flight.fare_classes.append(
                FareClass(
                    name=name,
                    price=price,
                    total_seats=total_seats,
                    seats_available=total_seats,
                )
            )

        self.db.add(flight)
        self.db.flush()
        return flight

    def lock_fare_class(self, fare_class_id: str) -> FareClass:
        """
        SELECT ... FOR UPDATE
        Ignored by dialects without row locks; the compare-and-set
        below still catches a concurrent writer.
        """

        stmt = (
            select(FareClass)
            .where(FareClass.id == fare_class_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return self.db.execute(stmt).scalar_one()

    def compare_and_set_available(
        self,
        fare_class_id: str,
        expected: int,
        new_value: int,
    ) -> bool:
        stmt = (
            update(FareClass)
            .where(FareClass.id == fare_class_id)
            .where(FareClass.seats_available == expected)
            .values(seats_available=new_value)
            .execution_options(synchronize_session=False)
        )
        return self.db.execute(stmt).rowcount == 1

    def decrement_if_available(self, fare_class_id: str, seat_count: int) -> bool:
        stmt = (
            update(FareClass)
            .where(FareClass.id == fare_class_id)
            .where(FareClass.seats_available >= seat_count)
            .values(seats_available=FareClass.seats_available - seat_count)
            .execution_options(synchronize_session=False)
        )
        return self.db.execute(stmt).rowcount == 1

    def release(self, flight_id: str, fare_class: str, seat_count: int) -> bool:
        stmt = (
            update(FareClass)
            .where(FareClass.flight_id == flight_id)
            .where(FareClass.name == fare_class)
            .where(FareClass.seats_available + seat_count <= FareClass.total_seats)
            .values(seats_available=FareClass.seats_available + seat_count)
            .execution_options(synchronize_session=False)
        )
        return self.db.execute(stmt).rowcount == 1
