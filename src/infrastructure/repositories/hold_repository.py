# src/infrastructure/repositories/hold_repository.py

from datetime import datetime

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from src.infrastructure.db.models import Hold


class HoldRepository:
    """Hold ledger: one time-bounded lease per pending booking."""

    def __init__(self, db: Session):
        self.db = db

    def create_hold(
        self,
        booking_id: str,
        flight_id: str,
        fare_class: str,
        count: int,
        seat_numbers: list[str],
        expires_at: datetime,
    ) -> Hold:
        hold = Hold(
            booking_id=booking_id,
            flight_id=flight_id,
            fare_class=fare_class,
            count=count,
            seat_numbers=seat_numbers,
            expires_at=expires_at,
        )
        self.db.add(hold)
        self.db.flush()
        return hold

    def get_by_booking_id(self, booking_id: str) -> Hold | None:
        stmt = select(Hold).where(Hold.booking_id == booking_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def get_expired_for_booking(self, booking_id: str, now: datetime) -> Hold | None:
        # Expiry is compared in SQL so both sides use the store's representation.
        stmt = (
            select(Hold)
            .where(Hold.booking_id == booking_id)
            .where(Hold.expires_at <= now)
            .with_for_update()
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def find_expired_booking_ids(self, now: datetime, limit: int) -> list[str]:
        stmt = (
            select(Hold.booking_id)
            .where(Hold.expires_at <= now)
            .order_by(Hold.expires_at)
            .limit(limit)
        )
        return list(self.db.execute(stmt).scalars().all())

    def delete_for_booking(self, booking_id: str) -> int:
        stmt = delete(Hold).where(Hold.booking_id == booking_id)
        return self.db.execute(stmt).rowcount
