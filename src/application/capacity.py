"""Capacity-reservation strategies used by the reservation engine."""
import logging
from typing import Protocol

from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from src.domain.exceptions import CapacityConflictError, InsufficientCapacityError
from src.infrastructure.config import Settings
from src.infrastructure.db.models import FareClass
from src.infrastructure.repositories.inventory_repository import InventoryRepository

logger = logging.getLogger(__name__)

ROW_LOCK_DIALECTS = frozenset({"postgresql", "mysql", "mariadb", "oracle", "mssql"})


class CapacityReservation(Protocol):
    name: str
    # True when the decrement commits together with the booking and hold.
    shares_transaction: bool

    def take(self, db: Session, fare_class: FareClass, seat_count: int) -> None:
        """Decrement seats_available or raise InsufficientCapacityError."""


class TransactionalCapacityReservation:
    """
    Lock the fare-class row, read it, then write back with a
    compare-and-set keyed on the value that was read.
    """

    name = "transactional"
    shares_transaction = True

    def take(self, db: Session, fare_class: FareClass, seat_count: int) -> None:
        inventory = InventoryRepository(db)
        locked = inventory.lock_fare_class(fare_class.id)
        available = locked.seats_available

        if available < seat_count:
            raise InsufficientCapacityError(
                flight_id=fare_class.flight_id,
                fare_class=fare_class.name,
                requested=seat_count,
            )

        if not inventory.compare_and_set_available(
            fare_class.id,
            expected=available,
            new_value=available - seat_count,
        ):
            raise CapacityConflictError(
                f"seats_available for fare class {fare_class.id} changed "
                f"after it was read ({available})"
            )


class ConditionalUpdateReservation:
    """
    Single UPDATE ... WHERE seats_available >= n. The condition is
    evaluated by the database at write time, so no prior read is trusted.
    """

    name = "conditional"
    shares_transaction = False

    def take(self, db: Session, fare_class: FareClass, seat_count: int) -> None:
        if not InventoryRepository(db).decrement_if_available(fare_class.id, seat_count):
            raise InsufficientCapacityError(
                flight_id=fare_class.flight_id,
                fare_class=fare_class.name,
                requested=seat_count,
            )


def select_capacity_strategy(settings: Settings, engine: Engine) -> CapacityReservation:
    choice = settings.capacity_strategy
    if choice == "auto":
        choice = "transactional" if engine.dialect.name in ROW_LOCK_DIALECTS else "conditional"
        logger.info(
            "Capacity strategy auto-selected: %s (dialect=%s)",
            choice,
            engine.dialect.name,
        )

    if choice == "transactional":
        return TransactionalCapacityReservation()
    return ConditionalUpdateReservation()
