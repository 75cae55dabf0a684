# src/bootstrap.py

from dataclasses import dataclass

from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from src.application.booking_service import BookingService
from src.application.capacity import select_capacity_strategy
from src.application.clock import Clock, utc_now
from src.application.hold_sweeper import HoldExpirySweeper
from src.application.inventory_service import InventoryService
from src.application.pnr_allocator import PnrAllocator
from src.application.reservation_engine import ReservationEngine
from src.application.ticket_issuer import SignedTicketIssuer, TicketIssuer
from src.infrastructure.config import Settings
from src.infrastructure.db.session import Base, create_session_factory

# Registers the ORM tables on Base.metadata.
import src.infrastructure.db.models  # noqa: F401


@dataclass
class Services:
    settings: Settings
    engine: Engine
    session_factory: sessionmaker[Session]
    reservations: ReservationEngine
    bookings: BookingService
    inventory: InventoryService
    sweeper: HoldExpirySweeper

    def create_schema(self) -> None:
        Base.metadata.create_all(bind=self.engine)

    def shutdown(self) -> None:
        self.sweeper.stop()
        self.engine.dispose()


def build_services(
    settings: Settings,
    clock: Clock = utc_now,
    ticket_issuer: TicketIssuer | None = None,
) -> Services:
    """Wire the service graph for one database."""

    engine, session_factory = create_session_factory(settings)
    pnr_allocator = PnrAllocator(max_attempts=settings.pnr_max_attempts)
    issuer = ticket_issuer or SignedTicketIssuer(settings.ticket_signing_secret)

    bookings = BookingService(
        session_factory,
        settings,
        pnr_allocator=pnr_allocator,
        ticket_issuer=issuer,
        clock=clock,
    )
    return Services(
        settings=settings,
        engine=engine,
        session_factory=session_factory,
        reservations=ReservationEngine(
            session_factory,
            settings,
            capacity=select_capacity_strategy(settings, engine),
            pnr_allocator=pnr_allocator,
            clock=clock,
        ),
        bookings=bookings,
        inventory=InventoryService(session_factory),
        sweeper=HoldExpirySweeper(session_factory, bookings, settings, clock=clock),
    )
