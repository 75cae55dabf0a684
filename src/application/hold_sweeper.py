import logging
import threading
from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from src.application.booking_service import BookingService
from src.application.clock import Clock, utc_now
from src.domain.exceptions import SeatInventoryError
from src.infrastructure.config import Settings
from src.infrastructure.db.session import session_scope
from src.infrastructure.repositories.hold_repository import HoldRepository

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    expired: int = 0
    skipped: int = 0
    failed: int = 0


class HoldExpirySweeper:
    """
    Periodically cancels bookings whose hold has run out.

    The sweep query only nominates candidates; each one is re-checked
    and cancelled by BookingService.expire_hold in its own transaction.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        booking_service: BookingService,
        settings: Settings,
        clock: Clock = utc_now,
    ):
        self._session_factory = session_factory
        self._bookings = booking_service
        self._interval = settings.sweep_interval_seconds
        self._batch_size = settings.sweep_batch_size
        self._clock = clock
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def sweep_once(self) -> SweepResult:
        with session_scope(self._session_factory) as db:
            booking_ids = HoldRepository(db).find_expired_booking_ids(
                self._clock(),
                limit=self._batch_size,
            )

        result = SweepResult()
        for booking_id in booking_ids:
            try:
                if self._bookings.expire_hold(booking_id):
                    result.expired += 1
                else:
                    result.skipped += 1
            except (SeatInventoryError, SQLAlchemyError):
                result.failed += 1
                logger.exception("Failed to expire hold for booking %s", booking_id)

        if booking_ids:
            logger.info(
                "Hold sweep: expired=%s skipped=%s failed=%s",
                result.expired,
                result.skipped,
                result.failed,
            )
        return result

    # -----------------------------
    # Background loop
    # -----------------------------
    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            logger.warning("Hold sweeper already running")
            return

        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run,
            name="hold-expiry-sweeper",
            daemon=True,
        )
        self._thread.start()
        logger.info("Hold sweeper started (interval: %ss)", self._interval)

    def stop(self, timeout: float | None = 5.0) -> None:
        if not self.running:
            return

        self._stop.set()
        self._thread.join(timeout)
        self._thread = None
        logger.info("Hold sweeper stopped")

    def run_forever(self) -> None:
        """Blocking loop for a dedicated sweeper process."""
        self._stop.clear()
        self._run()

    def request_stop(self) -> None:
        self._stop.set()

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                self.sweep_once()
            except Exception:
                logger.exception("Hold sweep cycle failed")
            self._stop.wait(self._interval)
