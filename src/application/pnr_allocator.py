import logging
from typing import Callable

from sqlalchemy.orm import Session

from src.domain.exceptions import PnrAllocationError
from src.domain.pnr import generate_candidate_pnr
from src.infrastructure.repositories.booking_repository import BookingRepository

logger = logging.getLogger(__name__)


class PnrAllocator:
    """Picks a PNR not used by any existing booking, with bounded retries."""

    def __init__(
        self,
        generate: Callable[[], str] = generate_candidate_pnr,
        max_attempts: int = 5,
    ):
        self._generate = generate
        self._max_attempts = max_attempts

    def allocate(self, db: Session) -> str:
        bookings = BookingRepository(db)

        for attempt in range(1, self._max_attempts + 1):
            candidate = self._generate()
            if not bookings.pnr_exists(candidate):
                return candidate
            logger.warning(
                "PNR collision on %s (attempt %s/%s)",
                candidate,
                attempt,
                self._max_attempts,
            )

        raise PnrAllocationError(
            f"Could not allocate a unique PNR after {self._max_attempts} attempts"
        )
