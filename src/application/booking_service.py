import logging
from dataclasses import dataclass

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from src.application.clock import Clock, utc_now
from src.application.pnr_allocator import PnrAllocator
from src.application.ticket_issuer import TicketIssuer, TicketReceipt
from src.domain.exceptions import (
    BookingNotFoundError,
    CapacityOverflowError,
    ConcurrentModificationError,
    InvalidStateTransitionError,
)
from src.domain.pnr import normalize_pnr
from src.domain.state_machine import (
    BookingStateMachine,
    BookingStatus,
    PaymentStateMachine,
    PaymentStatus,
)
from src.infrastructure.config import Settings
from src.infrastructure.db.models import Booking, Hold
from src.infrastructure.db.session import session_scope
from src.infrastructure.repositories.booking_repository import BookingRepository
from src.infrastructure.repositories.hold_repository import HoldRepository
from src.infrastructure.repositories.inventory_repository import InventoryRepository

logger = logging.getLogger(__name__)

HOLD_EXPIRED_REASON = "hold_expired"


@dataclass
class ConfirmationResult:
    booking: Booking
    ticket_reference: str | None
    already_confirmed: bool = False


class BookingService:
    """
    Application service coordinating the booking lifecycle after
    reservation: confirm, cancel, hold expiry and payment bookkeeping.

    Every status change is a conditional update on the current status,
    so a retried request or a racing sweeper cannot apply it twice.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        settings: Settings,
        pnr_allocator: PnrAllocator,
        ticket_issuer: TicketIssuer,
        clock: Clock = utc_now,
    ):
        self._session_factory = session_factory
        self._settings = settings
        self._pnr_allocator = pnr_allocator
        self._ticket_issuer = ticket_issuer
        self._clock = clock

    # -----------------------------
    # Read accessors
    # -----------------------------
    def get_booking(self, booking_id: str) -> Booking:
        with session_scope(self._session_factory) as db:
            booking = BookingRepository(db).get_by_id(booking_id)
            if not booking:
                raise BookingNotFoundError(booking_id)
            return booking

    def get_hold(self, booking_id: str) -> Hold | None:
        with session_scope(self._session_factory) as db:
            return HoldRepository(db).get_by_booking_id(booking_id)

    def get_booking_by_pnr(self, pnr: str) -> Booking:
        code = normalize_pnr(pnr)
        with session_scope(self._session_factory) as db:
            booking = BookingRepository(db).get_by_pnr(code)
            if not booking:
                raise BookingNotFoundError(code)
            return booking

    def list_user_bookings(
        self,
        user_id: str,
        limit: int = 20,
        offset: int = 0,
    ) -> list[Booking]:
        with session_scope(self._session_factory) as db:
            return BookingRepository(db).list_for_user(user_id, limit=limit, offset=offset)

    # -----------------------------
    # Transitions
    # -----------------------------
    def confirm(self, booking_id: str) -> ConfirmationResult:
        with session_scope(self._session_factory) as db:
            bookings = BookingRepository(db)
            booking = self._load_for_update(bookings, booking_id)

            if booking.status == BookingStatus.CONFIRMED:
                logger.info("Booking %s already confirmed", booking.id)
                return ConfirmationResult(
                    booking=booking,
                    ticket_reference=booking.ticket_reference,
                    already_confirmed=True,
                )

            # A cancelled booking already gave its seats back.
            BookingStateMachine.validate_transition(booking.status, BookingStatus.CONFIRMED)

            now = self._clock()
            if not bookings.transition_status(
                booking,
                BookingStatus.PENDING,
                BookingStatus.CONFIRMED,
                payment_status=PaymentStatus.PAID,
                paid_at=booking.paid_at or now,
                confirmed_at=now,
            ):
                # Lost the race; a concurrent confirm may have won it.
                current = self._load_for_update(bookings, booking_id)
                if current.status != BookingStatus.CONFIRMED:
                    raise ConcurrentModificationError(
                        f"Booking {booking_id} changed while confirming; retry"
                    )
                return ConfirmationResult(
                    booking=current,
                    ticket_reference=current.ticket_reference,
                    already_confirmed=True,
                )

            if not booking.pnr:
                booking.pnr = self._pnr_allocator.allocate(db)
            HoldRepository(db).delete_for_booking(booking.id)

            try:
                db.flush()
            except IntegrityError as exc:
                raise ConcurrentModificationError(
                    f"PNR {booking.pnr} was taken by a concurrent confirmation; retry"
                ) from exc

        logger.info("Confirmed booking %s pnr=%s", booking.id, booking.pnr)
        return ConfirmationResult(
            booking=booking,
            ticket_reference=self._issue_ticket(booking),
        )

    def cancel(self, booking_id: str, reason: str | None = None) -> Booking:
        with session_scope(self._session_factory) as db:
            bookings = BookingRepository(db)
            booking = self._load_for_update(bookings, booking_id)

            if booking.status == BookingStatus.CANCELLED:
                logger.info("Booking %s already cancelled", booking.id)
                return booking

            if not self._cancel_locked(db, booking, reason):
                current = self._load_for_update(bookings, booking_id)
                if current.status != BookingStatus.CANCELLED:
                    raise ConcurrentModificationError(
                        f"Booking {booking_id} changed while cancelling; retry"
                    )
                return current
            return booking

    def expire_hold(self, booking_id: str) -> bool:
        """
        Cancel the booking behind an expired hold. Status is read again
        here, inside the same unit of work as the cancel, so a booking
        confirmed after the sweep query is left alone.

        The booking row is locked before the hold, the same order confirm
        and cancel use.
        """
        with session_scope(self._session_factory) as db:
            booking = BookingRepository(db).get_for_update(booking_id)
            holds = HoldRepository(db)
            if holds.get_expired_for_booking(booking_id, self._clock()) is None:
                return False

            if booking is None or booking.status != BookingStatus.PENDING:
                holds.delete_for_booking(booking_id)
                logger.info(
                    "Dropped stale hold for booking %s (status=%s)",
                    booking_id,
                    booking.status.value if booking else None,
                )
                return False

            if not self._cancel_locked(db, booking, HOLD_EXPIRED_REASON):
                logger.info("Booking %s left pending during expiry; skipped", booking_id)
                return False

        logger.info("Hold expired for booking %s", booking_id)
        return True

    def _cancel_locked(self, db: Session, booking: Booking, reason: str | None) -> bool:
        previous = booking.status
        BookingStateMachine.validate_transition(previous, BookingStatus.CANCELLED)

        if not BookingRepository(db).transition_status(
            booking,
            previous,
            BookingStatus.CANCELLED,
            cancelled_at=self._clock(),
            cancellation_reason=reason,
        ):
            return False

        if not InventoryRepository(db).release(
            booking.flight_id,
            booking.fare_class,
            booking.passenger_count,
        ):
            raise CapacityOverflowError(
                f"Releasing {booking.passenger_count} seat(s) for booking {booking.id} "
                f"would exceed the capacity of '{booking.fare_class}' on flight {booking.flight_id}"
            )
        HoldRepository(db).delete_for_booking(booking.id)

        logger.info(
            "Cancelled booking %s (was %s, reason=%s), released %s seat(s) in %s",
            booking.id,
            previous.value,
            reason,
            booking.passenger_count,
            booking.fare_class,
        )
        return True

    # -----------------------------
    # Payment bookkeeping
    # -----------------------------
    def mark_paid(self, booking_id: str) -> Booking:
        """Record payment received at the counter without confirming."""
        with session_scope(self._session_factory) as db:
            bookings = BookingRepository(db)
            booking = self._load_for_update(bookings, booking_id)

            if booking.payment_status == PaymentStatus.PAID:
                return booking
            if booking.status == BookingStatus.CANCELLED:
                raise InvalidStateTransitionError(
                    from_state=booking.status.value,
                    to_state=PaymentStatus.PAID.value,
                )

            PaymentStateMachine.validate_transition(booking.payment_status, PaymentStatus.PAID)
            if not bookings.transition_payment_status(
                booking,
                booking.payment_status,
                PaymentStatus.PAID,
                booking_statuses=(BookingStatus.PENDING, BookingStatus.CONFIRMED),
                paid_at=self._clock(),
            ):
                current = self._load_for_update(bookings, booking_id)
                if current.payment_status == PaymentStatus.PAID:
                    return current
                if current.status == BookingStatus.CANCELLED:
                    raise InvalidStateTransitionError(
                        from_state=current.status.value,
                        to_state=PaymentStatus.PAID.value,
                    )
                raise ConcurrentModificationError(
                    f"Booking {booking_id} changed while recording payment; retry"
                )
            return booking

    def mark_refunded(self, booking_id: str) -> Booking:
        with session_scope(self._session_factory) as db:
            bookings = BookingRepository(db)
            booking = self._load_for_update(bookings, booking_id)

            if booking.payment_status == PaymentStatus.REFUNDED:
                return booking
            if booking.status != BookingStatus.CANCELLED:
                raise InvalidStateTransitionError(
                    from_state=booking.status.value,
                    to_state=PaymentStatus.REFUNDED.value,
                )

            PaymentStateMachine.validate_transition(booking.payment_status, PaymentStatus.REFUNDED)
            if not bookings.transition_payment_status(
                booking,
                booking.payment_status,
                PaymentStatus.REFUNDED,
                booking_statuses=(BookingStatus.CANCELLED,),
            ):
                current = self._load_for_update(bookings, booking_id)
                if current.payment_status != PaymentStatus.REFUNDED:
                    raise ConcurrentModificationError(
                        f"Booking {booking_id} changed while refunding; retry"
                    )
                return current
            logger.info("Booking %s refunded", booking.id)
            return booking

    # -----------------------------
    # Ticket issuance
    # -----------------------------
    def retry_ticket_issuance(self, booking_id: str) -> str:
        booking = self.get_booking(booking_id)
        if booking.status != BookingStatus.CONFIRMED:
            raise InvalidStateTransitionError(
                from_state=booking.status.value,
                to_state="ticketed",
            )
        if booking.ticket_reference:
            return booking.ticket_reference

        receipt = self._ticket_issuer.issue_ticket(booking)
        return self._record_ticket(booking, receipt)

    def _issue_ticket(self, booking: Booking) -> str | None:
        try:
            receipt = self._ticket_issuer.issue_ticket(booking)
            return self._record_ticket(booking, receipt)
        except Exception:
            logger.exception(
                "Ticket issuance failed for booking %s; confirmation stands",
                booking.id,
            )
            return None

    def _record_ticket(self, booking: Booking, receipt: TicketReceipt) -> str:
        with session_scope(self._session_factory) as db:
            bookings = BookingRepository(db)
            if not bookings.record_ticket(
                booking.id,
                receipt.ticket_reference,
                receipt.barcode_token,
                receipt.issued_at,
            ):
                # Another issuance got there first; keep its reference.
                current = bookings.get_by_id(booking.id)
                booking.ticket_reference = current.ticket_reference
                booking.ticket_barcode = current.ticket_barcode
                booking.ticket_issued_at = current.ticket_issued_at
                return current.ticket_reference

        booking.ticket_reference = receipt.ticket_reference
        booking.ticket_barcode = receipt.barcode_token
        booking.ticket_issued_at = receipt.issued_at
        logger.info("Issued ticket %s for booking %s", receipt.ticket_reference, booking.id)
        return receipt.ticket_reference

    @staticmethod
    def _load_for_update(bookings: BookingRepository, booking_id: str) -> Booking:
        booking = bookings.get_for_update(booking_id)
        if not booking:
            raise BookingNotFoundError(booking_id)
        return booking
