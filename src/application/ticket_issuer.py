import hashlib
import hmac
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Protocol
from uuid import uuid4

from src.domain.exceptions import TicketIssuanceError
from src.infrastructure.db.models import Booking


@dataclass(frozen=True)
class TicketReceipt:
    ticket_reference: str
    barcode_token: str
    issued_at: datetime


class TicketIssuer(Protocol):
    def issue_ticket(self, booking: Booking) -> TicketReceipt:
        ...


class SignedTicketIssuer:
    """
    Issues a ticket reference with an HMAC-signed barcode token.
    Rendering and uploading the artifact happen elsewhere.
    """

    def __init__(self, signing_secret: str):
        self._secret = signing_secret.encode("utf-8")

    def issue_ticket(self, booking: Booking) -> TicketReceipt:
        if not booking.pnr:
            raise TicketIssuanceError(f"Booking {booking.id} has no PNR yet")

        payload = f"{booking.id}:{booking.pnr}".encode("utf-8")
        token = hmac.new(self._secret, payload, hashlib.sha256).hexdigest()
        return TicketReceipt(
            ticket_reference=f"ETK-{booking.pnr}-{uuid4().hex[:8].upper()}",
            barcode_token=token,
            issued_at=datetime.now(timezone.utc),
        )
