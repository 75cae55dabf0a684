# src/domain/payment.py

from enum import Enum


class PaymentMethod(str, Enum):
    IN_PERSON = "in_person"
    CARD = "card"

    @classmethod
    def from_legacy(cls, raw: "str | PaymentMethod") -> "PaymentMethod":
        """
        Normalise payment method names written by older clients.
        Unknown names are rejected rather than stored as free text.
        """
        if isinstance(raw, cls):
            return raw

        key = str(raw).strip().lower()
        try:
            return _LEGACY_PAYMENT_METHODS[key]
        except KeyError:
            raise ValueError(f"Unsupported payment method '{raw}'") from None


# Older releases used 'physical' for counter payments and 'stripe'
# for gateway card payments.
_LEGACY_PAYMENT_METHODS = {
    "in_person": PaymentMethod.IN_PERSON,
    "physical": PaymentMethod.IN_PERSON,
    "card": PaymentMethod.CARD,
    "stripe": PaymentMethod.CARD,
}
