import secrets

# No 0/O, 1/I/L: codes are read out over the phone.
PNR_ALPHABET = "ABCDEFGHJKMNPQRSTUVWXYZ23456789"
PNR_LENGTH = 6


def generate_candidate_pnr() -> str:
    """Return a random PNR candidate. Uniqueness is the caller's job."""
    return "".join(secrets.choice(PNR_ALPHABET) for _ in range(PNR_LENGTH))


def normalize_pnr(raw: str) -> str:
    return raw.strip().upper()
