import secrets
import string
import uuid
from datetime import datetime

BOOKING_ID_PREFIX = "BMS"
_SUFFIX_ALPHABET = string.ascii_uppercase + string.digits


def _epoch_millis(now: datetime) -> int:
    return int(now.timestamp() * 1000)


def generate_booking_id(now: datetime) -> str:
    """BMS + last 6 digits of the epoch millis + 4 random characters, e.g. BMS482913K7QZ."""
    digits = str(_epoch_millis(now))[-6:].rjust(6, "0")
    suffix = "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(4))
    return f"{BOOKING_ID_PREFIX}{digits}{suffix}"


def generate_transaction_id(now: datetime) -> str:
    return f"TXN{_epoch_millis(now)}"


def generate_qr_code(booking_id: str, now: datetime) -> str:
    return f"{BOOKING_ID_PREFIX}_QR_{booking_id}_{_epoch_millis(now)}"


def new_reservation_token() -> str:
    return uuid.uuid4().hex
