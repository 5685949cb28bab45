import re
import secrets
import string
import time

BOOKING_REFERENCE_RE = re.compile(r"^BKG-[A-Z0-9]+-[A-Z0-9]+$")

_ALPHABET = string.digits + string.ascii_uppercase


def to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_ALPHABET[rem])
    return "".join(reversed(digits))


def generate_booking_reference() -> str:
    """``BKG-<base36 epoch millis>-<4 random chars>``, e.g. ``BKG-LXK2M9QZ-7F3A``."""
    stamp = to_base36(int(time.time() * 1000))
    suffix = "".join(secrets.choice(_ALPHABET) for _ in range(4))
    return f"BKG-{stamp}-{suffix}"


def is_valid_booking_reference(reference) -> bool:
    if not reference or not isinstance(reference, str):
        return False
    return bool(BOOKING_REFERENCE_RE.match(reference))
