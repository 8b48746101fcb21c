"""External reference generation utilities.

External references are the locally generated correlation keys that a
checkout round-trips through the payment processor (``custom_id`` on
subscriptions, ``custom`` on one-time sales).
"""

import re
import secrets
import time
from typing import Optional

_BASE36_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyz"

_REFERENCE_PATTERN = re.compile(r"^[0-9a-z]+-[0-9a-z]{9}$")


def to_base36(value: int) -> str:
    """Encode a non-negative integer in lowercase base 36."""
    if value < 0:
        raise ValueError(f"Cannot encode negative value: {value}")
    if value == 0:
        return "0"

    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36_ALPHABET[remainder])
    return "".join(reversed(digits))


def generate_external_reference(now_millis: Optional[int] = None) -> str:
    """Generate a unique external reference.

    Format: {base36 timestamp}-{9 random base36 chars}
    Example: lp2k3x9c-4f8g0a1bz

    Args:
        now_millis: Creation time in milliseconds (defaults to wall clock)

    Returns:
        External reference string
    """
    if now_millis is None:
        now_millis = int(time.time() * 1000)

    random_part = "".join(secrets.choice(_BASE36_ALPHABET) for _ in range(9))

    return f"{to_base36(now_millis)}-{random_part}"


def validate_external_reference(reference: str) -> bool:
    """Validate external reference format.

    Args:
        reference: External reference to validate

    Returns:
        True if the reference has the generated format, False otherwise
    """
    if not reference or not isinstance(reference, str):
        return False

    return bool(_REFERENCE_PATTERN.match(reference))
