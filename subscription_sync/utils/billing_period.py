"""ISO 8601 durations for billing configuration.

billing.yaml expresses the billing period, the grace period and the
payment session TTL as ISO 8601 durations; services work in Unix millis.
Calendar units are fixed-length: a month is 30 days and a year 365 days,
so every billing cycle has the same length regardless of the start date.
"""

import re

MILLIS_PER_SECOND = 1000
MILLIS_PER_MINUTE = 60 * MILLIS_PER_SECOND
MILLIS_PER_HOUR = 60 * MILLIS_PER_MINUTE
MILLIS_PER_DAY = 24 * MILLIS_PER_HOUR
MILLIS_PER_WEEK = 7 * MILLIS_PER_DAY
MILLIS_PER_MONTH = 30 * MILLIS_PER_DAY
MILLIS_PER_YEAR = 365 * MILLIS_PER_DAY

_DURATION_PATTERN = re.compile(
    r"^P"
    r"(?:(?P<years>\d+)Y)?"
    r"(?:(?P<months>\d+)M)?"
    r"(?:(?P<weeks>\d+)W)?"
    r"(?:(?P<days>\d+)D)?"
    r"(?:T"
    r"(?:(?P<hours>\d+)H)?"
    r"(?:(?P<minutes>\d+)M)?"
    r"(?:(?P<seconds>\d+)S)?"
    r")?$"
)

_COMPONENT_MILLIS = {
    "years": MILLIS_PER_YEAR,
    "months": MILLIS_PER_MONTH,
    "weeks": MILLIS_PER_WEEK,
    "days": MILLIS_PER_DAY,
    "hours": MILLIS_PER_HOUR,
    "minutes": MILLIS_PER_MINUTE,
    "seconds": MILLIS_PER_SECOND,
}


def parse_billing_period(period: str) -> int:
    """Convert an ISO 8601 duration to milliseconds.

    Integer components only; components may be combined ("P1DT12H").

    Args:
        period: Duration such as "P1M", "P7D" or "PT48H" (case-insensitive)

    Returns:
        Duration in milliseconds, always positive

    Raises:
        ValueError: If the string is not a supported duration or is zero

    Examples:
        >>> parse_billing_period("P1M")
        2592000000
        >>> parse_billing_period("PT48H")
        172800000
    """
    if not isinstance(period, str) or not period.strip():
        raise ValueError("Duration must be a non-empty string")

    normalized = period.strip().upper()
    match = _DURATION_PATTERN.match(normalized)
    if match is None or normalized.endswith("T"):
        raise ValueError(f"Unsupported ISO 8601 duration: '{period}'")

    components = {name: int(value) for name, value in match.groupdict().items() if value}
    if not components:
        raise ValueError(f"Duration '{period}' has no components")

    total = sum(count * _COMPONENT_MILLIS[name] for name, count in components.items())
    if total <= 0:
        raise ValueError(f"Duration must be positive, got '{period}'")
    return total


def validate_billing_period(period: str) -> bool:
    try:
        parse_billing_period(period)
    except ValueError:
        return False
    return True
