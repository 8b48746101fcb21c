"""Utility modules for the subscription sync service."""

from subscription_sync.utils.billing_period import (
    MILLIS_PER_DAY,
    MILLIS_PER_HOUR,
    parse_billing_period,
    validate_billing_period,
)
from subscription_sync.utils.reference_generator import (
    generate_external_reference,
    validate_external_reference,
)

__all__ = [
    "MILLIS_PER_DAY",
    "MILLIS_PER_HOUR",
    "parse_billing_period",
    "validate_billing_period",
    "generate_external_reference",
    "validate_external_reference",
]
