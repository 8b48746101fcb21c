"""State change logging for subscription profiles and payment sessions.

Every mutation of a tracked field is logged with before/after values so a
profile's history can be reconstructed from the log stream.
"""

from datetime import datetime, timezone
from typing import Any, Optional

from subscription_sync.logging_config import get_logger

logger = get_logger(__name__)


def _format_millis(value: Optional[int]) -> Optional[str]:
    if value is None:
        return None
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc).isoformat()


def log_subscription_status_change(
    user_id: str,
    old_status: Any,
    new_status: Any,
    reason: Optional[str] = None,
    **extra_context: Any,
) -> None:
    """Log subscription status change.

    Args:
        user_id: Profile owner
        old_status: Previous status value
        new_status: New status value
        reason: Reason for status change
        **extra_context: Additional context (external_subscription_id, etc.)
    """
    logger.info(
        "subscription_status_changed",
        user_id=user_id,
        old_status=str(old_status),
        new_status=str(new_status),
        reason=reason,
        **extra_context,
    )


def log_session_status_change(
    external_reference: str,
    old_status: Any,
    new_status: Any,
    reason: Optional[str] = None,
    **extra_context: Any,
) -> None:
    """Log payment session status change.

    Args:
        external_reference: Session correlation key
        old_status: Previous session status
        new_status: New session status
        reason: Reason for status change
        **extra_context: Additional context
    """
    logger.info(
        "payment_session_status_changed",
        external_reference=external_reference,
        old_status=str(old_status),
        new_status=str(new_status),
        reason=reason,
        **extra_context,
    )


def log_auto_renewal_change(
    user_id: str,
    old_value: bool,
    new_value: bool,
    reason: Optional[str] = None,
    **extra_context: Any,
) -> None:
    """Log auto-renewal flag change."""
    logger.info(
        "auto_renewal_changed",
        user_id=user_id,
        old_value=old_value,
        new_value=new_value,
        reason=reason,
        **extra_context,
    )


def log_retry_count_change(
    user_id: str,
    old_count: int,
    new_count: int,
    reason: Optional[str] = None,
    **extra_context: Any,
) -> None:
    """Log payment retry counter change."""
    logger.info(
        "payment_retry_count_changed",
        user_id=user_id,
        old_count=old_count,
        new_count=new_count,
        reason=reason,
        **extra_context,
    )


def log_expiry_change(
    user_id: str,
    old_expiry_millis: Optional[int],
    new_expiry_millis: Optional[int],
    reason: str,
    **extra_context: Any,
) -> None:
    """Log subscription expiry change.

    Both values are logged so renewals that reset the expiry from the
    current time (rather than extending it) remain visible.

    Args:
        user_id: Profile owner
        old_expiry_millis: Previous expiry time, if any
        new_expiry_millis: New expiry time, if any
        reason: Reason for change (payment_completed, renewal, etc.)
        **extra_context: Additional context
    """
    extension_days = None
    if old_expiry_millis is not None and new_expiry_millis is not None:
        extension_days = (new_expiry_millis - old_expiry_millis) / (1000 * 86400)

    logger.info(
        "expiry_changed",
        user_id=user_id,
        old_expiry=_format_millis(old_expiry_millis),
        new_expiry=_format_millis(new_expiry_millis),
        old_expiry_millis=old_expiry_millis,
        new_expiry_millis=new_expiry_millis,
        extension_days=extension_days,
        reason=reason,
        **extra_context,
    )
