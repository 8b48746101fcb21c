"""Payment retry and grace period escalation policy.

Pure functions: given the retry counter after a failed billing attempt,
decide the next status, grace window and user notification.
"""

from dataclasses import dataclass
from typing import Optional

from subscription_sync.models.notifications import NotificationKind
from subscription_sync.models.profile import SubscriptionStatus
from subscription_sync.utils.billing_period import MILLIS_PER_DAY

DEFAULT_GRACE_PERIOD_MILLIS = 7 * MILLIS_PER_DAY

# Retry count at which the subscription enters the grace period
GRACE_PERIOD_THRESHOLD = 3


@dataclass(frozen=True)
class EscalationDecision:
    """Outcome of applying the escalation policy."""

    new_status: SubscriptionStatus
    grace_period_ends_millis: Optional[int]
    notification_kind: Optional[NotificationKind]


def escalate(
    previous_status: SubscriptionStatus,
    retry_count: int,
    now_millis: int,
    grace_period_millis: int = DEFAULT_GRACE_PERIOD_MILLIS,
    previous_grace_period_ends_millis: Optional[int] = None,
) -> EscalationDecision:
    """Decide the state after a failed billing attempt.

    ======= ============== ================= =======================
    retry   status         grace end         notification
    ======= ============== ================= =======================
    <= 0    previous       previous (grace)  none
    1       Payment_Failed None              payment_failed
    2       Payment_Failed None              payment_retry_reminder
    >= 3    Grace_Period   now + grace       grace_period_started
    ======= ============== ================= =======================

    Args:
        previous_status: Status before the failure
        retry_count: Retry counter after incrementing for this failure
        now_millis: Current time
        grace_period_millis: Length of the grace window
        previous_grace_period_ends_millis: Grace end before the failure

    Returns:
        EscalationDecision
    """
    if retry_count <= 0:
        grace_end = None
        if previous_status == SubscriptionStatus.GRACE_PERIOD:
            grace_end = previous_grace_period_ends_millis
        return EscalationDecision(previous_status, grace_end, None)

    if retry_count == 1:
        return EscalationDecision(
            SubscriptionStatus.PAYMENT_FAILED, None, NotificationKind.PAYMENT_FAILED
        )

    if retry_count < GRACE_PERIOD_THRESHOLD:
        return EscalationDecision(
            SubscriptionStatus.PAYMENT_FAILED, None, NotificationKind.PAYMENT_RETRY_REMINDER
        )

    return EscalationDecision(
        SubscriptionStatus.GRACE_PERIOD,
        now_millis + grace_period_millis,
        NotificationKind.GRACE_PERIOD_STARTED,
    )


def notification_key(
    kind: NotificationKind, external_subscription_id: Optional[str], retry_count: int
) -> str:
    """Deterministic dedup key for a notification.

    The same failure replayed produces the same key.
    """
    return f"{kind.value}:{external_subscription_id or '-'}:{retry_count}"
