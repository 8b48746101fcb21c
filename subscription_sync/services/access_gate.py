"""Access gate.

Derives access decisions from a profile's status and timestamps. All
functions are pure; callers run the session renewal hook first so the
profile they pass reflects lazy expiry.
"""

from enum import Enum
from typing import Optional

from subscription_sync.models.profile import SubscriptionProfile, SubscriptionStatus

DEFAULT_ANONYMOUS_POST_LIMIT = 1
ANONYMOUS_VIEWS_COOKIE = "anonymous_posts_viewed"

# Statuses whose access is bounded by the paid-for expiry (grandfathered)
_EXPIRY_BOUNDED_STATUSES = frozenset(
    {
        SubscriptionStatus.CANCELLED,
        SubscriptionStatus.PRICE_CHANGE_CANCELLED,
        SubscriptionStatus.SUSPENDED,
    }
)

# Statuses that keep access while billing is being retried
_RETRYING_STATUSES = frozenset(
    {SubscriptionStatus.PAYMENT_FAILED, SubscriptionStatus.GRACE_PERIOD}
)


class AccessPolicy(str, Enum):
    PERMISSIVE = "permissive"
    STRICT = "strict"


class ProtectedOperation(str, Enum):
    VIEW_POST = "view_post"
    SEARCH = "search"
    LIKE = "like"
    COMMENT = "comment"
    CREATE_POST = "create_post"


OPERATION_POLICIES: dict[ProtectedOperation, AccessPolicy] = {
    ProtectedOperation.VIEW_POST: AccessPolicy.PERMISSIVE,
    ProtectedOperation.SEARCH: AccessPolicy.STRICT,
    ProtectedOperation.LIKE: AccessPolicy.STRICT,
    ProtectedOperation.COMMENT: AccessPolicy.STRICT,
    ProtectedOperation.CREATE_POST: AccessPolicy.STRICT,
}


def _within_expiry(profile: SubscriptionProfile, now_millis: int) -> bool:
    expires = profile.subscription_expires_at_millis
    return expires is not None and now_millis <= expires


def has_access(profile: Optional[SubscriptionProfile], now_millis: int) -> bool:
    """Permissive access check.

    Active and retrying subscriptions have access. Cancelled, price-change
    cancelled and suspended subscriptions keep access up to and including
    their expiry. Expired profiles and unknown users have none.

    Args:
        profile: The user's profile, or None for an unknown user
        now_millis: Current time

    Returns:
        True if the user may use permissive features
    """
    if profile is None:
        return False

    status = profile.subscription_status
    if status == SubscriptionStatus.ACTIVE or status in _RETRYING_STATUSES:
        return True
    if status in _EXPIRY_BOUNDED_STATUSES:
        return _within_expiry(profile, now_millis)
    return False


def has_strict_access(profile: Optional[SubscriptionProfile], now_millis: int) -> bool:
    """Strict access check.

    Active subscriptions have access; every other non-expired status is
    bounded by the expiry, so retrying subscriptions lose strict access
    once the paid period ends.
    """
    if profile is None:
        return False

    status = profile.subscription_status
    if status == SubscriptionStatus.ACTIVE:
        return True
    if status == SubscriptionStatus.EXPIRED:
        return False
    return _within_expiry(profile, now_millis)


def can_search(profile: Optional[SubscriptionProfile], now_millis: int) -> bool:
    return has_strict_access(profile, now_millis)


def can_comment(profile: Optional[SubscriptionProfile], now_millis: int) -> bool:
    return has_strict_access(profile, now_millis)


def policy_for(operation: ProtectedOperation) -> AccessPolicy:
    """Access policy declared for a protected operation."""
    return OPERATION_POLICIES[operation]


def is_operation_allowed(
    profile: Optional[SubscriptionProfile],
    operation: ProtectedOperation,
    now_millis: int,
) -> bool:
    """Check a protected operation against its declared policy."""
    if policy_for(operation) == AccessPolicy.STRICT:
        return has_strict_access(profile, now_millis)
    return has_access(profile, now_millis)


def anonymous_view_allowed(
    posts_viewed: int, limit: int = DEFAULT_ANONYMOUS_POST_LIMIT
) -> bool:
    """Whether an anonymous visitor who has viewed posts_viewed posts may keep reading."""
    return posts_viewed <= limit
