"""Subscription profile model.

One profile per user, carrying the subscription status, the access
boundary, and the retry/grace bookkeeping driven by billing events.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class SubscriptionStatus(str, Enum):
    """Subscription status values as persisted on the profile."""

    ACTIVE = "Active"
    EXPIRED = "Expired"
    CANCELLED = "Cancelled"  # Auto-renewal off, access until expiry
    PAYMENT_FAILED = "Payment_Failed"  # One or two failed billing attempts
    GRACE_PERIOD = "Grace_Period"  # Repeated failures, bounded grace window
    SUSPENDED = "Suspended"  # Suspended by the processor, access until expiry
    PRICE_CHANGE_CANCELLED = "Price_Change_Cancelled"  # Access until expiry


# Statuses the user may cancel from
CANCELLABLE_STATUSES = frozenset(
    {
        SubscriptionStatus.ACTIVE,
        SubscriptionStatus.PAYMENT_FAILED,
        SubscriptionStatus.GRACE_PERIOD,
    }
)


class SubscriptionProfile(BaseModel):
    """Per-user subscription state."""

    user_id: str = Field(..., description="User identifier")
    subscription_status: SubscriptionStatus = Field(
        default=SubscriptionStatus.EXPIRED, description="Current subscription status"
    )
    subscription_expires_at_millis: Optional[int] = Field(
        None, description="Access boundary (Unix millis), inclusive"
    )
    auto_renewal_enabled: bool = Field(default=False, description="Whether billing recurs")
    payment_retry_count: int = Field(
        default=0, ge=0, description="Consecutive failed billing attempts since last success"
    )
    last_payment_attempt_millis: Optional[int] = Field(
        None, description="Last billing attempt time (Unix millis)"
    )
    grace_period_ends_millis: Optional[int] = Field(
        None, description="Grace period end (Unix millis), set only in Grace_Period"
    )
    external_subscription_id: Optional[str] = Field(
        None, description="Processor's recurring-billing subscription id"
    )

    def set_status(self, new_status: SubscriptionStatus, reason: Optional[str] = None) -> None:
        """Change subscription status and log the transition.

        Args:
            new_status: Status to transition to
            reason: Reason for the change
        """
        from subscription_sync.state_logger import log_subscription_status_change

        old_status = self.subscription_status
        if old_status != new_status:
            self.subscription_status = new_status
            log_subscription_status_change(
                user_id=self.user_id,
                old_status=old_status.value,
                new_status=new_status.value,
                reason=reason,
                external_subscription_id=self.external_subscription_id,
            )

    def set_expiry(self, new_expiry_millis: Optional[int], reason: str) -> None:
        """Set the access boundary and log the change.

        Args:
            new_expiry_millis: New expiry time in milliseconds
            reason: Reason for the change (payment_completed, renewal, etc.)
        """
        from subscription_sync.state_logger import log_expiry_change

        old_expiry = self.subscription_expires_at_millis
        if old_expiry != new_expiry_millis:
            self.subscription_expires_at_millis = new_expiry_millis
            log_expiry_change(
                user_id=self.user_id,
                old_expiry_millis=old_expiry,
                new_expiry_millis=new_expiry_millis,
                reason=reason,
                subscription_status=self.subscription_status.value,
            )

    def set_auto_renewal(self, enabled: bool, reason: Optional[str] = None) -> None:
        """Change the auto-renewal flag and log the change."""
        from subscription_sync.state_logger import log_auto_renewal_change

        old_value = self.auto_renewal_enabled
        if old_value != enabled:
            self.auto_renewal_enabled = enabled
            log_auto_renewal_change(
                user_id=self.user_id,
                old_value=old_value,
                new_value=enabled,
                reason=reason,
            )

    def set_retry_count(self, count: int, reason: Optional[str] = None) -> None:
        """Change the payment retry counter and log the change."""
        from subscription_sync.state_logger import log_retry_count_change

        old_count = self.payment_retry_count
        if old_count != count:
            self.payment_retry_count = count
            log_retry_count_change(
                user_id=self.user_id,
                old_count=old_count,
                new_count=count,
                reason=reason,
            )

    def reset_billing_attempts(self, reason: str) -> None:
        """Clear retry counter and grace window after a successful billing step."""
        self.set_retry_count(0, reason=reason)
        self.grace_period_ends_millis = None

    class Config:
        json_schema_extra = {
            "example": {
                "user_id": "user-123",
                "subscription_status": "Active",
                "subscription_expires_at_millis": 1702592000000,
                "auto_renewal_enabled": True,
                "payment_retry_count": 0,
                "last_payment_attempt_millis": 1700000000000,
                "grace_period_ends_millis": None,
                "external_subscription_id": "I-BW452GLLEP1G",
            }
        }
