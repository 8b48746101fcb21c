"""Payment session model.

A payment session is one checkout attempt, keyed by the locally generated
external reference that the processor echoes back on webhooks.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class PaymentSessionStatus(str, Enum):
    """Payment session status. Forward-only, see ALLOWED_TRANSITIONS."""

    PENDING = "pending"
    PAID = "paid"
    USED = "used"
    EXPIRED = "expired"
    ACTIVE_SUBSCRIPTION = "active_subscription"
    CANCELLED_SUBSCRIPTION = "cancelled_subscription"


class SubscriptionType(str, Enum):
    """How the checkout is billed."""

    ONE_TIME = "one_time"
    RECURRING = "recurring"


ALLOWED_TRANSITIONS: dict[PaymentSessionStatus, frozenset[PaymentSessionStatus]] = {
    PaymentSessionStatus.PENDING: frozenset(
        {
            PaymentSessionStatus.PAID,
            PaymentSessionStatus.EXPIRED,
            PaymentSessionStatus.ACTIVE_SUBSCRIPTION,
        }
    ),
    PaymentSessionStatus.PAID: frozenset({PaymentSessionStatus.USED}),
    PaymentSessionStatus.ACTIVE_SUBSCRIPTION: frozenset(
        {PaymentSessionStatus.CANCELLED_SUBSCRIPTION}
    ),
    PaymentSessionStatus.USED: frozenset(),
    PaymentSessionStatus.EXPIRED: frozenset(),
    PaymentSessionStatus.CANCELLED_SUBSCRIPTION: frozenset(),
}

# Sessions that can back a renewal
REDEEMABLE_STATUSES = frozenset(
    {PaymentSessionStatus.PAID, PaymentSessionStatus.ACTIVE_SUBSCRIPTION}
)


def can_transition(current: PaymentSessionStatus, requested: PaymentSessionStatus) -> bool:
    """Check whether a session may move from current to requested.

    Re-applying the current status is allowed (no-op).
    """
    return current == requested or requested in ALLOWED_TRANSITIONS[current]


class PaymentSession(BaseModel):
    """Internal payment session record."""

    external_reference: str = Field(..., description="Local correlation key")
    status: PaymentSessionStatus = Field(
        default=PaymentSessionStatus.PENDING, description="Session status"
    )
    subscription_type: SubscriptionType = Field(
        default=SubscriptionType.ONE_TIME, description="One-time or recurring billing"
    )
    amount: str = Field(default="10.00", description="Charged amount as a decimal string")
    currency: str = Field(default="USD", description="ISO 4217 currency code")
    created_at_millis: int = Field(..., description="Creation time (Unix millis)")
    expires_at_millis: int = Field(..., description="Hard TTL (Unix millis)")
    user_id: Optional[str] = Field(None, description="Linked user, set once")
    external_subscription_id: Optional[str] = Field(
        None, description="Processor subscription id for recurring sessions"
    )
    processor_payment_id: Optional[str] = Field(
        None, description="Processor payment id for one-time sessions"
    )
    approval_url: Optional[str] = Field(None, description="Processor approval URL")

    @property
    def is_linked(self) -> bool:
        """Whether the session has been linked to a user."""
        return self.user_id is not None

    def set_status(self, new_status: PaymentSessionStatus, reason: Optional[str] = None) -> None:
        """Move the session to a new status and log the transition.

        Args:
            new_status: Requested status
            reason: Reason for the change

        Raises:
            InvalidSessionTransitionError: If the transition is not forward-only
        """
        from subscription_sync.exceptions import InvalidSessionTransitionError
        from subscription_sync.state_logger import log_session_status_change

        old_status = self.status
        if not can_transition(old_status, new_status):
            raise InvalidSessionTransitionError(
                self.external_reference, old_status.value, new_status.value
            )

        if old_status != new_status:
            self.status = new_status
            log_session_status_change(
                external_reference=self.external_reference,
                old_status=old_status.value,
                new_status=new_status.value,
                reason=reason,
                user_id=self.user_id,
            )

    def link_user(self, user_id: str) -> None:
        """Link the session to a user. Linking is one-way.

        Raises:
            ValueError: If the session is already linked to another user
        """
        if self.user_id is not None and self.user_id != user_id:
            raise ValueError(
                f"Payment session '{self.external_reference}' is already linked to another user"
            )
        self.user_id = user_id

    class Config:
        json_schema_extra = {
            "example": {
                "external_reference": "lp2k3x9c-4f8g0a1bz",
                "status": "pending",
                "subscription_type": "recurring",
                "amount": "10.00",
                "currency": "USD",
                "created_at_millis": 1700000000000,
                "expires_at_millis": 1700172800000,
                "user_id": None,
                "external_subscription_id": None,
                "processor_payment_id": None,
            }
        }
