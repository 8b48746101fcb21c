"""Explicit result types returned by the reconciliation and lifecycle services."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from subscription_sync.models.payment_session import (
    PaymentSession,
    PaymentSessionStatus,
    SubscriptionType,
)
from subscription_sync.models.profile import SubscriptionProfile


class ReconcileOutcome(str, Enum):
    """Outcome of applying one billing webhook."""

    APPLIED = "applied"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"
    INTEGRATION_ERROR = "integration_error"
    DOWNSTREAM_ERROR = "downstream_error"


class ReconcileResult(BaseModel):
    """Result of reconciling one webhook event."""

    outcome: ReconcileOutcome
    event_type: str
    message: str = ""
    target: Optional[str] = Field(None, description="Correlation key the event resolved to")

    @property
    def acknowledged(self) -> bool:
        """Whether the processor should consider the event delivered."""
        return self.outcome != ReconcileOutcome.DOWNSTREAM_ERROR


class TransitionErrorKind(str, Enum):
    """Business error kinds for user-initiated transitions."""

    CONFLICT = "conflict"
    NOT_FOUND = "not_found"


class TransitionError(BaseModel):
    kind: TransitionErrorKind
    message: str


class TransitionResult(BaseModel):
    """Result of a user-initiated lifecycle operation."""

    profile: Optional[SubscriptionProfile] = None
    error: Optional[TransitionError] = None
    gateway_failed: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(
        cls, profile: SubscriptionProfile, gateway_failed: bool = False
    ) -> "TransitionResult":
        return cls(profile=profile, gateway_failed=gateway_failed)

    @classmethod
    def conflict(
        cls, message: str, profile: Optional[SubscriptionProfile] = None
    ) -> "TransitionResult":
        return cls(
            profile=profile,
            error=TransitionError(kind=TransitionErrorKind.CONFLICT, message=message),
        )

    @classmethod
    def not_found(cls, message: str) -> "TransitionResult":
        return cls(error=TransitionError(kind=TransitionErrorKind.NOT_FOUND, message=message))


class SessionValidation(BaseModel):
    """Result of validating a payment session for registration or renewal."""

    is_valid: bool
    reason: Optional[str] = None
    session: Optional[PaymentSession] = None


class CheckoutResult(BaseModel):
    """Result of starting a checkout."""

    session: PaymentSession
    approval_url: Optional[str] = None
    error: Optional[str] = Field(None, description="Gateway error, if the processor call failed")

    @property
    def ok(self) -> bool:
        return self.error is None


class ProcessorSubscriptionStatus(BaseModel):
    """Processor view of a user's recurring subscription."""

    has_active_subscription: bool = False
    subscription_type: Optional[SubscriptionType] = None
    external_subscription_id: Optional[str] = None
    processor_status: Optional[str] = None
    next_billing_time: Optional[str] = Field(None, description="ISO 8601 timestamp")
    session_status: Optional[PaymentSessionStatus] = None
    session_synced: bool = Field(
        False, description="Whether the local session was closed to match the processor"
    )
