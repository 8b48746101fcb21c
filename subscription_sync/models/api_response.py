"""API response models."""

from typing import Optional

from pydantic import BaseModel, Field

from subscription_sync.models.payment_session import PaymentSession
from subscription_sync.models.profile import SubscriptionProfile
from subscription_sync.models.results import ProcessorSubscriptionStatus


class WebhookAckResponse(BaseModel):
    """Acknowledgement returned to the processor."""

    status: str = Field(..., description="'ok' when acknowledged, 'retry' otherwise")
    outcome: str = Field(..., description="Reconciliation outcome")
    message: str = Field(default="", description="Human-readable detail")

    class Config:
        json_schema_extra = {
            "example": {"status": "ok", "outcome": "applied", "message": "Payment failure recorded"}
        }


class SubscriptionProfileResponse(BaseModel):
    """Full subscription profile projection."""

    user_id: str
    subscription_status: str
    subscription_expires_at_millis: Optional[int] = None
    auto_renewal_enabled: bool
    payment_retry_count: int
    last_payment_attempt_millis: Optional[int] = None
    grace_period_ends_millis: Optional[int] = None
    external_subscription_id: Optional[str] = None
    has_access: bool = Field(..., description="Permissive access decision at read time")

    @classmethod
    def from_profile(
        cls, profile: SubscriptionProfile, has_access: bool
    ) -> "SubscriptionProfileResponse":
        return cls(
            has_access=has_access,
            **profile.model_dump(mode="json"),
        )


class TransitionResponse(SubscriptionProfileResponse):
    """Profile after a user-initiated transition."""

    gateway_failed: bool = Field(
        default=False, description="Processor call failed; local state was still updated"
    )
    message: str = Field(default="", description="Human-readable detail")


class SessionResponse(BaseModel):
    """Login/session fetch projection."""

    user_id: str
    subscription_status: str
    subscription_expires_at_millis: Optional[int] = None
    auto_renewal_enabled: bool
    has_access: bool
    has_strict_access: bool
    grace_period_ends_millis: Optional[int] = None


class ProcessorStatusResponse(BaseModel):
    """Processor view of the user's recurring subscription."""

    user_id: str
    has_active_subscription: bool
    subscription_type: str = Field(..., description="Session billing type, 'none' without one")
    external_subscription_id: Optional[str] = None
    processor_status: Optional[str] = None
    next_billing_time: Optional[str] = None
    session_status: Optional[str] = None
    session_synced: bool = False

    @classmethod
    def from_status(
        cls, user_id: str, status: ProcessorSubscriptionStatus
    ) -> "ProcessorStatusResponse":
        body = status.model_dump(mode="json")
        body["subscription_type"] = body["subscription_type"] or "none"
        return cls(user_id=user_id, **body)


class AccessCheckResponse(BaseModel):
    """Access decision for one protected operation."""

    user_id: str
    operation: str
    policy: str
    allowed: bool


class PaymentSessionResponse(BaseModel):
    """Payment session projection."""

    external_reference: str
    status: str
    subscription_type: str
    amount: str
    currency: str
    expires_at_millis: int
    user_id: Optional[str] = None
    external_subscription_id: Optional[str] = None
    processor_payment_id: Optional[str] = None
    approval_url: Optional[str] = None

    @classmethod
    def from_session(cls, session: PaymentSession) -> "PaymentSessionResponse":
        return cls(
            **session.model_dump(
                mode="json", exclude={"created_at_millis"}
            )
        )


class SessionValidationResponse(BaseModel):
    """Result of validating a checkout session."""

    external_reference: str
    is_valid: bool
    reason: Optional[str] = None
    status: Optional[str] = None


class AnonymousViewsResponse(BaseModel):
    """Anonymous post view counter state."""

    posts_viewed: int
    limit: int
    allowed: bool
