"""API request models for user and checkout endpoints."""

from typing import Optional

from pydantic import BaseModel, Field

from subscription_sync.models.payment_session import SubscriptionType


class CancelSubscriptionRequest(BaseModel):
    """Request to cancel the user's subscription."""

    reason: str = Field(
        default="User requested cancellation", description="Reason forwarded to the processor"
    )

    class Config:
        json_schema_extra = {"example": {"reason": "User requested cancellation"}}


class RenewSubscriptionRequest(BaseModel):
    """Request to renew a subscription from a paid payment session."""

    external_reference: str = Field(..., min_length=1, description="Payment session reference")
    subscription_expires_at_millis: Optional[int] = Field(
        None, description="Explicit new expiry (Unix millis); defaults to now + 1 billing period"
    )

    class Config:
        json_schema_extra = {
            "example": {
                "external_reference": "lp2k3x9c-4f8g0a1bz",
                "subscription_expires_at_millis": None,
            }
        }


class CreateCheckoutRequest(BaseModel):
    """Request to start a checkout."""

    subscription_type: Optional[SubscriptionType] = Field(
        None, description="one_time or recurring; defaults to the configured type"
    )

    class Config:
        json_schema_extra = {"example": {"subscription_type": "recurring"}}


class ExecutePaymentRequest(BaseModel):
    """Request to execute an approved one-time payment."""

    payment_id: str = Field(..., min_length=1, description="Processor payment id")
    payer_id: str = Field(..., min_length=1, description="Processor payer id")

    class Config:
        json_schema_extra = {
            "example": {"payment_id": "PAYID-MVYXQ3A0", "payer_id": "QYR5Z8XDVJNXQ"}
        }
