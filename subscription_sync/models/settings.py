"""Service settings models.

Models for the billing.yaml configuration file.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from subscription_sync.models.payment_session import SubscriptionType
from subscription_sync.utils.billing_period import validate_billing_period

SANDBOX_BASE_URL = "https://api-m.sandbox.paypal.com"
PRODUCTION_BASE_URL = "https://api-m.paypal.com"


class GatewayEnvironment(str, Enum):
    SANDBOX = "sandbox"
    PRODUCTION = "production"


class GatewayConfig(BaseModel):
    """Payment processor connection settings."""

    environment: GatewayEnvironment = Field(
        default=GatewayEnvironment.SANDBOX, description="Processor environment"
    )
    base_url: Optional[str] = Field(None, description="Override for the processor API base URL")
    client_id: str = Field(default="", description="OAuth client id")
    client_secret: str = Field(default="", description="OAuth client secret")
    plan_id: Optional[str] = Field(None, description="Billing plan for recurring checkouts")
    product_id: Optional[str] = Field(None, description="Catalog product backing the plan")
    timeout_seconds: float = Field(default=10.0, gt=0, description="HTTP timeout per call")
    return_url: str = Field(
        default="http://localhost:3000/registro", description="Redirect after approval"
    )
    cancel_url: str = Field(
        default="http://localhost:3000/suscripcion?cancelled=true",
        description="Redirect after the payer cancels",
    )
    brand_name: str = Field(default="Subscription Service", description="Shown at checkout")

    @property
    def resolved_base_url(self) -> str:
        if self.base_url:
            return self.base_url.rstrip("/")
        if self.environment == GatewayEnvironment.PRODUCTION:
            return PRODUCTION_BASE_URL
        return SANDBOX_BASE_URL

    class Config:
        json_schema_extra = {
            "example": {
                "environment": "sandbox",
                "client_id": "AZ...",
                "client_secret": "EC...",
                "plan_id": "P-5ML4271244454362WXNWU5NQ",
                "timeout_seconds": 10.0,
            }
        }


class BillingConfig(BaseModel):
    """Billing periods and pricing."""

    billing_period: str = Field(default="P1M", description="ISO 8601 billing period")
    grace_period: str = Field(default="P7D", description="ISO 8601 grace period")
    payment_session_ttl: str = Field(default="PT48H", description="ISO 8601 session TTL")
    event_retention: str = Field(
        default="P30D", description="ISO 8601 window for remembering processed webhook ids"
    )
    price: str = Field(default="10.00", description="Price as a decimal string")
    currency: str = Field(default="USD", description="ISO 4217 currency code")
    default_subscription_type: SubscriptionType = Field(
        default=SubscriptionType.RECURRING, description="Checkout type when none is requested"
    )

    @field_validator("billing_period", "grace_period", "payment_session_ttl", "event_retention")
    @classmethod
    def check_duration(cls, value: str) -> str:
        if not validate_billing_period(value):
            raise ValueError(f"Unsupported ISO 8601 duration: '{value}'")
        return value


class NotificationsConfig(BaseModel):
    """Pub/Sub notification settings."""

    enabled: bool = Field(default=False, description="Publish notifications")
    project_id: str = Field(default="local-project", description="GCP project ID")
    topic: str = Field(default="subscription-notifications", description="Pub/Sub topic name")


class AccessConfig(BaseModel):
    """Access gate settings."""

    anonymous_post_limit: int = Field(
        default=1, ge=0, description="Posts an anonymous visitor may view"
    )
    anonymous_cookie_max_age_seconds: int = Field(
        default=86400, gt=0, description="Anonymous view counter cookie lifetime"
    )


class ServiceSettings(BaseModel):
    """Complete billing.yaml configuration."""

    gateway: GatewayConfig = Field(default_factory=GatewayConfig)
    billing: BillingConfig = Field(default_factory=BillingConfig)
    notifications: NotificationsConfig = Field(default_factory=NotificationsConfig)
    access: AccessConfig = Field(default_factory=AccessConfig)
