"""Billing webhook event models.

Inbound processor webhooks are decoded once, at the HTTP boundary, into one
variant of the ``BillingEvent`` union. Each variant carries only the
correlation key and fields its transition needs.
"""

from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, Field, ValidationError, field_validator

from subscription_sync.exceptions import InvalidWebhookPayloadError

# Processor-native names carry this prefix, e.g. BILLING.SUBSCRIPTION.ACTIVATED
BILLING_PREFIX = "BILLING."

SUBSCRIPTION_ACTIVATED = "SUBSCRIPTION.ACTIVATED"
SUBSCRIPTION_PAYMENT_COMPLETED = "SUBSCRIPTION.PAYMENT.COMPLETED"
SUBSCRIPTION_PAYMENT_FAILED = "SUBSCRIPTION.PAYMENT.FAILED"
SUBSCRIPTION_CANCELLED = "SUBSCRIPTION.CANCELLED"
SUBSCRIPTION_SUSPENDED = "SUBSCRIPTION.SUSPENDED"
PAYMENT_SALE_COMPLETED = "PAYMENT.SALE.COMPLETED"


class WebhookEnvelope(BaseModel):
    """Raw webhook body as posted by the processor."""

    id: Optional[str] = Field(None, description="Processor event id, used for dedup")
    event_type: str = Field(..., min_length=1, description="Processor event type")
    resource: dict[str, Any] = Field(default_factory=dict, description="Event resource")

    @field_validator("id", mode="before")
    @classmethod
    def coerce_numeric_id(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value

    class Config:
        json_schema_extra = {
            "example": {
                "id": "WH-7YX49823S2290830K-0JE13296W68552352",
                "event_type": "BILLING.SUBSCRIPTION.PAYMENT.FAILED",
                "resource": {"id": "I-BW452GLLEP1G"},
            }
        }


class _BaseEvent(BaseModel):
    event_id: Optional[str] = Field(None, description="Processor event id")


class SubscriptionActivated(_BaseEvent):
    """Recurring subscription approved and activated by the processor."""

    kind: Literal["subscription_activated"] = "subscription_activated"
    external_reference: str
    external_subscription_id: Optional[str] = None


class SubscriptionPaymentCompleted(_BaseEvent):
    """Recurring charge succeeded."""

    kind: Literal["subscription_payment_completed"] = "subscription_payment_completed"
    external_subscription_id: str


class SubscriptionPaymentFailed(_BaseEvent):
    """Recurring charge failed."""

    kind: Literal["subscription_payment_failed"] = "subscription_payment_failed"
    external_subscription_id: str


class SubscriptionCancelled(_BaseEvent):
    """Subscription cancelled at the processor."""

    kind: Literal["subscription_cancelled"] = "subscription_cancelled"
    external_subscription_id: str


class SubscriptionSuspended(_BaseEvent):
    """Subscription suspended at the processor."""

    kind: Literal["subscription_suspended"] = "subscription_suspended"
    external_subscription_id: str


class SaleCompleted(_BaseEvent):
    """One-time sale completed; must be verified with the processor."""

    kind: Literal["sale_completed"] = "sale_completed"
    external_reference: str
    processor_payment_id: Optional[str] = None


class UnhandledEvent(_BaseEvent):
    """Any event type this service does not act on."""

    kind: Literal["unhandled"] = "unhandled"
    event_type: str


BillingEvent = Union[
    SubscriptionActivated,
    SubscriptionPaymentCompleted,
    SubscriptionPaymentFailed,
    SubscriptionCancelled,
    SubscriptionSuspended,
    SaleCompleted,
    UnhandledEvent,
]


def normalize_event_type(event_type: str) -> str:
    """Strip the processor's BILLING. prefix from an event type."""
    event_type = event_type.strip().upper()
    if event_type.startswith(BILLING_PREFIX):
        return event_type[len(BILLING_PREFIX):]
    return event_type


def _require(resource: dict[str, Any], key: str, event_type: str) -> str:
    value = resource.get(key)
    if value is None or not isinstance(value, str) or not value.strip():
        raise InvalidWebhookPayloadError(
            f"Event '{event_type}' is missing correlation key 'resource.{key}'"
        )
    return value


def _optional(resource: dict[str, Any], key: str) -> Optional[str]:
    value = resource.get(key)
    if isinstance(value, str) and value.strip():
        return value
    return None


def parse_billing_event(payload: Any) -> BillingEvent:
    """Decode a raw webhook body into a BillingEvent variant.

    Args:
        payload: JSON-decoded request body

    Returns:
        The matching BillingEvent variant

    Raises:
        InvalidWebhookPayloadError: If the body is not an object, has no
            event_type, or a known type lacks its correlation key
    """
    if not isinstance(payload, dict):
        raise InvalidWebhookPayloadError("Webhook body must be a JSON object")

    try:
        envelope = WebhookEnvelope(**payload)
    except ValidationError as e:
        raise InvalidWebhookPayloadError(f"Invalid webhook body: {e}")

    event_type = normalize_event_type(envelope.event_type)
    resource = envelope.resource
    event_id = envelope.id

    if event_type == SUBSCRIPTION_ACTIVATED:
        return SubscriptionActivated(
            event_id=event_id,
            external_reference=_require(resource, "custom_id", event_type),
            external_subscription_id=_optional(resource, "id"),
        )
    if event_type == SUBSCRIPTION_PAYMENT_COMPLETED:
        return SubscriptionPaymentCompleted(
            event_id=event_id,
            external_subscription_id=_require(resource, "billing_agreement_id", event_type),
        )
    if event_type == SUBSCRIPTION_PAYMENT_FAILED:
        return SubscriptionPaymentFailed(
            event_id=event_id,
            external_subscription_id=_require(resource, "id", event_type),
        )
    if event_type == SUBSCRIPTION_CANCELLED:
        return SubscriptionCancelled(
            event_id=event_id,
            external_subscription_id=_require(resource, "id", event_type),
        )
    if event_type == SUBSCRIPTION_SUSPENDED:
        return SubscriptionSuspended(
            event_id=event_id,
            external_subscription_id=_require(resource, "id", event_type),
        )
    if event_type == PAYMENT_SALE_COMPLETED:
        return SaleCompleted(
            event_id=event_id,
            external_reference=_require(resource, "custom", event_type),
            processor_payment_id=_optional(resource, "parent_payment"),
        )

    return UnhandledEvent(event_id=event_id, event_type=event_type)


def event_type_name(event: BillingEvent) -> str:
    """Canonical event type string for a decoded event."""
    names = {
        "subscription_activated": SUBSCRIPTION_ACTIVATED,
        "subscription_payment_completed": SUBSCRIPTION_PAYMENT_COMPLETED,
        "subscription_payment_failed": SUBSCRIPTION_PAYMENT_FAILED,
        "subscription_cancelled": SUBSCRIPTION_CANCELLED,
        "subscription_suspended": SUBSCRIPTION_SUSPENDED,
        "sale_completed": PAYMENT_SALE_COMPLETED,
    }
    if isinstance(event, UnhandledEvent):
        return event.event_type
    return names[event.kind]
