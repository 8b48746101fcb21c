"""Pydantic models for domain objects, settings, and API payloads."""

# Domain models
from .profile import (
    CANCELLABLE_STATUSES,
    SubscriptionProfile,
    SubscriptionStatus,
)
from .payment_session import (
    ALLOWED_TRANSITIONS,
    REDEEMABLE_STATUSES,
    PaymentSession,
    PaymentSessionStatus,
    SubscriptionType,
    can_transition,
)

# Webhook events
from .events import (
    BillingEvent,
    SaleCompleted,
    SubscriptionActivated,
    SubscriptionCancelled,
    SubscriptionPaymentCompleted,
    SubscriptionPaymentFailed,
    SubscriptionSuspended,
    UnhandledEvent,
    WebhookEnvelope,
    parse_billing_event,
)

# Notifications
from .notifications import NotificationKind, NotificationMessage

# Results
from .results import (
    CheckoutResult,
    ProcessorSubscriptionStatus,
    ReconcileOutcome,
    ReconcileResult,
    SessionValidation,
    TransitionError,
    TransitionErrorKind,
    TransitionResult,
)

# Settings
from .settings import (
    AccessConfig,
    BillingConfig,
    GatewayConfig,
    NotificationsConfig,
    ServiceSettings,
)

__all__ = [
    # Domain
    "CANCELLABLE_STATUSES",
    "SubscriptionProfile",
    "SubscriptionStatus",
    "ALLOWED_TRANSITIONS",
    "REDEEMABLE_STATUSES",
    "PaymentSession",
    "PaymentSessionStatus",
    "SubscriptionType",
    "can_transition",
    # Events
    "BillingEvent",
    "SaleCompleted",
    "SubscriptionActivated",
    "SubscriptionCancelled",
    "SubscriptionPaymentCompleted",
    "SubscriptionPaymentFailed",
    "SubscriptionSuspended",
    "UnhandledEvent",
    "WebhookEnvelope",
    "parse_billing_event",
    # Notifications
    "NotificationKind",
    "NotificationMessage",
    # Results
    "CheckoutResult",
    "ProcessorSubscriptionStatus",
    "ReconcileOutcome",
    "ReconcileResult",
    "SessionValidation",
    "TransitionError",
    "TransitionErrorKind",
    "TransitionResult",
    # Settings
    "AccessConfig",
    "BillingConfig",
    "GatewayConfig",
    "NotificationsConfig",
    "ServiceSettings",
]
