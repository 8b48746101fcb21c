"""Exception hierarchy for the subscription sync service."""

from typing import Optional


class SubscriptionSyncError(Exception):
    """Base exception for subscription sync errors."""

    pass


class ConfigurationError(SubscriptionSyncError):
    """Raised when configuration is invalid or missing."""

    pass


class ProfileNotFoundError(SubscriptionSyncError):
    """Raised when a subscription profile is not found in the store."""

    pass


class PaymentSessionNotFoundError(SubscriptionSyncError):
    """Raised when a payment session is not found in the store."""

    pass


class InvalidSessionTransitionError(SubscriptionSyncError):
    """Raised when a payment session status change is not allowed."""

    def __init__(self, external_reference: str, current_status: str, requested_status: str):
        self.external_reference = external_reference
        self.current_status = current_status
        self.requested_status = requested_status
        super().__init__(
            f"Payment session '{external_reference}' cannot move from "
            f"'{current_status}' to '{requested_status}'"
        )


class InvalidWebhookPayloadError(SubscriptionSyncError):
    """Raised when a billing webhook body is structurally invalid."""

    pass


class GatewayError(SubscriptionSyncError):
    """Raised when the payment processor call fails or is unreachable."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)
