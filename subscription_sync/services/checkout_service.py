"""Checkout service - payment session creation, validation and redemption.

Responsibilities:
- Start checkouts (one-time payment or recurring subscription)
- Validate sessions before they are redeemed, expiring stale ones lazily
- Execute approved one-time payments
- Mark redeemed sessions as used
"""

from typing import Optional

from subscription_sync.exceptions import GatewayError, PaymentSessionNotFoundError
from subscription_sync.logging_config import get_logger
from subscription_sync.models.payment_session import (
    REDEEMABLE_STATUSES,
    PaymentSession,
    PaymentSessionStatus,
    SubscriptionType,
)
from subscription_sync.models.results import CheckoutResult, SessionValidation
from subscription_sync.models.settings import BillingConfig
from subscription_sync.repositories.payment_session_store import PaymentSessionStore
from subscription_sync.services.payment_gateway import APPROVED_PAYMENT_STATE, PaymentGateway
from subscription_sync.services.time_controller import TimeController
from subscription_sync.utils.billing_period import parse_billing_period
from subscription_sync.utils.reference_generator import generate_external_reference

logger = get_logger(__name__)


class SessionNotRedeemableError(ValueError):
    """Raised when a session cannot be marked used (unlinked or unpaid)."""

    pass


class CheckoutService:
    """Manages payment sessions for checkouts.

    Args:
        session_store: Payment session storage
        gateway: Payment processor gateway
        clock: Service clock
        billing: Pricing, session TTL and default checkout type
    """

    def __init__(
        self,
        session_store: PaymentSessionStore,
        gateway: PaymentGateway,
        clock: TimeController,
        billing: Optional[BillingConfig] = None,
    ):
        self.session_store = session_store
        self.gateway = gateway
        self.clock = clock
        self.billing = billing or BillingConfig()
        self.session_ttl_millis = parse_billing_period(self.billing.payment_session_ttl)

    def create_checkout(
        self, subscription_type: Optional[SubscriptionType] = None
    ) -> CheckoutResult:
        """Start a checkout.

        A pending session is stored before the processor is called. If the
        processor call fails the session stays pending and lazily expires.

        Args:
            subscription_type: one_time or recurring (defaults to config)

        Returns:
            CheckoutResult with the approval URL, or the gateway error
        """
        subscription_type = subscription_type or self.billing.default_subscription_type
        now = self.clock.now_millis()

        session = PaymentSession(
            external_reference=generate_external_reference(now),
            status=PaymentSessionStatus.PENDING,
            subscription_type=subscription_type,
            amount=self.billing.price,
            currency=self.billing.currency,
            created_at_millis=now,
            expires_at_millis=now + self.session_ttl_millis,
        )
        self.session_store.add(session)

        logger.info(
            "checkout_session_created",
            external_reference=session.external_reference,
            subscription_type=subscription_type.value,
            expires_at_millis=session.expires_at_millis,
        )

        try:
            if subscription_type == SubscriptionType.RECURRING:
                checkout = self.gateway.create_subscription(session.external_reference)
                fields = {
                    "external_subscription_id": checkout.external_subscription_id,
                    "approval_url": checkout.approval_url,
                }
            else:
                payment = self.gateway.create_payment(session.external_reference)
                fields = {
                    "processor_payment_id": payment.payment_id,
                    "approval_url": payment.approval_url,
                }
        except GatewayError as e:
            logger.error(
                "checkout_gateway_failed",
                external_reference=session.external_reference,
                error=str(e),
                error_type=type(e).__name__,
            )
            return CheckoutResult(session=session, error=str(e))

        def attach(current: PaymentSession) -> PaymentSession:
            for name, value in fields.items():
                setattr(current, name, value)
            return current

        session = self.session_store.update_with(session.external_reference, attach)
        return CheckoutResult(session=session, approval_url=session.approval_url)

    def get_session(self, external_reference: str) -> Optional[PaymentSession]:
        """Find a session, applying lazy expiry first."""
        if not self.session_store.exists(external_reference):
            return None
        return self._expire_if_stale(external_reference)

    def _expire_if_stale(self, external_reference: str) -> PaymentSession:
        now = self.clock.now_millis()

        def mutate(current: PaymentSession) -> Optional[PaymentSession]:
            if current.status != PaymentSessionStatus.PENDING or now <= current.expires_at_millis:
                return None
            current.set_status(PaymentSessionStatus.EXPIRED, reason="ttl_elapsed")
            return current

        updated = self.session_store.update_with(external_reference, mutate)
        return updated or self.session_store.get(external_reference)

    def validate_session(self, external_reference: str) -> SessionValidation:
        """Check whether a session can be redeemed by a new registration or renewal.

        Args:
            external_reference: Session reference

        Returns:
            SessionValidation; invalid when the session is unknown, past its
            TTL, unpaid, or already linked to a user
        """
        try:
            session = self._expire_if_stale(external_reference)
        except PaymentSessionNotFoundError:
            return SessionValidation(is_valid=False, reason="Payment session not found")

        # The TTL bounds redemption whatever the status; only pending sessions move to expired
        if self.clock.now_millis() > session.expires_at_millis:
            return SessionValidation(
                is_valid=False,
                reason="Payment session is expired",
                session=session,
            )
        if session.status not in REDEEMABLE_STATUSES:
            return SessionValidation(
                is_valid=False,
                reason=f"Payment session is {session.status.value}",
                session=session,
            )
        if session.is_linked:
            return SessionValidation(
                is_valid=False,
                reason="Payment session already used",
                session=session,
            )
        return SessionValidation(is_valid=True, session=session)

    def execute_payment(
        self, external_reference: str, payment_id: str, payer_id: str
    ) -> PaymentSession:
        """Execute an approved one-time payment and mark the session paid.

        Args:
            external_reference: Session reference
            payment_id: Processor payment id
            payer_id: Processor payer id

        Returns:
            The session; status is paid if the processor approved the payment

        Raises:
            PaymentSessionNotFoundError: If the reference is unknown
            SessionNotRedeemableError: If the payment belongs to another session
            GatewayError: If the processor call fails
            InvalidSessionTransitionError: If the session can no longer be paid
        """
        session = self.session_store.get(external_reference)
        if session.processor_payment_id and session.processor_payment_id != payment_id:
            raise SessionNotRedeemableError(
                f"Payment '{payment_id}' does not belong to session '{external_reference}'"
            )

        payment = self.gateway.execute_payment(payment_id, payer_id)
        state = payment.get("state")
        if state != APPROVED_PAYMENT_STATE:
            logger.warning(
                "payment_not_approved",
                external_reference=external_reference,
                payment_id=payment_id,
                state=state,
            )
            return session

        def mark_paid(current: PaymentSession) -> PaymentSession:
            current.set_status(PaymentSessionStatus.PAID, reason="payment_executed")
            current.processor_payment_id = payment_id
            return current

        return self.session_store.update_with(external_reference, mark_paid)

    def mark_session_used(self, external_reference: str) -> PaymentSession:
        """Mark a linked, paid session as used.

        Raises:
            PaymentSessionNotFoundError: If the reference is unknown
            SessionNotRedeemableError: If the session is not linked to a user
            InvalidSessionTransitionError: If the session is not paid
        """

        def mark_used(current: PaymentSession) -> PaymentSession:
            if not current.is_linked:
                raise SessionNotRedeemableError(
                    f"Payment session '{external_reference}' is not linked to a user"
                )
            current.set_status(PaymentSessionStatus.USED, reason="registration_completed")
            return current

        session = self.session_store.update_with(external_reference, mark_used)
        logger.info(
            "payment_session_used",
            external_reference=external_reference,
            user_id=session.user_id,
        )
        return session
