"""Webhook reconciler - applies processor billing events to local state.

Each decoded BillingEvent is applied as at most one atomic conditional
update against the profile or session store. Events that carry an id are
claimed in the event ledger first, so redeliveries are acknowledged as
duplicates without touching state or re-sending notifications.
"""

from typing import Optional

from subscription_sync.exceptions import (
    GatewayError,
    InvalidSessionTransitionError,
    PaymentSessionNotFoundError,
    ProfileNotFoundError,
)
from subscription_sync.logging_config import get_logger
from subscription_sync.models.events import (
    BillingEvent,
    SaleCompleted,
    SubscriptionActivated,
    SubscriptionCancelled,
    SubscriptionPaymentCompleted,
    SubscriptionPaymentFailed,
    SubscriptionSuspended,
    event_type_name,
)
from subscription_sync.models.payment_session import PaymentSession, PaymentSessionStatus
from subscription_sync.models.profile import SubscriptionProfile, SubscriptionStatus
from subscription_sync.models.results import ReconcileOutcome, ReconcileResult
from subscription_sync.models.settings import BillingConfig
from subscription_sync.repositories.event_ledger import EventLedger
from subscription_sync.repositories.payment_session_store import PaymentSessionStore
from subscription_sync.repositories.profile_store import ProfileStore
from subscription_sync.services.access_gate import has_access
from subscription_sync.services.escalation_policy import EscalationDecision, escalate
from subscription_sync.services.notification_dispatcher import NotificationDispatcher
from subscription_sync.services.payment_gateway import PaymentGateway
from subscription_sync.services.time_controller import TimeController
from subscription_sync.utils.billing_period import parse_billing_period

logger = get_logger(__name__)


def _paid_period_ended(profile: SubscriptionProfile, now_millis: int) -> bool:
    """Whether a late billing failure would wrongly restore access.

    Covers lapsed profiles and locally cancelled ones that are still Active
    only because no read has expired them yet.
    """
    if not has_access(profile, now_millis):
        return True
    expires = profile.subscription_expires_at_millis
    return not profile.auto_renewal_enabled and (expires is None or now_millis > expires)


class WebhookReconciler:
    """Reconciles processor webhook events with local subscription state.

    Args:
        profile_store: Profile storage
        session_store: Payment session storage
        ledger: Processed-event ledger
        gateway: Payment processor gateway, used to verify sales
        dispatcher: Notification dispatcher
        clock: Service clock
        billing: Billing and grace periods
    """

    def __init__(
        self,
        profile_store: ProfileStore,
        session_store: PaymentSessionStore,
        ledger: EventLedger,
        gateway: PaymentGateway,
        dispatcher: NotificationDispatcher,
        clock: TimeController,
        billing: Optional[BillingConfig] = None,
    ):
        self.profile_store = profile_store
        self.session_store = session_store
        self.ledger = ledger
        self.gateway = gateway
        self.dispatcher = dispatcher
        self.clock = clock
        billing = billing or BillingConfig()
        self.billing_period_millis = parse_billing_period(billing.billing_period)
        self.grace_period_millis = parse_billing_period(billing.grace_period)

    def reconcile(self, event: BillingEvent) -> ReconcileResult:
        """Apply one billing event.

        Args:
            event: Decoded webhook event

        Returns:
            ReconcileResult describing what happened. A downstream_error
            outcome means the event was not processed and its ledger claim
            was released, so a redelivery will be applied.
        """
        event_type = event_type_name(event)
        event_id = event.event_id

        if event_id:
            if not self.ledger.claim(event_id, self.clock.now_millis()):
                logger.info("webhook_duplicate", event_id=event_id, event_type=event_type)
                return ReconcileResult(
                    outcome=ReconcileOutcome.DUPLICATE,
                    event_type=event_type,
                    message="Event already processed",
                )
        else:
            logger.warning(
                "webhook_without_event_id",
                event_type=event_type,
                message="Event cannot be deduplicated",
            )

        try:
            result = self._apply(event, event_type)
        except GatewayError as e:
            if event_id:
                self.ledger.release(event_id)
            logger.error(
                "webhook_downstream_error",
                event_id=event_id,
                event_type=event_type,
                error=str(e),
                error_type=type(e).__name__,
            )
            return ReconcileResult(
                outcome=ReconcileOutcome.DOWNSTREAM_ERROR,
                event_type=event_type,
                message=f"Payment processor unavailable: {e}",
            )
        except Exception:
            if event_id:
                self.ledger.release(event_id)
            raise

        logger.info(
            "webhook_reconciled",
            event_id=event_id,
            event_type=event_type,
            outcome=result.outcome.value,
            target=result.target,
        )
        return result

    def _apply(self, event: BillingEvent, event_type: str) -> ReconcileResult:
        if isinstance(event, SubscriptionActivated):
            return self._handle_activated(event, event_type)
        if isinstance(event, SubscriptionPaymentCompleted):
            return self._handle_payment_completed(event, event_type)
        if isinstance(event, SubscriptionPaymentFailed):
            return self._handle_payment_failed(event, event_type)
        if isinstance(event, SubscriptionCancelled):
            return self._handle_cancelled(event, event_type)
        if isinstance(event, SubscriptionSuspended):
            return self._handle_suspended(event, event_type)
        if isinstance(event, SaleCompleted):
            return self._handle_sale_completed(event, event_type)

        logger.info("webhook_ignored", event_type=event_type)
        return ReconcileResult(
            outcome=ReconcileOutcome.IGNORED,
            event_type=event_type,
            message="Event type not handled",
        )

    @staticmethod
    def _integration_error(event_type: str, target: Optional[str], message: str) -> ReconcileResult:
        logger.warning(
            "webhook_integration_error",
            event_type=event_type,
            target=target,
            message=message,
        )
        return ReconcileResult(
            outcome=ReconcileOutcome.INTEGRATION_ERROR,
            event_type=event_type,
            message=message,
            target=target,
        )

    @staticmethod
    def _applied(event_type: str, target: str, message: str) -> ReconcileResult:
        return ReconcileResult(
            outcome=ReconcileOutcome.APPLIED,
            event_type=event_type,
            message=message,
            target=target,
        )

    def _update_session(
        self,
        external_reference: str,
        new_status: PaymentSessionStatus,
        event_type: str,
        **fields: Optional[str],
    ) -> tuple[Optional[PaymentSession], Optional[ReconcileResult]]:
        """Move a session to new_status and set fields, as one conditional update."""

        def mutate(current: PaymentSession) -> PaymentSession:
            current.set_status(new_status, reason=event_type)
            for name, value in fields.items():
                if value is not None:
                    setattr(current, name, value)
            return current

        try:
            return self.session_store.update_with(external_reference, mutate), None
        except PaymentSessionNotFoundError:
            return None, self._integration_error(
                event_type, external_reference, "No payment session for correlation key"
            )
        except InvalidSessionTransitionError as e:
            return None, self._integration_error(event_type, external_reference, str(e))

    def _update_linked_profile(
        self,
        external_subscription_id: str,
        event_type: str,
        mutate,
        declined_message: str = "Event does not apply to the profile",
    ) -> tuple[Optional[SubscriptionProfile], Optional[ReconcileResult]]:
        """Apply mutate to the profile linked to a processor subscription.

        The mutation only commits if the profile is still linked to the same
        processor subscription when the store lock is taken. mutate may
        return None to decline, which is reported with declined_message.
        """
        profile = self.profile_store.find_by_external_subscription_id(external_subscription_id)
        if profile is None:
            return None, self._integration_error(
                event_type, external_subscription_id, "No profile linked to subscription"
            )

        unlinked: list[bool] = []

        def guarded(current: SubscriptionProfile) -> Optional[SubscriptionProfile]:
            if current.external_subscription_id != external_subscription_id:
                unlinked.append(True)
                return None
            return mutate(current)

        try:
            updated = self.profile_store.update_with(profile.user_id, guarded)
        except ProfileNotFoundError:
            updated = None
            unlinked.append(True)

        if updated is None:
            message = "Profile no longer linked to subscription" if unlinked else declined_message
            return None, self._integration_error(event_type, external_subscription_id, message)
        return updated, None

    def _handle_activated(self, event: SubscriptionActivated, event_type: str) -> ReconcileResult:
        session, error = self._update_session(
            event.external_reference,
            PaymentSessionStatus.ACTIVE_SUBSCRIPTION,
            event_type,
            external_subscription_id=event.external_subscription_id,
        )
        if error:
            return error

        # Activation can arrive after the session was already redeemed
        if session.user_id and session.external_subscription_id:
            self._link_profile_to_subscription(session.user_id, session.external_subscription_id)

        return self._applied(event_type, event.external_reference, "Subscription activated")

    def _link_profile_to_subscription(self, user_id: str, external_subscription_id: str) -> None:
        def mutate(current: SubscriptionProfile) -> Optional[SubscriptionProfile]:
            if current.external_subscription_id:
                return None
            current.external_subscription_id = external_subscription_id
            return current

        try:
            if self.profile_store.update_with(user_id, mutate):
                logger.info(
                    "profile_linked_to_subscription",
                    user_id=user_id,
                    external_subscription_id=external_subscription_id,
                )
        except ProfileNotFoundError:
            logger.warning("linked_profile_missing", user_id=user_id)

    def _handle_payment_completed(
        self, event: SubscriptionPaymentCompleted, event_type: str
    ) -> ReconcileResult:
        now = self.clock.now_millis()

        def mutate(current: SubscriptionProfile) -> SubscriptionProfile:
            # Extends from now, not from the previous expiry
            current.set_status(SubscriptionStatus.ACTIVE, reason="payment_completed")
            current.set_expiry(now + self.billing_period_millis, reason="payment_completed")
            current.reset_billing_attempts(reason="payment_completed")
            current.last_payment_attempt_millis = now
            return current

        _, error = self._update_linked_profile(event.external_subscription_id, event_type, mutate)
        if error:
            return error
        return self._applied(event_type, event.external_subscription_id, "Payment recorded")

    def _handle_payment_failed(
        self, event: SubscriptionPaymentFailed, event_type: str
    ) -> ReconcileResult:
        now = self.clock.now_millis()
        decisions: list[EscalationDecision] = []

        def mutate(current: SubscriptionProfile) -> Optional[SubscriptionProfile]:
            if _paid_period_ended(current, now):
                return None
            retry_count = current.payment_retry_count + 1
            decision = escalate(
                previous_status=current.subscription_status,
                retry_count=retry_count,
                now_millis=now,
                grace_period_millis=self.grace_period_millis,
                previous_grace_period_ends_millis=current.grace_period_ends_millis,
            )
            current.set_retry_count(retry_count, reason="payment_failed")
            current.last_payment_attempt_millis = now
            current.set_status(decision.new_status, reason="payment_failed")
            current.grace_period_ends_millis = decision.grace_period_ends_millis
            decisions.append(decision)
            return current

        updated, error = self._update_linked_profile(
            event.external_subscription_id,
            event_type,
            mutate,
            declined_message="Subscription period has already ended",
        )
        if error:
            return error

        decision = decisions[-1]
        if decision.notification_kind is not None:
            self.dispatcher.dispatch(decision.notification_kind, updated)

        return self._applied(
            event_type,
            event.external_subscription_id,
            f"Payment failure recorded (retry {updated.payment_retry_count})",
        )

    def _handle_cancelled(self, event: SubscriptionCancelled, event_type: str) -> ReconcileResult:
        session = self.session_store.find_by_external_subscription_id(
            event.external_subscription_id
        )
        if session is None:
            return self._integration_error(
                event_type, event.external_subscription_id, "No payment session for subscription"
            )

        _, error = self._update_session(
            session.external_reference,
            PaymentSessionStatus.CANCELLED_SUBSCRIPTION,
            event_type,
        )
        if error:
            return error
        return self._applied(
            event_type, event.external_subscription_id, "Subscription session cancelled"
        )

    def _handle_suspended(self, event: SubscriptionSuspended, event_type: str) -> ReconcileResult:
        def mutate(current: SubscriptionProfile) -> SubscriptionProfile:
            current.set_status(SubscriptionStatus.SUSPENDED, reason="processor_suspended")
            current.grace_period_ends_millis = None
            return current

        _, error = self._update_linked_profile(event.external_subscription_id, event_type, mutate)
        if error:
            return error
        return self._applied(event_type, event.external_subscription_id, "Subscription suspended")

    def _handle_sale_completed(self, event: SaleCompleted, event_type: str) -> ReconcileResult:
        if not self.session_store.exists(event.external_reference):
            return self._integration_error(
                event_type, event.external_reference, "No payment session for correlation key"
            )
        if not event.processor_payment_id:
            return self._integration_error(
                event_type, event.external_reference, "Sale has no payment id to verify"
            )

        # Raises GatewayError when the processor cannot be reached
        if not self.gateway.is_payment_approved(event.processor_payment_id):
            return self._integration_error(
                event_type, event.external_reference, "Payment not approved by processor"
            )

        _, error = self._update_session(
            event.external_reference,
            PaymentSessionStatus.PAID,
            event_type,
            processor_payment_id=event.processor_payment_id,
        )
        if error:
            return error
        return self._applied(event_type, event.external_reference, "Sale verified")
