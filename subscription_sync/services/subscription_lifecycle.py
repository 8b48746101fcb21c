"""Subscription lifecycle service - user-initiated transitions and lazy expiry.

Responsibilities:
- Create profiles alongside user identities
- Cancel, reactivate and renew subscriptions on the user's request
- Expire stale profiles on read (session renewal hook)
- Report the processor's view of a recurring subscription

Business outcomes are returned as TransitionResult values, never raised.
Processor calls made during a transition are best-effort: a gateway
failure is logged and flagged but never blocks the local transition.
"""

from typing import Optional

from subscription_sync.exceptions import (
    GatewayError,
    InvalidSessionTransitionError,
    PaymentSessionNotFoundError,
    ProfileNotFoundError,
)
from subscription_sync.logging_config import get_logger
from subscription_sync.models.notifications import NotificationKind
from subscription_sync.models.payment_session import (
    REDEEMABLE_STATUSES,
    PaymentSession,
    PaymentSessionStatus,
    SubscriptionType,
)
from subscription_sync.models.profile import (
    CANCELLABLE_STATUSES,
    SubscriptionProfile,
    SubscriptionStatus,
)
from subscription_sync.models.results import ProcessorSubscriptionStatus, TransitionResult
from subscription_sync.models.settings import BillingConfig
from subscription_sync.repositories.payment_session_store import PaymentSessionStore
from subscription_sync.repositories.profile_store import ProfileStore
from subscription_sync.services.notification_dispatcher import NotificationDispatcher
from subscription_sync.services.payment_gateway import PaymentGateway
from subscription_sync.services.time_controller import TimeController
from subscription_sync.utils.billing_period import parse_billing_period

logger = get_logger(__name__)

DEFAULT_CANCEL_REASON = "User requested cancellation"
EXPIRED_CANCEL_REASON = "Subscription expired"

# Processor subscription statuses
PROCESSOR_ACTIVE_STATUS = "ACTIVE"
PROCESSOR_CANCELLED_STATUS = "CANCELLED"


class SubscriptionLifecycle:
    """User-initiated subscription transitions and the session renewal hook.

    Args:
        profile_store: Profile storage
        session_store: Payment session storage
        gateway: Payment processor gateway
        dispatcher: Notification dispatcher
        clock: Service clock
        billing: Billing periods
    """

    def __init__(
        self,
        profile_store: ProfileStore,
        session_store: PaymentSessionStore,
        gateway: PaymentGateway,
        dispatcher: NotificationDispatcher,
        clock: TimeController,
        billing: Optional[BillingConfig] = None,
    ):
        self.profile_store = profile_store
        self.session_store = session_store
        self.gateway = gateway
        self.dispatcher = dispatcher
        self.clock = clock
        billing = billing or BillingConfig()
        self.billing_period_millis = parse_billing_period(billing.billing_period)

    def ensure_profile(self, user_id: str) -> SubscriptionProfile:
        """Create an Expired profile for a new user identity.

        Idempotent: an existing profile is returned unchanged.

        Args:
            user_id: User identifier

        Returns:
            The user's SubscriptionProfile
        """
        existed = self.profile_store.exists(user_id)
        profile = self.profile_store.get_or_create(user_id)
        if not existed:
            logger.info("profile_created", user_id=user_id, status=profile.subscription_status.value)
        return profile

    def get_status(self, user_id: str) -> Optional[SubscriptionProfile]:
        """Return the user's profile after applying lazy expiry.

        Args:
            user_id: User identifier

        Returns:
            SubscriptionProfile, or None if the user has no profile
        """
        return self.refresh_on_read(user_id)

    def refresh_on_read(self, user_id: str) -> Optional[SubscriptionProfile]:
        """Session renewal hook, run before any profile is served.

        Expires the profile when its boundary has passed:
        - Active past subscription expiry
        - Grace_Period past grace end (grace end cleared)
        - Cancelled past subscription expiry
        - Payment_Failed past subscription expiry once auto-renewal is off

        Each transition is a conditional update that only applies if the
        status is still the one observed. When a transition happened and the
        profile is linked to a processor subscription, the processor cancel
        is attempted best-effort to stop future billing.

        Args:
            user_id: User identifier

        Returns:
            The current profile, or None if the user has no profile
        """
        profile = self.profile_store.find(user_id)
        if profile is None:
            return None

        now = self.clock.now_millis()
        observed_status = profile.subscription_status

        def expire_if_stale(current: SubscriptionProfile) -> Optional[SubscriptionProfile]:
            if current.subscription_status != observed_status:
                return None

            status = current.subscription_status
            expires = current.subscription_expires_at_millis
            grace_end = current.grace_period_ends_millis

            if status in (SubscriptionStatus.ACTIVE, SubscriptionStatus.CANCELLED):
                if expires is None or expires >= now:
                    return None
                current.set_status(SubscriptionStatus.EXPIRED, reason="expired_on_read")
                return current

            if status == SubscriptionStatus.GRACE_PERIOD:
                if grace_end is None or grace_end >= now:
                    return None
                current.set_status(SubscriptionStatus.EXPIRED, reason="grace_period_ended")
                current.grace_period_ends_millis = None
                return current

            # No further billing attempt will arrive to escalate it into a grace period
            if status == SubscriptionStatus.PAYMENT_FAILED and not current.auto_renewal_enabled:
                if expires is None or expires >= now:
                    return None
                current.set_status(SubscriptionStatus.EXPIRED, reason="payment_failed_lapsed")
                return current

            return None

        try:
            updated = self.profile_store.update_with(user_id, expire_if_stale)
        except ProfileNotFoundError:
            return None

        if updated is None:
            return self.profile_store.find(user_id)

        logger.info(
            "subscription_expired_on_read",
            user_id=user_id,
            previous_status=observed_status.value,
            subscription_expires_at_millis=updated.subscription_expires_at_millis,
        )

        if updated.external_subscription_id:
            self._cancel_at_gateway(updated, EXPIRED_CANCEL_REASON)

        return updated

    def cancel(self, user_id: str, reason: str = DEFAULT_CANCEL_REASON) -> TransitionResult:
        """Cancel a subscription.

        Allowed from Active, Payment_Failed and Grace_Period. Turns off
        auto-renewal and clears the retry bookkeeping; the status and
        expiry are kept so the user retains access until expiry. A profile
        cancelled from Grace_Period moves to Cancelled, since its grace
        window is cleared.

        Args:
            user_id: User identifier
            reason: Reason forwarded to the processor

        Returns:
            TransitionResult with gateway_failed set if the processor
            cancel did not succeed
        """
        profile = self.refresh_on_read(user_id)
        if profile is None:
            return TransitionResult.not_found(f"Profile not found for user: {user_id}")

        if profile.subscription_status not in CANCELLABLE_STATUSES:
            logger.warning(
                "cancel_rejected",
                user_id=user_id,
                status=profile.subscription_status.value,
            )
            return TransitionResult.conflict(
                f"Cannot cancel a subscription in status '{profile.subscription_status.value}'",
                profile=profile,
            )

        gateway_failed = False
        if profile.external_subscription_id:
            gateway_failed = not self._cancel_at_gateway(profile, reason)

        rejected_status: list[SubscriptionStatus] = []

        def apply_cancel(current: SubscriptionProfile) -> Optional[SubscriptionProfile]:
            if current.subscription_status not in CANCELLABLE_STATUSES:
                rejected_status.append(current.subscription_status)
                return None

            current.set_auto_renewal(False, reason="user_cancelled")
            current.set_retry_count(0, reason="user_cancelled")
            current.last_payment_attempt_millis = None
            if current.subscription_status == SubscriptionStatus.GRACE_PERIOD:
                current.set_status(SubscriptionStatus.CANCELLED, reason="user_cancelled")
            current.grace_period_ends_millis = None
            return current

        updated = self.profile_store.update_with(user_id, apply_cancel)
        if updated is None:
            status = rejected_status[0].value if rejected_status else "unknown"
            return TransitionResult.conflict(
                f"Cannot cancel a subscription in status '{status}'",
                profile=self.profile_store.find(user_id),
            )

        self._cancel_linked_sessions(updated)

        logger.info(
            "subscription_cancelled",
            user_id=user_id,
            status=updated.subscription_status.value,
            subscription_expires_at_millis=updated.subscription_expires_at_millis,
            gateway_failed=gateway_failed,
        )
        return TransitionResult.success(updated, gateway_failed=gateway_failed)

    def reactivate(self, user_id: str) -> TransitionResult:
        """Reactivate a cancelled subscription that has not yet expired.

        Args:
            user_id: User identifier

        Returns:
            TransitionResult; conflict if the profile is not Cancelled or
            its expiry has passed (the caller must renew instead)
        """
        profile = self.profile_store.find(user_id)
        if profile is None:
            return TransitionResult.not_found(f"Profile not found for user: {user_id}")

        now = self.clock.now_millis()
        conflict: list[str] = []

        def apply_reactivation(current: SubscriptionProfile) -> Optional[SubscriptionProfile]:
            if current.subscription_status != SubscriptionStatus.CANCELLED:
                conflict.append(
                    f"Only cancelled subscriptions can be reactivated "
                    f"(status is '{current.subscription_status.value}')"
                )
                return None

            expires = current.subscription_expires_at_millis
            if expires is None or now > expires:
                conflict.append("Subscription has already expired; renew instead")
                return None

            current.set_status(SubscriptionStatus.ACTIVE, reason="user_reactivated")
            current.set_auto_renewal(True, reason="user_reactivated")
            current.set_retry_count(0, reason="user_reactivated")
            return current

        updated = self.profile_store.update_with(user_id, apply_reactivation)
        if updated is None:
            logger.warning("reactivate_rejected", user_id=user_id, reason=conflict[0])
            return TransitionResult.conflict(conflict[0], profile=profile)

        logger.info(
            "subscription_reactivated",
            user_id=user_id,
            subscription_expires_at_millis=updated.subscription_expires_at_millis,
        )
        self.dispatcher.dispatch(NotificationKind.SUBSCRIPTION_REACTIVATED, updated)
        return TransitionResult.success(updated)

    def renew(
        self,
        user_id: str,
        external_reference: str,
        new_expiry_millis: Optional[int] = None,
    ) -> TransitionResult:
        """Renew a subscription from a paid payment session.

        The session must be paid (one-time) or an active processor
        subscription (recurring), and not yet linked to any user: each
        session backs exactly one renewal. The session is linked to the
        user and, when it carries one, its processor subscription id moves
        onto the profile.

        Args:
            user_id: User identifier
            external_reference: Payment session reference
            new_expiry_millis: Explicit new expiry; defaults to now + one
                billing period

        Returns:
            TransitionResult
        """
        if not self.profile_store.exists(user_id):
            return TransitionResult.not_found(f"Profile not found for user: {user_id}")

        session = self.session_store.find(external_reference)
        if session is None:
            return TransitionResult.not_found(
                f"Payment session not found for reference: {external_reference}"
            )

        now = self.clock.now_millis()
        expiry = new_expiry_millis if new_expiry_millis is not None else now + self.billing_period_millis
        if expiry <= now:
            return TransitionResult.conflict("New expiry must be in the future")

        conflict: list[str] = []

        def link_session(current: PaymentSession) -> Optional[PaymentSession]:
            if current.status not in REDEEMABLE_STATUSES:
                conflict.append(
                    f"Payment session is not paid (status is '{current.status.value}')"
                )
                return None
            if current.user_id is not None and current.user_id != user_id:
                conflict.append("Payment session is already linked to another user")
                return None
            if current.is_linked:
                conflict.append("Payment session has already been redeemed")
                return None
            current.link_user(user_id)
            return current

        try:
            linked = self.session_store.update_with(external_reference, link_session)
        except PaymentSessionNotFoundError:
            return TransitionResult.not_found(
                f"Payment session not found for reference: {external_reference}"
            )

        if linked is None:
            logger.warning(
                "renew_rejected",
                user_id=user_id,
                external_reference=external_reference,
                reason=conflict[0],
            )
            return TransitionResult.conflict(conflict[0], profile=self.profile_store.find(user_id))

        recurring = linked.subscription_type == SubscriptionType.RECURRING

        def apply_renewal(current: SubscriptionProfile) -> SubscriptionProfile:
            current.set_status(SubscriptionStatus.ACTIVE, reason="renewed")
            current.set_expiry(expiry, reason="renewed")
            current.set_auto_renewal(recurring, reason="renewed")
            current.reset_billing_attempts(reason="renewed")
            current.last_payment_attempt_millis = None
            if linked.external_subscription_id:
                current.external_subscription_id = linked.external_subscription_id
            return current

        updated = self.profile_store.update_with(user_id, apply_renewal)

        logger.info(
            "subscription_renewed",
            user_id=user_id,
            external_reference=external_reference,
            subscription_type=linked.subscription_type.value,
            subscription_expires_at_millis=expiry,
            external_subscription_id=updated.external_subscription_id,
        )
        return TransitionResult.success(updated)

    def sync_processor_status(self, user_id: str) -> ProcessorSubscriptionStatus:
        """Ask the processor about the user's active recurring subscription.

        Looks up the newest session linked to the user in
        active_subscription. When the processor reports the subscription
        CANCELLED, the session is closed to cancelled_subscription; the
        profile itself is left to the local cancellation flow.

        Args:
            user_id: User identifier

        Returns:
            ProcessorSubscriptionStatus; has_active_subscription is False when
            the user has no active recurring session

        Raises:
            GatewayError: If the processor cannot be reached
        """
        sessions = [
            s
            for s in self.session_store.find_by_user(user_id)
            if s.status == PaymentSessionStatus.ACTIVE_SUBSCRIPTION
        ]
        if not sessions:
            return ProcessorSubscriptionStatus()

        session = sessions[-1]
        if not session.external_subscription_id:
            return ProcessorSubscriptionStatus(
                subscription_type=session.subscription_type,
                session_status=session.status,
            )

        info = self.gateway.get_subscription_status(session.external_subscription_id)
        session_status = session.status
        synced = False

        if info.status == PROCESSOR_CANCELLED_STATUS:

            def close_session(current: PaymentSession) -> Optional[PaymentSession]:
                if current.status != PaymentSessionStatus.ACTIVE_SUBSCRIPTION:
                    return None
                current.set_status(
                    PaymentSessionStatus.CANCELLED_SUBSCRIPTION, reason="processor_status_sync"
                )
                return current

            closed = self.session_store.update_with(session.external_reference, close_session)
            if closed is not None:
                session_status = closed.status
                synced = True
                logger.info(
                    "session_synced_with_processor",
                    user_id=user_id,
                    external_reference=session.external_reference,
                    external_subscription_id=session.external_subscription_id,
                )

        return ProcessorSubscriptionStatus(
            has_active_subscription=info.status == PROCESSOR_ACTIVE_STATUS,
            subscription_type=SubscriptionType.RECURRING,
            external_subscription_id=session.external_subscription_id,
            processor_status=info.status,
            next_billing_time=info.next_billing_time,
            session_status=session_status,
            session_synced=synced,
        )

    def _cancel_at_gateway(self, profile: SubscriptionProfile, reason: str) -> bool:
        """Best-effort processor cancel. Returns True on success."""
        try:
            result = self.gateway.cancel_subscription(profile.external_subscription_id, reason)
        except GatewayError as e:
            logger.error(
                "gateway_cancel_failed",
                user_id=profile.user_id,
                external_subscription_id=profile.external_subscription_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return False

        if not result.success:
            logger.warning(
                "gateway_cancel_not_confirmed",
                user_id=profile.user_id,
                external_subscription_id=profile.external_subscription_id,
                status_code=result.status_code,
            )
        return result.success

    def _cancel_linked_sessions(self, profile: SubscriptionProfile) -> None:
        """Move the user's active recurring sessions to cancelled_subscription."""
        sessions = {s.external_reference: s for s in self.session_store.find_by_user(profile.user_id)}
        if profile.external_subscription_id:
            by_external_id = self.session_store.find_by_external_subscription_id(
                profile.external_subscription_id
            )
            if by_external_id is not None:
                sessions[by_external_id.external_reference] = by_external_id

        def mark_cancelled(current: PaymentSession) -> Optional[PaymentSession]:
            if current.status != PaymentSessionStatus.ACTIVE_SUBSCRIPTION:
                return None
            current.set_status(PaymentSessionStatus.CANCELLED_SUBSCRIPTION, reason="user_cancelled")
            return current

        for reference in sessions:
            try:
                self.session_store.update_with(reference, mark_cancelled)
            except (PaymentSessionNotFoundError, InvalidSessionTransitionError) as e:
                logger.warning(
                    "linked_session_cancel_skipped",
                    external_reference=reference,
                    error=str(e),
                )
