"""Unit tests for the SubscriptionLifecycle service."""

from unittest.mock import MagicMock

import pytest

from subscription_sync.exceptions import GatewayError
from subscription_sync.models.notifications import NotificationKind
from subscription_sync.models.payment_session import (
    PaymentSession,
    PaymentSessionStatus,
    SubscriptionType,
)
from subscription_sync.models.profile import SubscriptionProfile, SubscriptionStatus
from subscription_sync.models.results import TransitionErrorKind
from subscription_sync.repositories.payment_session_store import PaymentSessionStore
from subscription_sync.repositories.profile_store import ProfileStore
from subscription_sync.services.notification_dispatcher import NotificationDispatcher
from subscription_sync.services.payment_gateway import (
    CancelResult,
    PaymentGateway,
    SubscriptionStatusInfo,
)
from subscription_sync.services.subscription_lifecycle import SubscriptionLifecycle
from subscription_sync.services.time_controller import TimeController
from subscription_sync.utils.billing_period import MILLIS_PER_DAY

NOW = 1_700_000_000_000
SUB_ID = "I-SUB1"


@pytest.fixture
def clock():
    return TimeController(frozen_at_millis=NOW)


@pytest.fixture
def profile_store():
    return ProfileStore()


@pytest.fixture
def session_store():
    return PaymentSessionStore()


@pytest.fixture
def gateway():
    gateway = MagicMock(spec=PaymentGateway)
    gateway.cancel_subscription.return_value = CancelResult(success=True, status_code=204)
    return gateway


@pytest.fixture
def dispatcher():
    return MagicMock(spec=NotificationDispatcher)


@pytest.fixture
def lifecycle(profile_store, session_store, gateway, dispatcher, clock):
    return SubscriptionLifecycle(
        profile_store=profile_store,
        session_store=session_store,
        gateway=gateway,
        dispatcher=dispatcher,
        clock=clock,
    )


def add_profile(profile_store, status, expires=NOW + 10 * MILLIS_PER_DAY, **kwargs):
    profile = SubscriptionProfile(
        user_id="user-1",
        subscription_status=status,
        subscription_expires_at_millis=expires,
        **kwargs,
    )
    profile_store.add(profile)
    return profile


def add_session(session_store, reference="ref-1", **kwargs):
    session = PaymentSession(
        external_reference=reference,
        created_at_millis=NOW,
        expires_at_millis=NOW + 2 * MILLIS_PER_DAY,
        **kwargs,
    )
    session_store.add(session)
    return session


class TestEnsureProfile:
    def test_creates_expired_profile(self, lifecycle, profile_store):
        profile = lifecycle.ensure_profile("user-1")

        assert profile.subscription_status == SubscriptionStatus.EXPIRED
        assert profile_store.exists("user-1")

    def test_existing_profile_unchanged(self, lifecycle, profile_store):
        add_profile(profile_store, SubscriptionStatus.ACTIVE)
        assert lifecycle.ensure_profile("user-1").subscription_status == SubscriptionStatus.ACTIVE


class TestRefreshOnRead:
    def test_unknown_user(self, lifecycle):
        assert lifecycle.get_status("missing") is None

    def test_active_past_expiry_expires(self, lifecycle, profile_store, gateway):
        add_profile(profile_store, SubscriptionStatus.ACTIVE, expires=NOW - 1)

        profile = lifecycle.get_status("user-1")

        assert profile.subscription_status == SubscriptionStatus.EXPIRED
        gateway.cancel_subscription.assert_not_called()

    def test_expiry_boundary_is_inclusive(self, lifecycle, profile_store):
        add_profile(profile_store, SubscriptionStatus.ACTIVE, expires=NOW)
        assert lifecycle.get_status("user-1").subscription_status == SubscriptionStatus.ACTIVE

    def test_cancelled_past_expiry_expires(self, lifecycle, profile_store):
        add_profile(profile_store, SubscriptionStatus.CANCELLED, expires=NOW - 1)
        assert lifecycle.get_status("user-1").subscription_status == SubscriptionStatus.EXPIRED

    def test_grace_period_past_end_expires(self, lifecycle, profile_store):
        add_profile(
            profile_store,
            SubscriptionStatus.GRACE_PERIOD,
            grace_period_ends_millis=NOW - 1,
            payment_retry_count=3,
        )

        profile = lifecycle.get_status("user-1")

        assert profile.subscription_status == SubscriptionStatus.EXPIRED
        assert profile.grace_period_ends_millis is None

    def test_grace_period_within_window_kept(self, lifecycle, profile_store):
        add_profile(
            profile_store,
            SubscriptionStatus.GRACE_PERIOD,
            expires=NOW - MILLIS_PER_DAY,
            grace_period_ends_millis=NOW + 1,
        )
        assert lifecycle.get_status("user-1").subscription_status == SubscriptionStatus.GRACE_PERIOD

    @pytest.mark.parametrize(
        "status",
        [SubscriptionStatus.PAYMENT_FAILED, SubscriptionStatus.SUSPENDED, SubscriptionStatus.EXPIRED],
    )
    def test_other_statuses_untouched(self, lifecycle, profile_store, status):
        add_profile(profile_store, status, expires=NOW - 1, auto_renewal_enabled=True)
        assert lifecycle.get_status("user-1").subscription_status == status

    def test_non_renewing_payment_failed_past_expiry_expires(self, lifecycle, profile_store):
        """No retry will follow, so the failed state must not outlive the paid period."""
        add_profile(
            profile_store,
            SubscriptionStatus.PAYMENT_FAILED,
            expires=NOW - MILLIS_PER_DAY,
            payment_retry_count=1,
        )

        assert lifecycle.get_status("user-1").subscription_status == SubscriptionStatus.EXPIRED

    def test_non_renewing_payment_failed_within_expiry_kept(self, lifecycle, profile_store):
        add_profile(profile_store, SubscriptionStatus.PAYMENT_FAILED, expires=NOW)
        assert (
            lifecycle.get_status("user-1").subscription_status == SubscriptionStatus.PAYMENT_FAILED
        )

    def test_expiry_cancels_processor_subscription(self, lifecycle, profile_store, gateway):
        add_profile(
            profile_store,
            SubscriptionStatus.ACTIVE,
            expires=NOW - 1,
            external_subscription_id=SUB_ID,
        )

        lifecycle.get_status("user-1")

        gateway.cancel_subscription.assert_called_once_with(SUB_ID, "Subscription expired")

    def test_gateway_failure_does_not_block_expiry(self, lifecycle, profile_store, gateway):
        gateway.cancel_subscription.side_effect = GatewayError("unreachable")
        add_profile(
            profile_store,
            SubscriptionStatus.ACTIVE,
            expires=NOW - 1,
            external_subscription_id=SUB_ID,
        )

        assert lifecycle.get_status("user-1").subscription_status == SubscriptionStatus.EXPIRED

    def test_second_read_does_not_cancel_again(self, lifecycle, profile_store, gateway):
        add_profile(
            profile_store,
            SubscriptionStatus.ACTIVE,
            expires=NOW - 1,
            external_subscription_id=SUB_ID,
        )

        lifecycle.get_status("user-1")
        lifecycle.get_status("user-1")

        assert gateway.cancel_subscription.call_count == 1


class TestCancel:
    def test_cancel_active_keeps_status_and_expiry(self, lifecycle, profile_store, gateway):
        original = add_profile(
            profile_store,
            SubscriptionStatus.ACTIVE,
            auto_renewal_enabled=True,
            external_subscription_id=SUB_ID,
        )

        result = lifecycle.cancel("user-1", reason="Too expensive")

        assert result.ok
        assert not result.gateway_failed
        gateway.cancel_subscription.assert_called_once_with(SUB_ID, "Too expensive")
        profile = profile_store.get("user-1")
        assert profile.subscription_status == SubscriptionStatus.ACTIVE
        assert profile.subscription_expires_at_millis == original.subscription_expires_at_millis
        assert profile.auto_renewal_enabled is False

    def test_cancel_from_grace_period(self, lifecycle, profile_store):
        add_profile(
            profile_store,
            SubscriptionStatus.GRACE_PERIOD,
            payment_retry_count=3,
            last_payment_attempt_millis=NOW - 1,
            grace_period_ends_millis=NOW + MILLIS_PER_DAY,
        )

        result = lifecycle.cancel("user-1")

        assert result.ok
        profile = profile_store.get("user-1")
        assert profile.subscription_status == SubscriptionStatus.CANCELLED
        assert profile.payment_retry_count == 0
        assert profile.last_payment_attempt_millis is None
        assert profile.grace_period_ends_millis is None

    def test_cancel_from_payment_failed_resets_retries(self, lifecycle, profile_store):
        add_profile(profile_store, SubscriptionStatus.PAYMENT_FAILED, payment_retry_count=2)

        result = lifecycle.cancel("user-1")

        assert result.ok
        assert profile_store.get("user-1").payment_retry_count == 0

    @pytest.mark.parametrize(
        "status",
        [
            SubscriptionStatus.CANCELLED,
            SubscriptionStatus.SUSPENDED,
            SubscriptionStatus.PRICE_CHANGE_CANCELLED,
            SubscriptionStatus.EXPIRED,
        ],
    )
    def test_cancel_rejected_from_other_statuses(self, lifecycle, profile_store, gateway, status):
        add_profile(profile_store, status, external_subscription_id=SUB_ID)

        result = lifecycle.cancel("user-1")

        assert result.error.kind == TransitionErrorKind.CONFLICT
        gateway.cancel_subscription.assert_not_called()

    def test_cancel_unknown_user(self, lifecycle):
        assert lifecycle.cancel("missing").error.kind == TransitionErrorKind.NOT_FOUND

    def test_cancel_expired_on_read_is_conflict(self, lifecycle, profile_store):
        add_profile(profile_store, SubscriptionStatus.ACTIVE, expires=NOW - 1)

        result = lifecycle.cancel("user-1")

        assert result.error.kind == TransitionErrorKind.CONFLICT
        assert profile_store.get("user-1").subscription_status == SubscriptionStatus.EXPIRED

    def test_gateway_rejection_still_cancels_locally(self, lifecycle, profile_store, gateway):
        gateway.cancel_subscription.return_value = CancelResult(success=False, status_code=422)
        add_profile(
            profile_store,
            SubscriptionStatus.ACTIVE,
            auto_renewal_enabled=True,
            external_subscription_id=SUB_ID,
        )

        result = lifecycle.cancel("user-1")

        assert result.ok
        assert result.gateway_failed
        assert profile_store.get("user-1").auto_renewal_enabled is False

    def test_gateway_error_still_cancels_locally(self, lifecycle, profile_store, gateway):
        gateway.cancel_subscription.side_effect = GatewayError("timeout")
        add_profile(
            profile_store,
            SubscriptionStatus.ACTIVE,
            auto_renewal_enabled=True,
            external_subscription_id=SUB_ID,
        )

        result = lifecycle.cancel("user-1")

        assert result.ok
        assert result.gateway_failed

    def test_cancel_without_processor_subscription_skips_gateway(
        self, lifecycle, profile_store, gateway
    ):
        add_profile(profile_store, SubscriptionStatus.ACTIVE)

        assert lifecycle.cancel("user-1").ok
        gateway.cancel_subscription.assert_not_called()

    def test_cancel_marks_linked_sessions_cancelled(self, lifecycle, profile_store, session_store):
        add_profile(profile_store, SubscriptionStatus.ACTIVE, external_subscription_id=SUB_ID)
        add_session(
            session_store,
            status=PaymentSessionStatus.ACTIVE_SUBSCRIPTION,
            user_id="user-1",
            external_subscription_id=SUB_ID,
        )
        add_session(session_store, reference="ref-paid", status=PaymentSessionStatus.PAID, user_id="user-1")

        lifecycle.cancel("user-1")

        assert session_store.get("ref-1").status == PaymentSessionStatus.CANCELLED_SUBSCRIPTION
        assert session_store.get("ref-paid").status == PaymentSessionStatus.PAID


class TestReactivate:
    def test_reactivate_cancelled_before_expiry(self, lifecycle, profile_store, dispatcher):
        add_profile(profile_store, SubscriptionStatus.CANCELLED, external_subscription_id=SUB_ID)

        result = lifecycle.reactivate("user-1")

        assert result.ok
        profile = profile_store.get("user-1")
        assert profile.subscription_status == SubscriptionStatus.ACTIVE
        assert profile.auto_renewal_enabled is True
        assert profile.payment_retry_count == 0
        dispatcher.dispatch.assert_called_once_with(
            NotificationKind.SUBSCRIPTION_REACTIVATED, profile
        )

    def test_reactivate_at_expiry_boundary(self, lifecycle, profile_store):
        add_profile(profile_store, SubscriptionStatus.CANCELLED, expires=NOW)
        assert lifecycle.reactivate("user-1").ok

    def test_reactivate_after_expiry_is_conflict(self, lifecycle, profile_store, dispatcher):
        """A cancelled profile that expired yesterday must be renewed instead."""
        original = add_profile(
            profile_store, SubscriptionStatus.CANCELLED, expires=NOW - MILLIS_PER_DAY
        )

        result = lifecycle.reactivate("user-1")

        assert result.error.kind == TransitionErrorKind.CONFLICT
        assert "renew" in result.error.message
        assert profile_store.get("user-1") == original
        dispatcher.dispatch.assert_not_called()

    @pytest.mark.parametrize(
        "status",
        [SubscriptionStatus.ACTIVE, SubscriptionStatus.EXPIRED, SubscriptionStatus.SUSPENDED],
    )
    def test_reactivate_requires_cancelled(self, lifecycle, profile_store, status):
        add_profile(profile_store, status)
        assert lifecycle.reactivate("user-1").error.kind == TransitionErrorKind.CONFLICT

    def test_reactivate_unknown_user(self, lifecycle):
        assert lifecycle.reactivate("missing").error.kind == TransitionErrorKind.NOT_FOUND


class TestRenew:
    def test_renew_from_recurring_session_transfers_subscription_id(
        self, lifecycle, profile_store, session_store
    ):
        add_profile(
            profile_store,
            SubscriptionStatus.EXPIRED,
            expires=NOW - MILLIS_PER_DAY,
            payment_retry_count=2,
            external_subscription_id="I-OLD",
        )
        add_session(
            session_store,
            status=PaymentSessionStatus.ACTIVE_SUBSCRIPTION,
            subscription_type=SubscriptionType.RECURRING,
            external_subscription_id="I-NEW",
        )

        result = lifecycle.renew("user-1", "ref-1")

        assert result.ok
        profile = profile_store.get("user-1")
        assert profile.subscription_status == SubscriptionStatus.ACTIVE
        assert profile.subscription_expires_at_millis == NOW + 30 * MILLIS_PER_DAY
        assert profile.auto_renewal_enabled is True
        assert profile.payment_retry_count == 0
        assert profile.external_subscription_id == "I-NEW"
        assert profile_store.find_by_external_subscription_id("I-NEW").user_id == "user-1"
        assert profile_store.find_by_external_subscription_id("I-OLD") is None
        assert session_store.get("ref-1").user_id == "user-1"

    def test_renew_from_one_time_session(self, lifecycle, profile_store, session_store):
        add_profile(profile_store, SubscriptionStatus.EXPIRED, expires=None)
        add_session(session_store, status=PaymentSessionStatus.PAID)

        result = lifecycle.renew("user-1", "ref-1", new_expiry_millis=NOW + 5 * MILLIS_PER_DAY)

        assert result.ok
        profile = profile_store.get("user-1")
        assert profile.subscription_expires_at_millis == NOW + 5 * MILLIS_PER_DAY
        assert profile.auto_renewal_enabled is False
        assert profile.external_subscription_id is None

    def test_renew_expiry_must_be_future(self, lifecycle, profile_store, session_store):
        add_profile(profile_store, SubscriptionStatus.EXPIRED)
        add_session(session_store, status=PaymentSessionStatus.PAID)

        result = lifecycle.renew("user-1", "ref-1", new_expiry_millis=NOW)

        assert result.error.kind == TransitionErrorKind.CONFLICT
        assert session_store.get("ref-1").user_id is None

    def test_renew_requires_paid_session(self, lifecycle, profile_store, session_store):
        add_profile(profile_store, SubscriptionStatus.EXPIRED)
        add_session(session_store, status=PaymentSessionStatus.PENDING)

        result = lifecycle.renew("user-1", "ref-1")

        assert result.error.kind == TransitionErrorKind.CONFLICT
        assert profile_store.get("user-1").subscription_status == SubscriptionStatus.EXPIRED

    def test_renew_rejects_session_of_other_user(self, lifecycle, profile_store, session_store):
        add_profile(profile_store, SubscriptionStatus.EXPIRED)
        add_session(session_store, status=PaymentSessionStatus.PAID, user_id="user-2")

        result = lifecycle.renew("user-1", "ref-1")

        assert result.error.kind == TransitionErrorKind.CONFLICT
        assert "another user" in result.error.message

    def test_session_renews_same_user_only_once(
        self, lifecycle, profile_store, session_store, clock
    ):
        add_profile(profile_store, SubscriptionStatus.EXPIRED, expires=None)
        add_session(session_store, status=PaymentSessionStatus.PAID)
        assert lifecycle.renew("user-1", "ref-1").ok
        clock.advance_time(days=40)

        result = lifecycle.renew(
            "user-1", "ref-1", new_expiry_millis=clock.now_millis() + 3650 * MILLIS_PER_DAY
        )

        assert result.error.kind == TransitionErrorKind.CONFLICT
        assert "already been redeemed" in result.error.message
        assert profile_store.get("user-1").subscription_expires_at_millis == NOW + 30 * MILLIS_PER_DAY

    def test_renew_unknown_session(self, lifecycle, profile_store):
        add_profile(profile_store, SubscriptionStatus.EXPIRED)
        assert lifecycle.renew("user-1", "missing").error.kind == TransitionErrorKind.NOT_FOUND

    def test_renew_unknown_user(self, lifecycle, session_store):
        add_session(session_store, status=PaymentSessionStatus.PAID)
        assert lifecycle.renew("missing", "ref-1").error.kind == TransitionErrorKind.NOT_FOUND


class TestSyncProcessorStatus:
    def test_no_active_recurring_session(self, lifecycle, session_store, gateway):
        add_session(session_store, status=PaymentSessionStatus.PAID, user_id="user-1")

        status = lifecycle.sync_processor_status("user-1")

        assert status.has_active_subscription is False
        assert status.subscription_type is None
        gateway.get_subscription_status.assert_not_called()

    def test_reports_processor_status(self, lifecycle, session_store, gateway):
        add_session(
            session_store,
            status=PaymentSessionStatus.ACTIVE_SUBSCRIPTION,
            subscription_type=SubscriptionType.RECURRING,
            external_subscription_id=SUB_ID,
            user_id="user-1",
        )
        gateway.get_subscription_status.return_value = SubscriptionStatusInfo(
            status="ACTIVE", next_billing_time="2023-12-14T22:13:20Z"
        )

        status = lifecycle.sync_processor_status("user-1")

        assert status.has_active_subscription is True
        assert status.subscription_type == SubscriptionType.RECURRING
        assert status.next_billing_time == "2023-12-14T22:13:20Z"
        assert status.session_synced is False
        gateway.get_subscription_status.assert_called_once_with(SUB_ID)

    def test_processor_cancellation_closes_session(
        self, lifecycle, profile_store, session_store, gateway
    ):
        add_profile(profile_store, SubscriptionStatus.ACTIVE, external_subscription_id=SUB_ID)
        add_session(
            session_store,
            status=PaymentSessionStatus.ACTIVE_SUBSCRIPTION,
            subscription_type=SubscriptionType.RECURRING,
            external_subscription_id=SUB_ID,
            user_id="user-1",
        )
        gateway.get_subscription_status.return_value = SubscriptionStatusInfo(status="CANCELLED")

        status = lifecycle.sync_processor_status("user-1")

        assert status.has_active_subscription is False
        assert status.session_synced is True
        assert status.session_status == PaymentSessionStatus.CANCELLED_SUBSCRIPTION
        assert session_store.get("ref-1").status == PaymentSessionStatus.CANCELLED_SUBSCRIPTION
        assert profile_store.get("user-1").subscription_status == SubscriptionStatus.ACTIVE

    def test_gateway_failure_propagates(self, lifecycle, session_store, gateway):
        add_session(
            session_store,
            status=PaymentSessionStatus.ACTIVE_SUBSCRIPTION,
            external_subscription_id=SUB_ID,
            user_id="user-1",
        )
        gateway.get_subscription_status.side_effect = GatewayError("unreachable")

        with pytest.raises(GatewayError):
            lifecycle.sync_processor_status("user-1")

        assert session_store.get("ref-1").status == PaymentSessionStatus.ACTIVE_SUBSCRIPTION
