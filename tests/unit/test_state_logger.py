"""Tests for state change logging."""

from unittest.mock import patch

import pytest

from subscription_sync import state_logger
from subscription_sync.models.payment_session import PaymentSession, PaymentSessionStatus
from subscription_sync.models.profile import SubscriptionProfile, SubscriptionStatus
from subscription_sync.utils.billing_period import MILLIS_PER_DAY

NOW = 1_700_000_000_000


@pytest.fixture
def mock_logger():
    with patch.object(state_logger, "logger") as logger:
        yield logger


class TestStateLogger:
    def test_subscription_status_change(self, mock_logger):
        state_logger.log_subscription_status_change(
            "user-1", "Active", "Payment_Failed", reason="payment_failed", retry=1
        )

        mock_logger.info.assert_called_once_with(
            "subscription_status_changed",
            user_id="user-1",
            old_status="Active",
            new_status="Payment_Failed",
            reason="payment_failed",
            retry=1,
        )

    def test_expiry_change_logs_both_values(self, mock_logger):
        state_logger.log_expiry_change(
            "user-1", NOW, NOW + 30 * MILLIS_PER_DAY, reason="payment_completed"
        )

        kwargs = mock_logger.info.call_args.kwargs
        assert mock_logger.info.call_args.args == ("expiry_changed",)
        assert kwargs["old_expiry_millis"] == NOW
        assert kwargs["new_expiry_millis"] == NOW + 30 * MILLIS_PER_DAY
        assert kwargs["extension_days"] == 30
        assert kwargs["old_expiry"].startswith("2023-11-14T22:13:20")

    def test_expiry_change_from_nothing(self, mock_logger):
        state_logger.log_expiry_change("user-1", None, NOW, reason="renewed")

        kwargs = mock_logger.info.call_args.kwargs
        assert kwargs["old_expiry"] is None
        assert kwargs["extension_days"] is None

    def test_session_status_change(self, mock_logger):
        state_logger.log_session_status_change("ref-1", "pending", "paid", reason="sale")

        assert mock_logger.info.call_args.args == ("payment_session_status_changed",)
        assert mock_logger.info.call_args.kwargs["external_reference"] == "ref-1"


class TestModelsLogThroughStateLogger:
    def test_profile_transitions_are_logged(self, mock_logger):
        profile = SubscriptionProfile(
            user_id="user-1",
            subscription_status=SubscriptionStatus.ACTIVE,
            subscription_expires_at_millis=NOW,
        )

        profile.set_status(SubscriptionStatus.PAYMENT_FAILED, reason="payment_failed")
        profile.set_retry_count(1, reason="payment_failed")
        profile.set_auto_renewal(True, reason="renewed")
        profile.set_expiry(NOW + MILLIS_PER_DAY, reason="renewed")

        events = [c.args[0] for c in mock_logger.info.call_args_list]
        assert events == [
            "subscription_status_changed",
            "payment_retry_count_changed",
            "auto_renewal_changed",
            "expiry_changed",
        ]

    def test_unchanged_values_are_not_logged(self, mock_logger):
        profile = SubscriptionProfile(user_id="user-1")

        profile.set_status(SubscriptionStatus.EXPIRED)
        profile.set_retry_count(0)
        profile.set_auto_renewal(False)
        profile.set_expiry(None, reason="noop")

        mock_logger.info.assert_not_called()

    def test_session_transition_is_logged(self, mock_logger):
        session = PaymentSession(
            external_reference="ref-1", created_at_millis=NOW, expires_at_millis=NOW + 1
        )

        session.set_status(PaymentSessionStatus.EXPIRED, reason="ttl_elapsed")

        kwargs = mock_logger.info.call_args.kwargs
        assert kwargs["old_status"] == "pending"
        assert kwargs["new_status"] == "expired"
        assert kwargs["reason"] == "ttl_elapsed"
