"""Tests for the payment retry escalation policy."""

import pytest

from subscription_sync.models.notifications import NotificationKind
from subscription_sync.models.profile import SubscriptionStatus
from subscription_sync.services.escalation_policy import (
    DEFAULT_GRACE_PERIOD_MILLIS,
    EscalationDecision,
    escalate,
    notification_key,
)
from subscription_sync.utils.billing_period import MILLIS_PER_DAY

NOW = 1_700_000_000_000


@pytest.mark.parametrize(
    "retry_count,expected_status,expected_grace,expected_kind",
    [
        (1, SubscriptionStatus.PAYMENT_FAILED, None, NotificationKind.PAYMENT_FAILED),
        (2, SubscriptionStatus.PAYMENT_FAILED, None, NotificationKind.PAYMENT_RETRY_REMINDER),
        (
            3,
            SubscriptionStatus.GRACE_PERIOD,
            NOW + 7 * MILLIS_PER_DAY,
            NotificationKind.GRACE_PERIOD_STARTED,
        ),
        (
            5,
            SubscriptionStatus.GRACE_PERIOD,
            NOW + 7 * MILLIS_PER_DAY,
            NotificationKind.GRACE_PERIOD_STARTED,
        ),
    ],
)
def test_escalation_table(retry_count, expected_status, expected_grace, expected_kind):
    """Each retry count maps to exactly one status, grace end and notification."""
    decision = escalate(SubscriptionStatus.ACTIVE, retry_count, NOW)

    assert decision == EscalationDecision(expected_status, expected_grace, expected_kind)


def test_escalation_is_deterministic():
    first = escalate(SubscriptionStatus.PAYMENT_FAILED, 3, NOW)
    second = escalate(SubscriptionStatus.PAYMENT_FAILED, 3, NOW)
    assert first == second


def test_default_grace_period_is_seven_days():
    assert DEFAULT_GRACE_PERIOD_MILLIS == 7 * MILLIS_PER_DAY


def test_custom_grace_period():
    decision = escalate(SubscriptionStatus.PAYMENT_FAILED, 3, NOW, grace_period_millis=MILLIS_PER_DAY)
    assert decision.grace_period_ends_millis == NOW + MILLIS_PER_DAY


def test_further_failures_in_grace_restart_the_window():
    decision = escalate(
        SubscriptionStatus.GRACE_PERIOD,
        4,
        NOW,
        previous_grace_period_ends_millis=NOW - MILLIS_PER_DAY,
    )

    assert decision.new_status == SubscriptionStatus.GRACE_PERIOD
    assert decision.grace_period_ends_millis == NOW + 7 * MILLIS_PER_DAY


class TestZeroRetryCount:
    def test_keeps_previous_status(self):
        decision = escalate(SubscriptionStatus.ACTIVE, 0, NOW)

        assert decision.new_status == SubscriptionStatus.ACTIVE
        assert decision.grace_period_ends_millis is None
        assert decision.notification_kind is None

    def test_keeps_grace_end_only_in_grace(self):
        decision = escalate(
            SubscriptionStatus.GRACE_PERIOD, 0, NOW, previous_grace_period_ends_millis=NOW + 5
        )
        assert decision.grace_period_ends_millis == NOW + 5


class TestNotificationKey:
    def test_same_failure_same_key(self):
        assert notification_key(NotificationKind.PAYMENT_FAILED, "I-SUB1", 1) == notification_key(
            NotificationKind.PAYMENT_FAILED, "I-SUB1", 1
        )

    def test_key_format(self):
        assert (
            notification_key(NotificationKind.GRACE_PERIOD_STARTED, "I-SUB1", 3)
            == "grace_period_started:I-SUB1:3"
        )

    def test_key_without_subscription_id(self):
        assert (
            notification_key(NotificationKind.SUBSCRIPTION_REACTIVATED, None, 0)
            == "subscription_reactivated:-:0"
        )

    def test_retry_count_distinguishes_keys(self):
        assert notification_key(NotificationKind.PAYMENT_FAILED, "I-1", 1) != notification_key(
            NotificationKind.PAYMENT_FAILED, "I-1", 2
        )
