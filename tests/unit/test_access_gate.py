"""Tests for the access gate."""

import pytest

from subscription_sync.models.profile import SubscriptionProfile, SubscriptionStatus
from subscription_sync.services.access_gate import (
    ANONYMOUS_VIEWS_COOKIE,
    AccessPolicy,
    ProtectedOperation,
    anonymous_view_allowed,
    can_comment,
    can_search,
    has_access,
    has_strict_access,
    is_operation_allowed,
    policy_for,
)

NOW = 1_700_000_000_000
EXPIRES = NOW + 10_000


def profile(status, expires=EXPIRES):
    return SubscriptionProfile(
        user_id="user-1",
        subscription_status=status,
        subscription_expires_at_millis=expires,
    )


class TestHasAccess:
    def test_unknown_user_has_no_access(self):
        assert has_access(None, NOW) is False
        assert has_strict_access(None, NOW) is False

    @pytest.mark.parametrize(
        "status",
        [
            SubscriptionStatus.ACTIVE,
            SubscriptionStatus.PAYMENT_FAILED,
            SubscriptionStatus.GRACE_PERIOD,
        ],
    )
    def test_active_and_retrying_statuses_have_access_past_expiry(self, status):
        assert has_access(profile(status, expires=NOW - 1), NOW) is True

    @pytest.mark.parametrize(
        "status",
        [
            SubscriptionStatus.CANCELLED,
            SubscriptionStatus.SUSPENDED,
            SubscriptionStatus.PRICE_CHANGE_CANCELLED,
        ],
    )
    def test_grandfathered_statuses_bounded_by_expiry(self, status):
        assert has_access(profile(status), NOW) is True
        assert has_access(profile(status, expires=NOW), NOW) is True
        assert has_access(profile(status, expires=NOW - 1), NOW) is False
        assert has_access(profile(status, expires=None), NOW) is False

    def test_expired_has_no_access(self):
        assert has_access(profile(SubscriptionStatus.EXPIRED), NOW) is False


class TestStrictAccess:
    def test_active_has_strict_access(self):
        assert has_strict_access(profile(SubscriptionStatus.ACTIVE, expires=NOW - 1), NOW) is True

    @pytest.mark.parametrize(
        "status",
        [
            SubscriptionStatus.PAYMENT_FAILED,
            SubscriptionStatus.GRACE_PERIOD,
            SubscriptionStatus.CANCELLED,
            SubscriptionStatus.SUSPENDED,
            SubscriptionStatus.PRICE_CHANGE_CANCELLED,
        ],
    )
    def test_other_statuses_bounded_by_expiry(self, status):
        assert has_strict_access(profile(status), NOW) is True
        assert has_strict_access(profile(status, expires=NOW - 1), NOW) is False

    def test_expired_has_no_strict_access(self):
        assert has_strict_access(profile(SubscriptionStatus.EXPIRED), NOW) is False

    def test_search_and_comment_use_strict_access(self):
        retrying = profile(SubscriptionStatus.GRACE_PERIOD, expires=NOW - 1)

        assert has_access(retrying, NOW) is True
        assert can_search(retrying, NOW) is False
        assert can_comment(retrying, NOW) is False


@pytest.mark.parametrize("status", list(SubscriptionStatus))
def test_strict_access_implies_permissive_access(status):
    """Strict access is never granted where permissive access is denied."""
    for expires in (None, NOW - 1, NOW, EXPIRES):
        candidate = profile(status, expires=expires)
        if has_strict_access(candidate, NOW):
            assert has_access(candidate, NOW)


@pytest.mark.parametrize("status", list(SubscriptionStatus))
def test_access_is_monotonic_in_time(status):
    """Once access is lost it is not regained by time passing alone."""
    candidate = profile(status)
    timeline = [NOW, EXPIRES, EXPIRES + 1, EXPIRES + 10_000]

    for check in (has_access, has_strict_access):
        decisions = [check(candidate, moment) for moment in timeline]
        first_denied = decisions.index(False) if False in decisions else len(decisions)
        assert not any(decisions[first_denied:])


class TestOperationPolicies:
    def test_view_post_is_permissive(self):
        assert policy_for(ProtectedOperation.VIEW_POST) == AccessPolicy.PERMISSIVE

    @pytest.mark.parametrize(
        "operation",
        [
            ProtectedOperation.SEARCH,
            ProtectedOperation.LIKE,
            ProtectedOperation.COMMENT,
            ProtectedOperation.CREATE_POST,
        ],
    )
    def test_interactive_operations_are_strict(self, operation):
        assert policy_for(operation) == AccessPolicy.STRICT

    def test_is_operation_allowed_follows_policy(self):
        lapsed = profile(SubscriptionStatus.PAYMENT_FAILED, expires=NOW - 1)

        assert is_operation_allowed(lapsed, ProtectedOperation.VIEW_POST, NOW) is True
        assert is_operation_allowed(lapsed, ProtectedOperation.COMMENT, NOW) is False

    def test_unknown_user_denied_everything(self):
        for operation in ProtectedOperation:
            assert is_operation_allowed(None, operation, NOW) is False


class TestAnonymousViews:
    def test_cookie_name(self):
        assert ANONYMOUS_VIEWS_COOKIE == "anonymous_posts_viewed"

    def test_default_limit_allows_one_post(self):
        assert anonymous_view_allowed(0) is True
        assert anonymous_view_allowed(1) is True
        assert anonymous_view_allowed(2) is False

    def test_custom_limit(self):
        assert anonymous_view_allowed(3, limit=3) is True
        assert anonymous_view_allowed(4, limit=3) is False
