"""User subscription endpoints.

Implements:
- GET  /users/{user_id}/subscription - Profile projection with access
- GET  /users/{user_id}/session - Login/session fetch projection
- GET  /users/{user_id}/access/{operation} - Access decision for one operation
- GET  /users/{user_id}/subscription/processor - Processor status of the recurring subscription
- POST /users/{user_id}/subscription/cancel - Cancel subscription
- POST /users/{user_id}/subscription/reactivate - Reactivate cancelled subscription
- POST /users/{user_id}/subscription/renew - Renew from a paid payment session

Route handlers are plain functions: the lifecycle service may call the
payment processor synchronously, so FastAPI runs them in its threadpool.
"""

from typing import Optional

from fastapi import APIRouter, Depends

from subscription_sync.api.errors import http_error, raise_for_transition
from subscription_sync.dependencies import get_clock, get_lifecycle
from subscription_sync.exceptions import GatewayError
from subscription_sync.logging_config import get_logger
from subscription_sync.models.api_request import (
    CancelSubscriptionRequest,
    RenewSubscriptionRequest,
)
from subscription_sync.models.api_response import (
    AccessCheckResponse,
    ProcessorStatusResponse,
    SessionResponse,
    SubscriptionProfileResponse,
    TransitionResponse,
)
from subscription_sync.models.results import TransitionResult
from subscription_sync.services import access_gate
from subscription_sync.services.access_gate import ProtectedOperation
from subscription_sync.services.subscription_lifecycle import SubscriptionLifecycle
from subscription_sync.services.time_controller import TimeController

logger = get_logger(__name__)
router = APIRouter(tags=["Subscriptions"], prefix="/users/{user_id}")


def _transition_response(
    result: TransitionResult, clock: TimeController, message: str
) -> TransitionResponse:
    raise_for_transition(result)
    profile = result.profile
    return TransitionResponse(
        has_access=access_gate.has_access(profile, clock.now_millis()),
        gateway_failed=result.gateway_failed,
        message=message,
        **profile.model_dump(mode="json"),
    )


@router.get(
    "/subscription",
    response_model=SubscriptionProfileResponse,
    summary="Get subscription status",
)
def get_subscription(
    user_id: str,
    lifecycle: SubscriptionLifecycle = Depends(get_lifecycle),
    clock: TimeController = Depends(get_clock),
) -> SubscriptionProfileResponse:
    """Return the user's full subscription profile.

    Stale Active, Grace_Period and Cancelled profiles are expired before
    the profile is returned.

    Raises:
        404: User has no profile
    """
    profile = lifecycle.get_status(user_id)
    if profile is None:
        raise http_error(404, f"Profile not found for user: {user_id}")

    return SubscriptionProfileResponse.from_profile(
        profile, has_access=access_gate.has_access(profile, clock.now_millis())
    )


@router.get("/session", response_model=SessionResponse, summary="Fetch login session state")
def get_session(
    user_id: str,
    lifecycle: SubscriptionLifecycle = Depends(get_lifecycle),
    clock: TimeController = Depends(get_clock),
) -> SessionResponse:
    """Session fetch for a signed-in user.

    The profile is created on first fetch, then the renewal hook runs.
    """
    lifecycle.ensure_profile(user_id)
    profile = lifecycle.refresh_on_read(user_id)
    now = clock.now_millis()

    return SessionResponse(
        user_id=profile.user_id,
        subscription_status=profile.subscription_status.value,
        subscription_expires_at_millis=profile.subscription_expires_at_millis,
        auto_renewal_enabled=profile.auto_renewal_enabled,
        has_access=access_gate.has_access(profile, now),
        has_strict_access=access_gate.has_strict_access(profile, now),
        grace_period_ends_millis=profile.grace_period_ends_millis,
    )


@router.get(
    "/access/{operation}",
    response_model=AccessCheckResponse,
    summary="Check access to a protected operation",
)
def check_access(
    user_id: str,
    operation: ProtectedOperation,
    lifecycle: SubscriptionLifecycle = Depends(get_lifecycle),
    clock: TimeController = Depends(get_clock),
) -> AccessCheckResponse:
    """Evaluate a protected operation against its declared access policy.

    Unknown users are denied.
    """
    profile = lifecycle.refresh_on_read(user_id)
    allowed = access_gate.is_operation_allowed(profile, operation, clock.now_millis())

    logger.debug("access_checked", operation=operation.value, allowed=allowed)

    return AccessCheckResponse(
        user_id=user_id,
        operation=operation.value,
        policy=access_gate.policy_for(operation).value,
        allowed=allowed,
    )


@router.get(
    "/subscription/processor",
    response_model=ProcessorStatusResponse,
    summary="Get processor subscription status",
)
def get_processor_status(
    user_id: str,
    lifecycle: SubscriptionLifecycle = Depends(get_lifecycle),
) -> ProcessorStatusResponse:
    """Report the processor's status and next billing time.

    A recurring session the processor reports as CANCELLED is closed
    locally; the profile keeps its status.

    Raises:
        502: Payment processor call failed
    """
    try:
        status = lifecycle.sync_processor_status(user_id)
    except GatewayError as e:
        raise http_error(502, f"Payment processor error: {e}")

    return ProcessorStatusResponse.from_status(user_id, status)


@router.post(
    "/subscription/cancel",
    response_model=TransitionResponse,
    summary="Cancel subscription",
)
def cancel_subscription(
    user_id: str,
    request: Optional[CancelSubscriptionRequest] = None,
    lifecycle: SubscriptionLifecycle = Depends(get_lifecycle),
    clock: TimeController = Depends(get_clock),
) -> TransitionResponse:
    """Cancel the user's subscription; access continues until expiry.

    Raises:
        404: User has no profile
        409: Subscription is not in a cancellable status
    """
    request = request or CancelSubscriptionRequest()
    logger.info("cancel_subscription_request", reason=request.reason)

    result = lifecycle.cancel(user_id, reason=request.reason)
    return _transition_response(
        result, clock, "Subscription cancelled; access continues until expiry"
    )


@router.post(
    "/subscription/reactivate",
    response_model=TransitionResponse,
    summary="Reactivate cancelled subscription",
)
def reactivate_subscription(
    user_id: str,
    lifecycle: SubscriptionLifecycle = Depends(get_lifecycle),
    clock: TimeController = Depends(get_clock),
) -> TransitionResponse:
    """Reactivate a cancelled subscription before it expires.

    Raises:
        404: User has no profile
        409: Not cancelled, or already expired (renew instead)
    """
    logger.info("reactivate_subscription_request")

    result = lifecycle.reactivate(user_id)
    return _transition_response(result, clock, "Subscription reactivated")


@router.post(
    "/subscription/renew",
    response_model=TransitionResponse,
    summary="Renew subscription",
)
def renew_subscription(
    user_id: str,
    request: RenewSubscriptionRequest,
    lifecycle: SubscriptionLifecycle = Depends(get_lifecycle),
    clock: TimeController = Depends(get_clock),
) -> TransitionResponse:
    """Renew the subscription from a paid payment session.

    Raises:
        404: User or payment session not found
        409: Session not paid, linked to another user, or expiry not in the future
    """
    logger.info("renew_subscription_request", external_reference=request.external_reference)

    result = lifecycle.renew(
        user_id,
        request.external_reference,
        new_expiry_millis=request.subscription_expires_at_millis,
    )
    return _transition_response(result, clock, "Subscription renewed")
