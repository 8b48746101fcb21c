"""Checkout endpoints.

Implements:
- POST /checkout - Start a checkout
- GET  /checkout/{external_reference} - Validate a payment session
- POST /checkout/{external_reference}/execute - Execute an approved one-time payment
- POST /checkout/{external_reference}/mark-used - Mark a redeemed session as used
"""

from typing import Optional

from fastapi import APIRouter, Depends

from subscription_sync.api.errors import http_error
from subscription_sync.dependencies import get_checkout_service
from subscription_sync.exceptions import (
    GatewayError,
    InvalidSessionTransitionError,
    PaymentSessionNotFoundError,
)
from subscription_sync.logging_config import get_logger
from subscription_sync.models.api_request import CreateCheckoutRequest, ExecutePaymentRequest
from subscription_sync.models.api_response import (
    PaymentSessionResponse,
    SessionValidationResponse,
)
from subscription_sync.services.checkout_service import CheckoutService, SessionNotRedeemableError

logger = get_logger(__name__)
router = APIRouter(tags=["Checkout"], prefix="/checkout")


@router.post(
    "",
    response_model=PaymentSessionResponse,
    status_code=201,
    summary="Start checkout",
)
def create_checkout(
    request: Optional[CreateCheckoutRequest] = None,
    checkout: CheckoutService = Depends(get_checkout_service),
) -> PaymentSessionResponse:
    """Create a pending payment session and the matching processor checkout.

    Raises:
        502: Payment processor call failed
    """
    request = request or CreateCheckoutRequest()
    result = checkout.create_checkout(request.subscription_type)

    if not result.ok:
        raise http_error(502, f"Payment processor error: {result.error}")

    logger.info(
        "create_checkout_success",
        external_reference=result.session.external_reference,
        subscription_type=result.session.subscription_type.value,
    )
    return PaymentSessionResponse.from_session(result.session)


@router.get(
    "/{external_reference}",
    response_model=SessionValidationResponse,
    summary="Validate payment session",
)
def validate_checkout(
    external_reference: str,
    checkout: CheckoutService = Depends(get_checkout_service),
) -> SessionValidationResponse:
    """Check whether a payment session can be redeemed.

    Raises:
        404: Unknown external reference
    """
    validation = checkout.validate_session(external_reference)
    if validation.session is None:
        raise http_error(404, f"Payment session not found for reference: {external_reference}")

    return SessionValidationResponse(
        external_reference=external_reference,
        is_valid=validation.is_valid,
        reason=validation.reason,
        status=validation.session.status.value,
    )


@router.post(
    "/{external_reference}/execute",
    response_model=PaymentSessionResponse,
    summary="Execute approved payment",
)
def execute_payment(
    external_reference: str,
    request: ExecutePaymentRequest,
    checkout: CheckoutService = Depends(get_checkout_service),
) -> PaymentSessionResponse:
    """Execute a payer-approved one-time payment.

    The returned session is paid when the processor approved the payment.

    Raises:
        404: Unknown external reference
        409: Payment does not belong to the session, or the session can no longer be paid
        502: Payment processor call failed
    """
    try:
        session = checkout.execute_payment(
            external_reference, request.payment_id, request.payer_id
        )
    except PaymentSessionNotFoundError as e:
        raise http_error(404, str(e))
    except (SessionNotRedeemableError, InvalidSessionTransitionError) as e:
        logger.warning("execute_payment_rejected", error=str(e))
        raise http_error(409, str(e))
    except GatewayError as e:
        raise http_error(502, f"Payment processor error: {e}")

    return PaymentSessionResponse.from_session(session)


@router.post(
    "/{external_reference}/mark-used",
    response_model=PaymentSessionResponse,
    summary="Mark payment session used",
)
def mark_session_used(
    external_reference: str,
    checkout: CheckoutService = Depends(get_checkout_service),
) -> PaymentSessionResponse:
    """Mark a paid, linked session as used after registration.

    Raises:
        404: Unknown external reference
        409: Session not linked to a user, or not paid
    """
    try:
        session = checkout.mark_session_used(external_reference)
    except PaymentSessionNotFoundError as e:
        raise http_error(404, str(e))
    except (SessionNotRedeemableError, InvalidSessionTransitionError) as e:
        logger.warning("mark_session_used_rejected", error=str(e))
        raise http_error(409, str(e))

    return PaymentSessionResponse.from_session(session)
