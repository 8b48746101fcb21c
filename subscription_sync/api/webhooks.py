"""Billing webhook endpoint.

Implements:
- POST /webhooks/billing - Receive processor billing events
"""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from subscription_sync.api.errors import http_error
from subscription_sync.dependencies import get_reconciler
from subscription_sync.exceptions import InvalidWebhookPayloadError
from subscription_sync.logging_config import bind_context, get_logger
from subscription_sync.models.api_response import WebhookAckResponse
from subscription_sync.models.events import parse_billing_event
from subscription_sync.models.results import ReconcileOutcome
from subscription_sync.services.webhook_reconciler import WebhookReconciler

logger = get_logger(__name__)
router = APIRouter(tags=["Webhooks"], prefix="/webhooks")


@router.post(
    "/billing",
    response_model=WebhookAckResponse,
    summary="Receive billing webhook",
    responses={400: {"description": "Structurally invalid body"}, 503: {"description": "Retry later"}},
)
async def receive_billing_webhook(
    request: Request,
    reconciler: WebhookReconciler = Depends(get_reconciler),
):
    """Receive a billing event from the payment processor.

    Every structurally valid event is acknowledged with 200, including
    duplicates, unknown correlation keys and unhandled event types. A 503
    asks the processor to redeliver when verification could not reach it.

    Raises:
        400: Body is not JSON, has no event_type, or lacks its correlation key
    """
    try:
        payload = await request.json()
    except ValueError:
        logger.warning("webhook_invalid_json")
        raise http_error(400, "Webhook body must be valid JSON")

    try:
        event = parse_billing_event(payload)
    except InvalidWebhookPayloadError as e:
        logger.warning("webhook_invalid_payload", error=str(e))
        raise http_error(400, str(e))

    if event.event_id:
        bind_context(event_id=event.event_id)

    result = await run_in_threadpool(reconciler.reconcile, event)

    if result.outcome == ReconcileOutcome.DOWNSTREAM_ERROR:
        body = WebhookAckResponse(status="retry", outcome=result.outcome.value, message=result.message)
        return JSONResponse(status_code=503, content=body.model_dump())

    return WebhookAckResponse(status="ok", outcome=result.outcome.value, message=result.message)
