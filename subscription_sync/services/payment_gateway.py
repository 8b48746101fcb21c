"""Payment processor gateway.

Thin synchronous client for the processor's REST API (PayPal-compatible
paths): OAuth client-credentials token, billing plans and subscriptions
for recurring checkouts, and payments for one-time checkouts.

Every call uses a bounded timeout. Transport failures and unexpected
responses raise GatewayError; callers decide whether the failure blocks
their transition.
"""

import threading
import time
from typing import Any, Optional

import httpx
from pydantic import BaseModel, Field

from subscription_sync.exceptions import GatewayError
from subscription_sync.logging_config import get_logger
from subscription_sync.models.settings import BillingConfig, GatewayConfig

logger = get_logger(__name__)

# Refresh the cached token this long before the processor expires it
TOKEN_EXPIRY_MARGIN_SECONDS = 60

APPROVED_PAYMENT_STATE = "approved"


class CancelResult(BaseModel):
    """Outcome of a processor-side subscription cancel."""

    success: bool
    status_code: Optional[int] = None
    message: str = ""


class SubscriptionCheckout(BaseModel):
    """Processor subscription created for a recurring checkout."""

    external_subscription_id: str
    status: Optional[str] = None
    approval_url: Optional[str] = None


class PaymentCheckout(BaseModel):
    """Processor payment created for a one-time checkout."""

    payment_id: str
    state: Optional[str] = None
    approval_url: Optional[str] = None


class SubscriptionStatusInfo(BaseModel):
    """Processor view of a subscription."""

    status: Optional[str] = None
    next_billing_time: Optional[str] = Field(None, description="ISO 8601 timestamp")


def _find_link(payload: dict[str, Any], *rels: str) -> Optional[str]:
    for link in payload.get("links") or []:
        if isinstance(link, dict) and link.get("rel") in rels:
            return link.get("href")
    return None


class PaymentGateway:
    """Client for the recurring-payment processor.

    Args:
        config: Processor connection settings
        billing: Pricing used for plans and one-time payments
        client: Optional pre-built httpx.Client (tests pass one backed by
            httpx.MockTransport)
    """

    def __init__(
        self,
        config: GatewayConfig,
        billing: Optional[BillingConfig] = None,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self._config = config
        self._billing = billing or BillingConfig()
        self._client = client or httpx.Client(
            base_url=config.resolved_base_url,
            timeout=config.timeout_seconds,
        )
        self._owns_client = client is None
        self._lock = threading.Lock()
        self._access_token: Optional[str] = None
        self._token_expires_at: float = 0.0

    @property
    def config(self) -> GatewayConfig:
        return self._config

    def is_configured(self) -> bool:
        """Whether OAuth credentials are present."""
        return bool(self._config.client_id and self._config.client_secret)

    def _get_access_token(self) -> str:
        """Return a cached OAuth token, fetching a new one when it is about to expire."""
        with self._lock:
            if self._access_token and time.monotonic() < self._token_expires_at:
                return self._access_token

            if not self.is_configured():
                raise GatewayError("Payment gateway credentials are not configured")

            try:
                response = self._client.post(
                    "/v1/oauth2/token",
                    auth=(self._config.client_id, self._config.client_secret),
                    data={"grant_type": "client_credentials"},
                    headers={"Accept": "application/json"},
                )
            except httpx.HTTPError as e:
                logger.error(
                    "gateway_token_request_failed",
                    error=str(e),
                    error_type=type(e).__name__,
                )
                raise GatewayError(f"Token request failed: {e}") from e

            if response.status_code != 200:
                logger.error("gateway_token_rejected", status_code=response.status_code)
                raise GatewayError(
                    f"Token request rejected with HTTP {response.status_code}",
                    status_code=response.status_code,
                )

            payload = response.json()
            token = payload.get("access_token")
            if not token:
                raise GatewayError("Token response did not include an access_token")

            expires_in = int(payload.get("expires_in", 0))
            self._access_token = token
            self._token_expires_at = (
                time.monotonic() + max(expires_in - TOKEN_EXPIRY_MARGIN_SECONDS, 0)
            )
            logger.debug("gateway_token_refreshed", expires_in=expires_in)
            return token

    def _send(
        self,
        method: str,
        path: str,
        json: Optional[dict[str, Any]] = None,
    ) -> httpx.Response:
        token = self._get_access_token()
        try:
            return self._client.request(
                method,
                path,
                json=json,
                headers={
                    "Authorization": f"Bearer {token}",
                    "Content-Type": "application/json",
                },
            )
        except httpx.HTTPError as e:
            logger.error(
                "gateway_request_failed",
                method=method,
                path=path,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise GatewayError(f"{method} {path} failed: {e}") from e

    def _request(
        self,
        method: str,
        path: str,
        json: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        """Send a request and return its JSON body.

        Raises:
            GatewayError: On transport failure or a non-2xx response
        """
        response = self._send(method, path, json=json)
        if response.status_code >= 300:
            logger.warning(
                "gateway_unexpected_status",
                method=method,
                path=path,
                status_code=response.status_code,
            )
            raise GatewayError(
                f"{method} {path} returned HTTP {response.status_code}",
                status_code=response.status_code,
            )
        if not response.content:
            return {}
        payload = response.json()
        if not isinstance(payload, dict):
            raise GatewayError(f"{method} {path} returned a non-object body")
        return payload

    def create_product(self) -> str:
        """Create the catalog product that recurring plans are attached to.

        Returns:
            Processor product id
        """
        payload = self._request(
            "POST",
            "/v1/catalogs/products",
            json={
                "name": self._config.brand_name,
                "type": "SERVICE",
                "category": "SOFTWARE",
            },
        )
        product_id = payload.get("id")
        if not product_id:
            raise GatewayError("Product response did not include an id")
        logger.info("gateway_product_created", product_id=product_id)
        return product_id

    def create_plan(self, product_id: Optional[str] = None) -> str:
        """Create a monthly billing plan at the configured price.

        Args:
            product_id: Catalog product (defaults to config.product_id, created if absent)

        Returns:
            Processor plan id
        """
        product_id = product_id or self._config.product_id or self.create_product()
        payload = self._request(
            "POST",
            "/v1/billing/plans",
            json={
                "product_id": product_id,
                "name": f"{self._config.brand_name} monthly",
                "billing_cycles": [
                    {
                        "frequency": {"interval_unit": "MONTH", "interval_count": 1},
                        "tenure_type": "REGULAR",
                        "sequence": 1,
                        "total_cycles": 0,
                        "pricing_scheme": {
                            "fixed_price": {
                                "value": self._billing.price,
                                "currency_code": self._billing.currency,
                            }
                        },
                    }
                ],
                "payment_preferences": {
                    "auto_bill_outstanding": True,
                    "payment_failure_threshold": 3,
                },
            },
        )
        plan_id = payload.get("id")
        if not plan_id:
            raise GatewayError("Plan response did not include an id")
        logger.info("gateway_plan_created", plan_id=plan_id, product_id=product_id)
        return plan_id

    def create_subscription(
        self, external_reference: str, plan_id: Optional[str] = None
    ) -> SubscriptionCheckout:
        """Create a processor subscription correlated with a local session.

        Args:
            external_reference: Local correlation key, sent as custom_id
            plan_id: Billing plan (defaults to config.plan_id)

        Returns:
            SubscriptionCheckout with the approval URL
        """
        plan_id = plan_id or self._config.plan_id
        if not plan_id:
            raise GatewayError("No billing plan configured for recurring checkout")

        payload = self._request(
            "POST",
            "/v1/billing/subscriptions",
            json={
                "plan_id": plan_id,
                "custom_id": external_reference,
                "application_context": {
                    "brand_name": self._config.brand_name,
                    "user_action": "SUBSCRIBE_NOW",
                    "return_url": f"{self._config.return_url}?ref={external_reference}",
                    "cancel_url": self._config.cancel_url,
                },
            },
        )
        subscription_id = payload.get("id")
        if not subscription_id:
            raise GatewayError("Subscription response did not include an id")

        logger.info(
            "gateway_subscription_created",
            external_reference=external_reference,
            external_subscription_id=subscription_id,
        )
        return SubscriptionCheckout(
            external_subscription_id=subscription_id,
            status=payload.get("status"),
            approval_url=_find_link(payload, "approve"),
        )

    def cancel_subscription(self, external_subscription_id: str, reason: str) -> CancelResult:
        """Cancel a processor subscription.

        Success iff the processor answers 204.

        Args:
            external_subscription_id: Processor subscription id
            reason: Cancellation reason forwarded to the processor

        Returns:
            CancelResult

        Raises:
            GatewayError: If the processor is unreachable
        """
        response = self._send(
            "POST",
            f"/v1/billing/subscriptions/{external_subscription_id}/cancel",
            json={"reason": reason},
        )
        if response.status_code == 204:
            logger.info(
                "gateway_subscription_cancelled",
                external_subscription_id=external_subscription_id,
            )
            return CancelResult(success=True, status_code=204, message="Subscription cancelled")

        logger.warning(
            "gateway_subscription_cancel_rejected",
            external_subscription_id=external_subscription_id,
            status_code=response.status_code,
        )
        return CancelResult(
            success=False,
            status_code=response.status_code,
            message=response.text[:200],
        )

    def get_subscription_status(self, external_subscription_id: str) -> SubscriptionStatusInfo:
        """Fetch the processor's status for a subscription."""
        payload = self._request("GET", f"/v1/billing/subscriptions/{external_subscription_id}")
        billing_info = payload.get("billing_info") or {}
        return SubscriptionStatusInfo(
            status=payload.get("status"),
            next_billing_time=billing_info.get("next_billing_time"),
        )

    def create_payment(self, external_reference: str) -> PaymentCheckout:
        """Create a one-time sale correlated with a local session.

        Args:
            external_reference: Local correlation key, sent as transaction custom

        Returns:
            PaymentCheckout with the approval URL
        """
        payload = self._request(
            "POST",
            "/v1/payments/payment",
            json={
                "intent": "sale",
                "payer": {"payment_method": "paypal"},
                "redirect_urls": {
                    "return_url": f"{self._config.return_url}?ref={external_reference}",
                    "cancel_url": self._config.cancel_url,
                },
                "transactions": [
                    {
                        "amount": {
                            "total": self._billing.price,
                            "currency": self._billing.currency,
                        },
                        "description": f"{self._config.brand_name} subscription",
                        "custom": external_reference,
                    }
                ],
            },
        )
        payment_id = payload.get("id")
        if not payment_id:
            raise GatewayError("Payment response did not include an id")

        logger.info(
            "gateway_payment_created",
            external_reference=external_reference,
            payment_id=payment_id,
        )
        return PaymentCheckout(
            payment_id=payment_id,
            state=payload.get("state"),
            approval_url=_find_link(payload, "approval_url"),
        )

    def execute_payment(self, payment_id: str, payer_id: str) -> dict[str, Any]:
        """Execute a payer-approved one-time payment.

        Returns:
            Processor payment object; ``state == "approved"`` on success
        """
        payload = self._request(
            "POST",
            f"/v1/payments/payment/{payment_id}/execute",
            json={"payer_id": payer_id},
        )
        logger.info("gateway_payment_executed", payment_id=payment_id, state=payload.get("state"))
        return payload

    def get_payment(self, payment_id: str) -> dict[str, Any]:
        """Fetch a one-time payment, used to verify sale webhooks."""
        return self._request("GET", f"/v1/payments/payment/{payment_id}")

    def is_payment_approved(self, payment_id: str) -> bool:
        """Verify a one-time payment with the processor."""
        return self.get_payment(payment_id).get("state") == APPROVED_PAYMENT_STATE

    def close(self) -> None:
        """Close the underlying HTTP client if this gateway created it."""
        if self._owns_client:
            self._client.close()
