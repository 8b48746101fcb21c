"""Service container.

Builds every store, client and service once per application and wires
them together explicitly. Routes receive the container through a FastAPI
dependency; nothing is held in module-level globals.
"""

from dataclasses import dataclass
from typing import Optional

import httpx

from subscription_sync.config import Config
from subscription_sync.logging_config import get_logger
from subscription_sync.repositories.event_ledger import EventLedger
from subscription_sync.repositories.payment_session_store import PaymentSessionStore
from subscription_sync.repositories.profile_store import ProfileStore
from subscription_sync.services.checkout_service import CheckoutService
from subscription_sync.services.notification_dispatcher import NotificationDispatcher
from subscription_sync.services.payment_gateway import PaymentGateway
from subscription_sync.services.subscription_lifecycle import SubscriptionLifecycle
from subscription_sync.services.time_controller import TimeController
from subscription_sync.services.webhook_reconciler import WebhookReconciler
from subscription_sync.utils.billing_period import parse_billing_period

logger = get_logger(__name__)


@dataclass
class ServiceContainer:
    """All collaborators of one application instance."""

    config: Config
    clock: TimeController
    profile_store: ProfileStore
    session_store: PaymentSessionStore
    ledger: EventLedger
    gateway: PaymentGateway
    dispatcher: NotificationDispatcher
    reconciler: WebhookReconciler
    lifecycle: SubscriptionLifecycle
    checkout: CheckoutService

    def shutdown(self) -> None:
        """Release network clients."""
        self.dispatcher.shutdown()
        self.gateway.close()


def build_container(
    config: Config,
    clock: Optional[TimeController] = None,
    http_client: Optional[httpx.Client] = None,
    publisher=None,
) -> ServiceContainer:
    """Wire a ServiceContainer from configuration.

    Args:
        config: Loaded configuration
        clock: Optional clock (tests pass a frozen one)
        http_client: Optional httpx.Client for the gateway
        publisher: Optional Pub/Sub PublisherClient for the dispatcher

    Returns:
        ServiceContainer
    """
    clock = clock or TimeController()
    billing = config.billing

    profile_store = ProfileStore()
    session_store = PaymentSessionStore()
    ledger = EventLedger(retention_millis=parse_billing_period(billing.event_retention))
    gateway = PaymentGateway(config.gateway, billing=billing, client=http_client)
    dispatcher = NotificationDispatcher(config.notifications, clock=clock, publisher=publisher)

    container = ServiceContainer(
        config=config,
        clock=clock,
        profile_store=profile_store,
        session_store=session_store,
        ledger=ledger,
        gateway=gateway,
        dispatcher=dispatcher,
        reconciler=WebhookReconciler(
            profile_store=profile_store,
            session_store=session_store,
            ledger=ledger,
            gateway=gateway,
            dispatcher=dispatcher,
            clock=clock,
            billing=billing,
        ),
        lifecycle=SubscriptionLifecycle(
            profile_store=profile_store,
            session_store=session_store,
            gateway=gateway,
            dispatcher=dispatcher,
            clock=clock,
            billing=billing,
        ),
        checkout=CheckoutService(
            session_store=session_store,
            gateway=gateway,
            clock=clock,
            billing=billing,
        ),
    )

    logger.info(
        "service_container_built",
        gateway_environment=config.gateway.environment.value,
        gateway_configured=gateway.is_configured(),
        notifications_enabled=dispatcher.is_enabled(),
    )
    return container
