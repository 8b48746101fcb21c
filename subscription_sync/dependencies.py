"""FastAPI dependencies resolving services from the application container."""

from fastapi import Depends, Request

from subscription_sync.container import ServiceContainer
from subscription_sync.services.checkout_service import CheckoutService
from subscription_sync.services.subscription_lifecycle import SubscriptionLifecycle
from subscription_sync.services.time_controller import TimeController
from subscription_sync.services.webhook_reconciler import WebhookReconciler


def get_container(request: Request) -> ServiceContainer:
    container = getattr(request.app.state, "container", None)
    if not container:
        raise RuntimeError("Service container not initialised.")
    return container


def get_reconciler(container: ServiceContainer = Depends(get_container)) -> WebhookReconciler:
    return container.reconciler


def get_lifecycle(container: ServiceContainer = Depends(get_container)) -> SubscriptionLifecycle:
    return container.lifecycle


def get_checkout_service(container: ServiceContainer = Depends(get_container)) -> CheckoutService:
    return container.checkout


def get_clock(container: ServiceContainer = Depends(get_container)) -> TimeController:
    return container.clock
