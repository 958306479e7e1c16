"""Shared API dependencies for the webhook services."""

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from nova_webhooks.models import WebhookSubscription
from nova_webhooks.services.delivery import DeliveryEngine, get_delivery_engine
from nova_webhooks.services.ledger import CursorStore, DeliveryLedger
from nova_webhooks.services.pipeline import EventPipelineWorker
from nova_webhooks.services.registry import SubscriptionRegistry


def get_engine() -> DeliveryEngine:
    """Get the delivery engine for dependency injection."""
    return get_delivery_engine()


EngineDep = Annotated[DeliveryEngine, Depends(get_engine)]


def get_registry(engine: EngineDep) -> SubscriptionRegistry:
    return engine.registry


def get_ledger(engine: EngineDep) -> DeliveryLedger:
    return engine.ledger


def get_cursor_store() -> CursorStore:
    return CursorStore()


def get_pipeline(request: Request) -> EventPipelineWorker | None:
    """Return the running pipeline worker, or None when the listener is disabled."""
    return getattr(request.app.state, "pipeline_worker", None)


RegistryDep = Annotated[SubscriptionRegistry, Depends(get_registry)]
LedgerDep = Annotated[DeliveryLedger, Depends(get_ledger)]
CursorStoreDep = Annotated[CursorStore, Depends(get_cursor_store)]
PipelineDep = Annotated[EventPipelineWorker | None, Depends(get_pipeline)]


def get_subscription_or_404(
    subscription_id: str, registry: RegistryDep
) -> WebhookSubscription:
    """Load a subscription by path id.

    Raises:
        HTTPException: 404 if no subscription has that id
    """
    subscription = registry.get_subscription(subscription_id)
    if subscription is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Webhook subscription not found",
        )
    return subscription


SubscriptionDep = Annotated[WebhookSubscription, Depends(get_subscription_or_404)]
