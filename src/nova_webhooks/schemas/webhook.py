# src/nova_webhooks/schemas/webhook.py
"""Webhook subscription and delivery log schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict

from nova_webhooks.models import WebhookSubscription
from nova_webhooks.services.registry import mask_secret


class SubscriptionResponse(BaseModel):
    """Subscription as exposed over the API; the secret is always masked."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    url: str
    token_address: str | None
    events: list[str]
    secret: str
    active: bool
    created_by: str
    created_at: datetime
    last_triggered: datetime | None = None

    @classmethod
    def from_subscription(cls, subscription: WebhookSubscription) -> SubscriptionResponse:
        response = cls.model_validate(subscription)
        return response.model_copy(update={"secret": mask_secret(subscription.secret)})


class DeliveryLogResponse(BaseModel):
    """One logical delivery with its latest attempt."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    subscription_id: str
    event: str
    transaction_hash: str
    event_index: int
    ledger: int
    payload: dict[str, Any] | None
    status_code: int | None
    success: bool
    state: str
    attempts: int
    error_message: str | None
    last_attempt_at: datetime | None
    created_at: datetime


class ReplayResponse(BaseModel):
    state: str
    success: bool
    attempts: int
    status_code: int | None = None
    error_message: str | None = None


class TestDeliveryResponse(BaseModel):
    success: bool
