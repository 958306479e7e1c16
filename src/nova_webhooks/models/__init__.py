# src/nova_webhooks/models/__init__.py
"""SQLAlchemy models for the webhook service."""

from .delivery_log import DeliveryLog, RateLimitCounter
from .event_cursor import EventCursor
from .subscription import WebhookSubscription

__all__ = [
    "DeliveryLog",
    "EventCursor",
    "RateLimitCounter",
    "WebhookSubscription",
]
