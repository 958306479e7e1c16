# src/nova_webhooks/schemas/__init__.py
"""
Pydantic schemas for API response models.

These schemas define the structure of API data for serialization.
"""

from .webhook import (
    DeliveryLogResponse,
    ReplayResponse,
    SubscriptionResponse,
    TestDeliveryResponse,
)

__all__ = [
    "DeliveryLogResponse",
    "ReplayResponse",
    "SubscriptionResponse",
    "TestDeliveryResponse",
]
