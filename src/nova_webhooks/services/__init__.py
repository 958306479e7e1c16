# src/nova_webhooks/services/__init__.py
"""Event ingestion, matching and delivery services."""

from .chain_source import ChainEventSource
from .delivery import DeliveryEngine
from .ledger import CursorStore, DeliveryLedger
from .pipeline import EventPipelineWorker
from .rate_limit import RateLimiter
from .registry import SubscriptionRegistry

__all__ = [
    "ChainEventSource",
    "CursorStore",
    "DeliveryEngine",
    "DeliveryLedger",
    "EventPipelineWorker",
    "RateLimiter",
    "SubscriptionRegistry",
]
