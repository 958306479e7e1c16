# src/nova_webhooks/api/v1/endpoints/__init__.py
"""API endpoint modules for version 1."""

from .system import router as system_router
from .webhooks import router as webhooks_router

__all__ = [
    "system_router",
    "webhooks_router",
]
