# src/nova_webhooks/api/v1/__init__.py
"""Version 1 API endpoints."""

from .endpoints import system_router, webhooks_router

__all__ = [
    "system_router",
    "webhooks_router",
]
