# src/nova_webhooks/main.py
"""Main entry point for the Nova webhook service."""

from __future__ import annotations

import logging

from fastapi import FastAPI

from nova_webhooks.api.v1 import system_router, webhooks_router
from nova_webhooks.core.logging_config import setup_logging
from nova_webhooks.core.settings import settings
from nova_webhooks.services.delivery import get_delivery_engine
from nova_webhooks.services.pipeline import EventPipelineWorker, get_pipeline_worker

# Configure logger for this module
logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title=settings.app_name,
    description="Signed webhook delivery for Nova Launch token events",
    version=settings.app_version,
)

# Include API routers
app.include_router(webhooks_router, prefix="/api/v1")
app.include_router(system_router, prefix="/api/v1")


@app.on_event("startup")
async def on_startup() -> None:
    setup_logging()
    if settings.listener_enabled:
        worker = get_pipeline_worker()
        await worker.start()
        app.state.pipeline_worker = worker
        logger.info("Event listener started for contract %s", settings.factory_contract_id)
    else:
        app.state.pipeline_worker = None
        logger.info("Event listener disabled; serving API only")


@app.on_event("shutdown")
async def on_shutdown() -> None:
    worker: EventPipelineWorker | None = getattr(app.state, "pipeline_worker", None)
    if worker:
        await worker.stop()
        await worker.source.close()
    await get_delivery_engine().close()


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint to verify the service is running."""
    return {"status": "ok"}


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint with basic information about the API."""
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "description": "Signed webhook delivery for Nova Launch token events",
        "docs": "/docs",
        "redoc": "/redoc",
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("nova_webhooks.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
