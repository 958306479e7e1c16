"""System status endpoints for the webhook service."""

from __future__ import annotations

from fastapi import APIRouter

from nova_webhooks.core.errors import LedgerUnavailableError
from nova_webhooks.core.settings import settings

from ..dependencies import CursorStoreDep, LedgerDep, PipelineDep

router = APIRouter(prefix="/system", tags=["system"])


@router.get("/status")
async def get_status(
    pipeline: PipelineDep, cursor_store: CursorStoreDep, ledger: LedgerDep
) -> dict[str, object]:
    """Report listener state, the committed chain cursor and any fatal error.

    Excludes secrets and connection strings.
    """
    source_id = pipeline.source_id if pipeline is not None else settings.chain_source_id
    try:
        cursor: str | None = cursor_store.load(source_id).paging_token
        store_error = None
    except LedgerUnavailableError as exc:
        cursor = None
        store_error = str(exc)

    # Sequences interrupted by a shutdown or crash; retried once the range is re-read.
    try:
        unfinished: int | None = len(ledger.pending())
    except LedgerUnavailableError:
        unfinished = None

    listener: dict[str, object] = {
        "enabled": settings.listener_enabled,
        "running": False,
        "cycles": 0,
        "last_error": None,
        "fatal_error": None,
    }
    if pipeline is not None:
        listener.update(
            running=pipeline.state.running,
            cycles=pipeline.state.cycles,
            last_error=pipeline.state.last_error,
            fatal_error=str(pipeline.fatal_error) if pipeline.fatal_error else None,
        )

    return {
        "app": {
            "name": settings.app_name,
            "version": settings.app_version,
        },
        "listener": listener,
        "cursor": {
            "source_id": source_id,
            "position": cursor,
            "error": store_error,
        },
        "delivery": {
            "max_attempts": settings.webhook_max_attempts,
            "retry_base_delay_seconds": settings.webhook_retry_base_delay_seconds,
            "rate_limit_requests": settings.webhook_rate_limit_requests,
            "rate_limit_window_seconds": settings.webhook_rate_limit_window_seconds,
            "unfinished_sequences": unfinished,
        },
    }
