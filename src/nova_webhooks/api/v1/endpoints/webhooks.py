# src/nova_webhooks/api/v1/endpoints/webhooks.py
"""Webhook subscription read, delivery log and replay endpoints."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, HTTPException, Query, status

from nova_webhooks.core.errors import LedgerUnavailableError, ReplayRejectedError
from nova_webhooks.core.settings import settings
from nova_webhooks.models import DeliveryLog
from nova_webhooks.schemas.webhook import (
    DeliveryLogResponse,
    ReplayResponse,
    SubscriptionResponse,
    TestDeliveryResponse,
)
from nova_webhooks.services.registry import SubscriptionSnapshot

from ..dependencies import EngineDep, LedgerDep, SubscriptionDep

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

MAX_LOG_LIMIT = 500


def _ledger_unavailable(exc: LedgerUnavailableError) -> HTTPException:
    logger.error("Delivery ledger unavailable: %s", exc)
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail="Delivery ledger unavailable",
    )


@router.get("/{subscription_id}", response_model=SubscriptionResponse)
async def get_subscription(subscription: SubscriptionDep) -> SubscriptionResponse:
    """Get a subscription; the signing secret is masked."""
    return SubscriptionResponse.from_subscription(subscription)


@router.get("/{subscription_id}/logs", response_model=list[DeliveryLogResponse])
async def list_delivery_logs(
    subscription: SubscriptionDep,
    ledger: LedgerDep,
    limit: Annotated[int, Query(ge=1, le=MAX_LOG_LIMIT)] = settings.delivery_log_default_limit,
) -> list[DeliveryLog]:
    """List delivery logs for a subscription, most recent attempt first."""
    try:
        return ledger.get(subscription.id, limit=limit)
    except LedgerUnavailableError as exc:
        raise _ledger_unavailable(exc) from exc


@router.post("/{subscription_id}/logs/{log_id}/replay", response_model=ReplayResponse)
async def replay_delivery(
    log_id: str,
    subscription: SubscriptionDep,
    ledger: LedgerDep,
    engine: EngineDep,
) -> ReplayResponse:
    """Re-deliver a failed event from attempt 1 under its original delivery id.

    Args:
        log_id: Delivery log row to replay
        subscription: Subscription owning the log row
        ledger: Delivery ledger
        engine: Delivery engine that runs the new sequence

    Returns:
        Final state of the replayed sequence

    Raises:
        HTTPException: 404 for an unknown log row, 409 for one already delivered
    """
    try:
        entry = ledger.get_entry(log_id)
    except LedgerUnavailableError as exc:
        raise _ledger_unavailable(exc) from exc
    if entry is None or entry.subscription_id != subscription.id:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Delivery log not found",
        )

    try:
        result = await engine.replay(SubscriptionSnapshot.from_model(subscription), log_id)
    except ReplayRejectedError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except LedgerUnavailableError as exc:
        raise _ledger_unavailable(exc) from exc

    return ReplayResponse(
        state=result.state.value,
        success=result.success,
        attempts=result.attempts,
        status_code=result.status_code,
        error_message=result.error_message,
    )


@router.post("/{subscription_id}/test", response_model=TestDeliveryResponse)
async def send_test_delivery(
    subscription: SubscriptionDep, engine: EngineDep
) -> TestDeliveryResponse:
    """Send a sample signed payload to the subscription URL."""
    ok = await engine.send_test(SubscriptionSnapshot.from_model(subscription))
    return TestDeliveryResponse(success=ok)
