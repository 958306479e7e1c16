"""Tests for the system status endpoint."""

from unittest.mock import AsyncMock

from fastapi import status
from fastapi.testclient import TestClient

from nova_webhooks.core.errors import LedgerUnavailableError
from nova_webhooks.core.settings import settings
from nova_webhooks.models.delivery_log import DELIVERY_STATE_ATTEMPTING
from nova_webhooks.services.chain_source import ChainEventSource
from nova_webhooks.services.events import Cursor
from nova_webhooks.services.ledger import AttemptOutcome, CursorStore, DeliveryLedger
from nova_webhooks.services.pipeline import EventPipelineWorker
from tests.factories import make_event


def test_status_without_listener(client: TestClient) -> None:
    r = client.get("/api/v1/system/status")

    assert r.status_code == status.HTTP_200_OK
    data = r.json()
    assert data["listener"]["running"] is False
    assert data["listener"]["fatal_error"] is None
    assert data["cursor"] == {
        "source_id": settings.chain_source_id,
        "position": "0-0",
        "error": None,
    }
    assert data["delivery"]["max_attempts"] == settings.webhook_max_attempts
    assert data["delivery"]["unfinished_sequences"] == 0
    assert "database_url" not in r.text


def test_status_reports_committed_cursor(client: TestClient, cursor_store: CursorStore) -> None:
    cursor_store.commit(settings.chain_source_id, Cursor(1234, 5))

    r = client.get("/api/v1/system/status")

    assert r.json()["cursor"]["position"] == "1234-5"


def test_status_reports_worker_fatal_error(
    client: TestClient, registry, delivery_engine, cursor_store
) -> None:
    worker = EventPipelineWorker(
        AsyncMock(spec=ChainEventSource),
        registry,
        delivery_engine,
        cursor_store,
        source_id="custom-source",
    )
    worker.state.cycles = 7
    worker.fatal_error = LedgerUnavailableError("cursor store unwritable")
    client.app.state.pipeline_worker = worker
    try:
        r = client.get("/api/v1/system/status")
    finally:
        client.app.state.pipeline_worker = None

    data = r.json()
    assert data["listener"]["cycles"] == 7
    assert data["listener"]["fatal_error"] == "cursor store unwritable"
    assert data["cursor"]["source_id"] == "custom-source"


def test_status_survives_cursor_store_failure(
    client: TestClient, cursor_store: CursorStore, mocker
) -> None:
    mocker.patch.object(cursor_store, "load", side_effect=LedgerUnavailableError("db down"))

    r = client.get("/api/v1/system/status")

    assert r.status_code == status.HTTP_200_OK
    assert r.json()["cursor"]["position"] is None
    assert r.json()["cursor"]["error"] == "db down"


def test_status_counts_unfinished_sequences(
    client: TestClient, ledger: DeliveryLedger, make_subscription
) -> None:
    sub = make_subscription()
    ledger.record(
        AttemptOutcome(
            subscription_id=sub.id,
            event=make_event(),
            payload={},
            attempt_number=1,
            state=DELIVERY_STATE_ATTEMPTING,
            status_code=503,
        )
    )

    r = client.get("/api/v1/system/status")

    assert r.json()["delivery"]["unfinished_sequences"] == 1
