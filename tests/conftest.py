# tests/conftest.py
from __future__ import annotations

import os
from collections.abc import Callable, Generator, Iterator
from typing import Any

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("WEBHOOK_LISTENER_ENABLED", "false")

from nova_webhooks.api.v1.dependencies import get_cursor_store, get_engine
from nova_webhooks.db.session import Base
from nova_webhooks.main import app as fastapi_app
from nova_webhooks.models import WebhookSubscription
from nova_webhooks.services.delivery import DeliveryConfig, DeliveryEngine
from nova_webhooks.services.events import WebhookEventType
from nova_webhooks.services.ledger import CursorStore, DeliveryLedger
from nova_webhooks.services.rate_limit import RateLimiter
from nova_webhooks.services.registry import SubscriptionRegistry, SubscriptionSnapshot
from tests.factories import CREATOR, RECEIVER_URL, FakeClock, FakeSleep, Receiver

TEST_DB_URL = "sqlite://"


@pytest.fixture(scope="session")
def db_engine() -> Generator[Engine, None, None]:
    engine = create_engine(
        TEST_DB_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def session_factory(db_engine: Engine) -> Iterator[sessionmaker[Session]]:
    factory = sessionmaker(
        bind=db_engine,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )
    try:
        yield factory
    finally:
        # Ensure each test sees a clean database even if commits occurred.
        with db_engine.begin() as cleanup_conn:
            for table in reversed(Base.metadata.sorted_tables):
                cleanup_conn.execute(table.delete())


@pytest.fixture()
def db_session(session_factory: sessionmaker[Session]) -> Iterator[Session]:
    with session_factory() as session:
        yield session


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def fake_sleep(clock: FakeClock) -> FakeSleep:
    return FakeSleep(clock)


@pytest.fixture()
def receiver() -> Receiver:
    return Receiver()


@pytest.fixture()
def registry(session_factory: sessionmaker[Session]) -> SubscriptionRegistry:
    return SubscriptionRegistry(session_factory, cache_ttl_seconds=0)


@pytest.fixture()
def ledger(session_factory: sessionmaker[Session]) -> DeliveryLedger:
    return DeliveryLedger(session_factory)


@pytest.fixture()
def cursor_store(session_factory: sessionmaker[Session]) -> CursorStore:
    return CursorStore(session_factory)


@pytest.fixture()
def rate_limiter(session_factory: sessionmaker[Session], clock: FakeClock) -> RateLimiter:
    return RateLimiter(session_factory, max_requests=1000, window_seconds=60, clock=clock)


@pytest.fixture()
def delivery_config() -> DeliveryConfig:
    return DeliveryConfig(
        timeout_seconds=5.0,
        max_attempts=3,
        retry_base_delay=1.0,
        sequence_timeout_seconds=60.0,
        user_agent="Nova-Launch-Webhook/1.0",
        signature_header="X-Webhook-Signature",
    )


@pytest.fixture()
def delivery_engine(
    registry: SubscriptionRegistry,
    ledger: DeliveryLedger,
    rate_limiter: RateLimiter,
    delivery_config: DeliveryConfig,
    receiver: Receiver,
    clock: FakeClock,
    fake_sleep: FakeSleep,
) -> DeliveryEngine:
    return DeliveryEngine(
        registry,
        ledger,
        rate_limiter,
        delivery_config,
        transport=receiver.transport,
        clock=clock,
        sleep=fake_sleep,
    )


@pytest.fixture()
def make_subscription(
    registry: SubscriptionRegistry,
) -> Callable[..., WebhookSubscription]:
    def _make(
        url: str = RECEIVER_URL,
        events: list[str] | None = None,
        token_address: str | None = None,
        created_by: str = CREATOR,
        active: bool = True,
    ) -> WebhookSubscription:
        subscription = registry.create_subscription(
            url=url,
            events=events or [WebhookEventType.TOKEN_BURN_SELF.value],
            created_by=created_by,
            token_address=token_address,
        )
        if not active:
            registry.set_active(subscription.id, False)
            subscription.active = False
        return subscription

    return _make


@pytest.fixture()
def make_snapshot(
    make_subscription: Callable[..., WebhookSubscription],
) -> Callable[..., SubscriptionSnapshot]:
    def _make(**kwargs: Any) -> SubscriptionSnapshot:
        return SubscriptionSnapshot.from_model(make_subscription(**kwargs))

    return _make


@pytest.fixture(scope="session")
def app() -> FastAPI:
    return fastapi_app


@pytest.fixture()
def client(
    app: FastAPI,
    mocker: Any,
    delivery_engine: DeliveryEngine,
    cursor_store: CursorStore,
) -> Iterator[TestClient]:
    # Keep pytest's log capture handlers in place and never touch the real engine.
    mocker.patch("nova_webhooks.main.setup_logging")
    mocker.patch("nova_webhooks.main.get_delivery_engine", return_value=delivery_engine)
    app.dependency_overrides[get_engine] = lambda: delivery_engine
    app.dependency_overrides[get_cursor_store] = lambda: cursor_store
    try:
        with TestClient(app, base_url="http://test") as test_client:
            yield test_client
    finally:
        app.dependency_overrides.pop(get_engine, None)
        app.dependency_overrides.pop(get_cursor_store, None)
