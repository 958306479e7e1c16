"""Unit tests for the ORM models defined in nova_webhooks.models.

These tests verify mapping details the delivery pipeline relies on: table
names, the per-event uniqueness of delivery logs and the URL constraint.
"""

import pytest
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from nova_webhooks.models import DeliveryLog, EventCursor, RateLimitCounter, WebhookSubscription
from nova_webhooks.models.delivery_log import (
    DELIVERY_STATE_ATTEMPTING,
    DELIVERY_STATE_EXHAUSTED,
    DELIVERY_STATE_SUCCEEDED,
)
from tests.factories import CREATOR


def test_table_names() -> None:
    """Model classes expose expected __tablename__ values."""
    assert WebhookSubscription.__tablename__ == "webhook_subscriptions"
    assert DeliveryLog.__tablename__ == "webhook_delivery_logs"
    assert RateLimitCounter.__tablename__ == "webhook_rate_limits"
    assert EventCursor.__tablename__ == "event_cursors"


def test_delivery_log_unique_per_subscription_event() -> None:
    constraints = {
        tuple(col.name for col in c.columns)
        for c in DeliveryLog.__table__.constraints
        if c.__class__.__name__ == "UniqueConstraint"
    }
    assert ("subscription_id", "transaction_hash", "event_index") in constraints


def test_delivery_log_terminal_states() -> None:
    assert DeliveryLog(state=DELIVERY_STATE_SUCCEEDED).is_terminal
    assert DeliveryLog(state=DELIVERY_STATE_EXHAUSTED).is_terminal
    assert not DeliveryLog(state=DELIVERY_STATE_ATTEMPTING).is_terminal


def test_subscription_url_must_be_http(db_session: Session) -> None:
    db_session.add(
        WebhookSubscription(
            url="ftp://example.com/hook",
            events=["token.created"],
            secret="s" * 64,
            created_by=CREATOR,
        )
    )
    with pytest.raises(IntegrityError):
        db_session.commit()
    db_session.rollback()


def test_duplicate_delivery_log_rejected(db_session: Session) -> None:
    subscription = WebhookSubscription(
        url="https://example.com/hook",
        events=["token.created"],
        secret="s" * 64,
        created_by=CREATOR,
    )
    db_session.add(subscription)
    db_session.commit()

    for _ in range(2):
        db_session.add(
            DeliveryLog(
                subscription_id=subscription.id,
                event="token.created",
                transaction_hash="tx-dup",
                event_index=0,
                ledger=1,
                payload={},
            )
        )
    with pytest.raises(IntegrityError):
        db_session.commit()
    db_session.rollback()
