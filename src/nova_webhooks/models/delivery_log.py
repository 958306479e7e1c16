# src/nova_webhooks/models/delivery_log.py
"""SQLAlchemy models for delivery outcomes and per-subscription rate windows."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from nova_webhooks.db.session import Base
from nova_webhooks.db.time import utcnow

DELIVERY_STATE_ATTEMPTING = "attempting"
DELIVERY_STATE_SUCCEEDED = "succeeded"
DELIVERY_STATE_EXHAUSTED = "exhausted"
TERMINAL_DELIVERY_STATES = frozenset({DELIVERY_STATE_SUCCEEDED, DELIVERY_STATE_EXHAUSTED})


class DeliveryLog(Base):
    """One row per (subscription, on-chain event); retries update it in place."""

    __tablename__ = "webhook_delivery_logs"
    __table_args__ = (
        UniqueConstraint(
            "subscription_id",
            "transaction_hash",
            "event_index",
            name="uq_delivery_logs_subscription_event",
        ),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    subscription_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("webhook_subscriptions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    event: Mapped[str] = mapped_column(String(50), nullable=False)
    # Idempotency key of the on-chain event.
    transaction_hash: Mapped[str] = mapped_column(String(128), nullable=False)
    event_index: Mapped[int] = mapped_column(Integer, nullable=False)
    ledger: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    token_address: Mapped[str | None] = mapped_column(String(56), nullable=True)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    status_code: Mapped[int | None] = mapped_column(Integer, nullable=True)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
    # 'attempting', 'succeeded', 'exhausted'
    state: Mapped[str] = mapped_column(
        String(20), nullable=False, default=DELIVERY_STATE_ATTEMPTING
    )
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    last_attempt_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, index=True
    )

    @property
    def is_terminal(self) -> bool:
        """Return True once no further automatic attempts will happen."""
        return self.state in TERMINAL_DELIVERY_STATES


class RateLimitCounter(Base):
    """Fixed-window request counter, one row per subscription."""

    __tablename__ = "webhook_rate_limits"
    __table_args__ = (CheckConstraint("request_count >= 0", name="positive_count"),)

    subscription_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("webhook_subscriptions.id", ondelete="CASCADE"),
        primary_key=True,
    )
    request_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    window_start: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
