# src/nova_webhooks/models/subscription.py
"""SQLAlchemy model for webhook subscriptions."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import JSON, Boolean, CheckConstraint, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from nova_webhooks.db.session import Base
from nova_webhooks.db.time import utcnow


def _new_id() -> str:
    return str(uuid.uuid4())


class WebhookSubscription(Base):
    """A receiver URL registered for a subset of token events.

    The secret is the HMAC key shared with the receiver; read APIs only ever
    expose a masked prefix of it.
    """

    __tablename__ = "webhook_subscriptions"
    __table_args__ = (
        CheckConstraint(
            "url LIKE 'http://%' OR url LIKE 'https://%'",
            name="valid_url",
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    url: Mapped[str] = mapped_column(String(2048), nullable=False)
    # Null means "all tokens".
    token_address: Mapped[str | None] = mapped_column(String(56), nullable=True, index=True)
    events: Mapped[list[str]] = mapped_column(JSON, nullable=False)
    secret: Mapped[str] = mapped_column(String(64), nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)
    created_by: Mapped[str] = mapped_column(String(56), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    last_triggered: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
