# src/nova_webhooks/models/event_cursor.py
"""Chain position bookkeeping."""

from datetime import datetime

from sqlalchemy import BigInteger, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from nova_webhooks.db.session import Base
from nova_webhooks.db.time import utcnow


class EventCursor(Base):
    """Last fully processed (ledger, event index) for one event source.

    Only ever moves forward, and only after every delivery for the batch
    reached a terminal state.
    """

    __tablename__ = "event_cursors"

    source_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    ledger_sequence: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    event_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
