"""Delivery ledger and chain cursor persistence.

The ledger is the durable record of every delivery sequence, keyed by
``(subscription_id, transaction_hash, event_index)``. It backs idempotency
checks and the delivery-log read API. The cursor store holds the last chain
position whose deliveries all reached a terminal state.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from nova_webhooks.core.errors import LedgerUnavailableError
from nova_webhooks.db.session import SessionLocal
from nova_webhooks.db.time import utcnow
from nova_webhooks.models import DeliveryLog, EventCursor
from nova_webhooks.models.delivery_log import (
    DELIVERY_STATE_ATTEMPTING,
    DELIVERY_STATE_SUCCEEDED,
    TERMINAL_DELIVERY_STATES,
)
from nova_webhooks.services.events import ChainEvent, Cursor

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], Session]


def is_success_status(status_code: int | None) -> bool:
    return status_code is not None and 200 <= status_code < 300


@dataclass(frozen=True)
class AttemptOutcome:
    """Result of one HTTP attempt, as written to the ledger."""

    subscription_id: str
    event: ChainEvent
    payload: dict[str, Any]
    attempt_number: int
    state: str
    status_code: int | None = None
    error_message: str | None = None
    attempted_at: datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        if self.attempt_number < 1:
            raise ValueError("attempt_number must be >= 1")
        if self.state == DELIVERY_STATE_SUCCEEDED and not is_success_status(self.status_code):
            raise ValueError("A succeeded delivery must carry a 2xx status code")

    @property
    def success(self) -> bool:
        return self.state == DELIVERY_STATE_SUCCEEDED


class DeliveryLedger:
    """Append/upsert store of delivery outcomes."""

    def __init__(self, session_factory: SessionFactory | None = None) -> None:
        self._session_factory = session_factory or SessionLocal

    def record(self, outcome: AttemptOutcome) -> DeliveryLog | None:
        """Upsert the logical row for ``outcome``.

        Never raises on storage errors: losing an audit row is less harmful
        than interrupting delivery, so failures are logged and swallowed.
        """
        transaction_hash, event_index = outcome.event.identity_key
        try:
            with self._session_factory() as db:
                row = db.scalars(
                    select(DeliveryLog).where(
                        DeliveryLog.subscription_id == outcome.subscription_id,
                        DeliveryLog.transaction_hash == transaction_hash,
                        DeliveryLog.event_index == event_index,
                    )
                ).first()
                if row is None:
                    row = DeliveryLog(
                        subscription_id=outcome.subscription_id,
                        event=outcome.event.event_type.value,
                        transaction_hash=transaction_hash,
                        event_index=event_index,
                        ledger=outcome.event.ledger_sequence,
                        token_address=outcome.event.token_address,
                        created_at=outcome.attempted_at,
                    )
                    db.add(row)

                row.payload = outcome.payload
                row.attempts = outcome.attempt_number
                row.status_code = outcome.status_code
                row.success = outcome.success
                row.state = outcome.state
                row.error_message = outcome.error_message
                row.last_attempt_at = outcome.attempted_at
                db.commit()
                return row
        except SQLAlchemyError as exc:
            logger.error(
                "Failed to record delivery log for subscription %s event %s:%d: %s",
                outcome.subscription_id,
                transaction_hash,
                event_index,
                exc,
                exc_info=True,
            )
            return None

    def find(self, subscription_id: str, identity_key: tuple[str, int]) -> DeliveryLog | None:
        """Return the row for ``(subscription, event)`` if one exists."""
        transaction_hash, event_index = identity_key
        try:
            with self._session_factory() as db:
                return db.scalars(
                    select(DeliveryLog).where(
                        DeliveryLog.subscription_id == subscription_id,
                        DeliveryLog.transaction_hash == transaction_hash,
                        DeliveryLog.event_index == event_index,
                    )
                ).first()
        except SQLAlchemyError as exc:
            raise LedgerUnavailableError(f"Delivery ledger unreadable: {exc}") from exc

    def find_terminal(
        self, subscription_id: str, identity_key: tuple[str, int]
    ) -> DeliveryLog | None:
        """Return the row only if it reached a terminal state."""
        row = self.find(subscription_id, identity_key)
        if row is not None and row.state in TERMINAL_DELIVERY_STATES:
            return row
        return None

    def get(self, subscription_id: str, limit: int = 50) -> list[DeliveryLog]:
        """Return delivery logs for a subscription, most recent first."""
        try:
            with self._session_factory() as db:
                return list(
                    db.scalars(
                        select(DeliveryLog)
                        .where(DeliveryLog.subscription_id == subscription_id)
                        .order_by(
                            DeliveryLog.last_attempt_at.desc(),
                            DeliveryLog.created_at.desc(),
                        )
                        .limit(max(1, limit))
                    )
                )
        except SQLAlchemyError as exc:
            raise LedgerUnavailableError(f"Delivery ledger unreadable: {exc}") from exc

    def get_entry(self, log_id: str) -> DeliveryLog | None:
        try:
            with self._session_factory() as db:
                return db.get(DeliveryLog, log_id)
        except SQLAlchemyError as exc:
            raise LedgerUnavailableError(f"Delivery ledger unreadable: {exc}") from exc

    def pending(self, subscription_id: str | None = None) -> list[DeliveryLog]:
        """Return rows left in ``attempting`` by a shutdown or crash."""
        try:
            with self._session_factory() as db:
                query = select(DeliveryLog).where(DeliveryLog.state == DELIVERY_STATE_ATTEMPTING)
                if subscription_id is not None:
                    query = query.where(DeliveryLog.subscription_id == subscription_id)
                return list(db.scalars(query.order_by(DeliveryLog.created_at)))
        except SQLAlchemyError as exc:
            raise LedgerUnavailableError(f"Delivery ledger unreadable: {exc}") from exc


class CursorStore:
    """Single-owner store of the last committed chain position per source."""

    def __init__(self, session_factory: SessionFactory | None = None) -> None:
        self._session_factory = session_factory or SessionLocal

    def load(self, source_id: str) -> Cursor:
        """Return the committed cursor, or genesis if none was ever committed."""
        try:
            with self._session_factory() as db:
                row = db.get(EventCursor, source_id)
                if row is None:
                    return Cursor.GENESIS
                return Cursor(int(row.ledger_sequence), int(row.event_index))
        except SQLAlchemyError as exc:
            raise LedgerUnavailableError(f"Cursor store unreadable: {exc}") from exc

    def commit(self, source_id: str, cursor: Cursor) -> Cursor:
        """Advance the cursor; a position behind the stored one is ignored."""
        try:
            with self._session_factory() as db:
                row = db.get(EventCursor, source_id)
                if row is None:
                    row = EventCursor(source_id=source_id)
                    db.add(row)
                else:
                    current = Cursor(int(row.ledger_sequence), int(row.event_index))
                    if cursor < current:
                        logger.warning(
                            "Refusing to move cursor %s backwards from %s to %s",
                            source_id,
                            current.paging_token,
                            cursor.paging_token,
                        )
                        return current
                row.ledger_sequence = cursor.ledger_sequence
                row.event_index = cursor.event_index
                row.updated_at = utcnow()
                db.commit()
        except SQLAlchemyError as exc:
            raise LedgerUnavailableError(f"Cursor store unwritable: {exc}") from exc

        logger.info("Committed cursor %s for source %s", cursor.paging_token, source_id)
        return cursor
