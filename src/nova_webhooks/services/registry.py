"""Subscription registry: matching events to active webhook subscriptions."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime
from urllib.parse import urlsplit

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from nova_webhooks.core.errors import RegistryUnavailableError, SubscriptionConfigError
from nova_webhooks.core.settings import settings
from nova_webhooks.db.session import SessionLocal
from nova_webhooks.db.time import utcnow
from nova_webhooks.models import WebhookSubscription
from nova_webhooks.services.events import ChainEvent, WebhookEventType
from nova_webhooks.services.signing import generate_secret

logger = logging.getLogger(__name__)

MASKED_SECRET_PREFIX = 8
ALLOWED_URL_SCHEMES = frozenset({"http", "https"})


def is_valid_webhook_url(url: str) -> bool:
    """Return True for absolute ``http(s)://`` URLs with a host."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return False
    return parts.scheme in ALLOWED_URL_SCHEMES and bool(parts.netloc)


def mask_secret(secret: str) -> str:
    """Expose only a short prefix of a subscription secret."""
    return f"{secret[:MASKED_SECRET_PREFIX]}..."


@dataclass(frozen=True)
class SubscriptionSnapshot:
    """Detached, immutable view of a subscription used by the delivery engine."""

    id: str
    url: str
    token_address: str | None
    events: frozenset[str]
    secret: str
    active: bool
    created_by: str

    @classmethod
    def from_model(cls, row: WebhookSubscription) -> SubscriptionSnapshot:
        return cls(
            id=row.id,
            url=row.url,
            token_address=row.token_address,
            events=frozenset(row.events or ()),
            secret=row.secret,
            active=bool(row.active),
            created_by=row.created_by,
        )

    def matches(self, event: ChainEvent) -> bool:
        if not self.active:
            return False
        if event.event_type.value not in self.events:
            return False
        return self.token_address is None or self.token_address == event.token_address


def _validate_events(events: Iterable[str]) -> list[str]:
    requested = list(dict.fromkeys(str(getattr(e, "value", e)) for e in events))
    if not requested:
        raise SubscriptionConfigError("At least one event type is required")
    unknown = [e for e in requested if e not in WebhookEventType.values()]
    if unknown:
        raise SubscriptionConfigError(f"Unknown event types: {', '.join(unknown)}")
    return requested


class SubscriptionRegistry:
    """Reads and mutates subscriptions; answers "who wants event E?"."""

    def __init__(
        self,
        session_factory: Callable[[], Session] | None = None,
        *,
        cache_ttl_seconds: float | None = None,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._session_factory = session_factory or SessionLocal
        self._cache_ttl = (
            settings.registry_cache_ttl_seconds if cache_ttl_seconds is None else cache_ttl_seconds
        )
        self._monotonic = monotonic
        self._cache: list[SubscriptionSnapshot] | None = None
        self._cache_loaded_at = 0.0

    # --- Matching ------------------------------------------------------------------
    def invalidate(self) -> None:
        self._cache = None

    def _active_subscriptions(self) -> list[SubscriptionSnapshot]:
        if (
            self._cache is not None
            and self._cache_ttl > 0
            and self._monotonic() - self._cache_loaded_at < self._cache_ttl
        ):
            return self._cache

        try:
            with self._session_factory() as db:
                rows = db.scalars(
                    select(WebhookSubscription).where(WebhookSubscription.active.is_(True))
                ).all()
                snapshots = [SubscriptionSnapshot.from_model(row) for row in rows]
        except SQLAlchemyError as exc:
            raise RegistryUnavailableError(f"Subscription store unreadable: {exc}") from exc

        self._cache = snapshots
        self._cache_loaded_at = self._monotonic()
        return snapshots

    def matching_subscriptions(self, event: ChainEvent) -> list[SubscriptionSnapshot]:
        """Return active subscriptions for the event type and token, in no set order."""
        return [sub for sub in self._active_subscriptions() if sub.matches(event)]

    def touch_last_triggered(self, subscription_id: str, when: datetime | None = None) -> None:
        """Record a successful delivery time; best-effort only."""
        try:
            with self._session_factory() as db:
                row = db.get(WebhookSubscription, subscription_id)
                if row is None:
                    return
                row.last_triggered = when or utcnow()
                db.commit()
        except SQLAlchemyError as exc:
            logger.warning(
                "Could not update last_triggered for subscription %s: %s", subscription_id, exc
            )

    # --- Lifecycle -----------------------------------------------------------------
    def create_subscription(
        self,
        url: str,
        events: Iterable[str],
        created_by: str,
        token_address: str | None = None,
    ) -> WebhookSubscription:
        """Register a new subscription with a freshly generated secret."""
        if not is_valid_webhook_url(url):
            raise SubscriptionConfigError(f"Webhook URL must be http(s): {url!r}")
        event_list = _validate_events(events)
        if not created_by:
            raise SubscriptionConfigError("created_by is required")

        with self._session_factory() as db:
            row = WebhookSubscription(
                url=url,
                token_address=token_address or None,
                events=event_list,
                secret=generate_secret(),
                active=True,
                created_by=created_by,
            )
            db.add(row)
            db.commit()
            db.refresh(row)

        self.invalidate()
        logger.info("Created webhook subscription %s for %s", row.id, created_by)
        return row

    def get_subscription(self, subscription_id: str) -> WebhookSubscription | None:
        with self._session_factory() as db:
            return db.get(WebhookSubscription, subscription_id)

    def list_subscriptions(
        self, created_by: str, active: bool | None = None
    ) -> list[WebhookSubscription]:
        """Return a creator's subscriptions, newest first."""
        with self._session_factory() as db:
            query = select(WebhookSubscription).where(WebhookSubscription.created_by == created_by)
            if active is not None:
                query = query.where(WebhookSubscription.active.is_(active))
            return list(db.scalars(query.order_by(WebhookSubscription.created_at.desc())))

    def set_active(self, subscription_id: str, active: bool) -> bool:
        with self._session_factory() as db:
            row = db.get(WebhookSubscription, subscription_id)
            if row is None:
                return False
            row.active = active
            db.commit()
        self.invalidate()
        return True

    def rotate_secret(self, subscription_id: str) -> str | None:
        """Replace the signing secret and return the new one (shown exactly once)."""
        with self._session_factory() as db:
            row = db.get(WebhookSubscription, subscription_id)
            if row is None:
                return None
            row.secret = generate_secret()
            db.commit()
            secret = row.secret
        self.invalidate()
        return secret

    def delete_subscription(self, subscription_id: str, created_by: str) -> bool:
        """Hard-delete a subscription; only its creator may do so."""
        with self._session_factory() as db:
            row = db.get(WebhookSubscription, subscription_id)
            if row is None or row.created_by != created_by:
                return False
            db.delete(row)
            db.commit()
        self.invalidate()
        return True
