"""Per-subscription fixed-window rate limiting for outbound deliveries."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from nova_webhooks.core.settings import settings
from nova_webhooks.db.session import SessionLocal
from nova_webhooks.db.time import as_utc, utcnow
from nova_webhooks.models import RateLimitCounter

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


@dataclass(frozen=True)
class RateLimitDecision:
    """Whether an attempt may go out now, and if not, how long to wait."""

    allowed: bool
    remaining: int
    retry_after: float = 0.0


class RateLimiter:
    """Fixed-window counter persisted in ``webhook_rate_limits``.

    Read-modify-write of a counter happens under one lock per subscription,
    so concurrent deliveries to the same receiver cannot lose updates while
    different subscriptions never contend.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session] | None = None,
        *,
        max_requests: int | None = None,
        window_seconds: float | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self._session_factory = session_factory or SessionLocal
        self.max_requests = max_requests or settings.webhook_rate_limit_requests
        self.window = timedelta(
            seconds=window_seconds or settings.webhook_rate_limit_window_seconds
        )
        self._clock = clock
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def acquire(self, subscription_id: str) -> RateLimitDecision:
        """Consume one request from the subscription's current window if possible."""
        async with self._locks[subscription_id]:
            return self._acquire_locked(subscription_id)

    def _acquire_locked(self, subscription_id: str) -> RateLimitDecision:
        now = self._clock()
        try:
            with self._session_factory() as db:
                counter = db.get(RateLimitCounter, subscription_id)
                if counter is None:
                    counter = RateLimitCounter(
                        subscription_id=subscription_id,
                        request_count=0,
                        window_start=now,
                    )
                    db.add(counter)

                window_start = as_utc(counter.window_start)
                if now - window_start >= self.window:
                    counter.request_count = 0
                    counter.window_start = now
                    window_start = now

                if counter.request_count >= self.max_requests:
                    retry_after = (window_start + self.window - now).total_seconds()
                    db.rollback()
                    return RateLimitDecision(
                        allowed=False,
                        remaining=0,
                        retry_after=max(retry_after, 0.0),
                    )

                counter.request_count += 1
                remaining = self.max_requests - counter.request_count
                db.commit()
        except SQLAlchemyError as exc:
            # A broken counter must not block delivery; fail open.
            logger.error(
                "Rate limit store error for subscription %s: %s",
                subscription_id,
                exc,
                exc_info=True,
            )
            return RateLimitDecision(allowed=True, remaining=0)

        return RateLimitDecision(allowed=True, remaining=remaining)
