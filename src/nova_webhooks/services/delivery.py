"""Webhook delivery engine.

This module provides the DeliveryEngine class that drives one signed payload
per (subscription, event) pair through an explicit state machine::

    QUEUED -> [DEFERRED ->] ATTEMPTING -> SUCCEEDED
                                       -> ATTEMPT_FAILED -> ATTEMPTING ...
                                       -> EXHAUSTED

Rate-limit deferrals and retry backoff are suspension points through an
injectable ``sleep`` and are interrupted by the shutdown event, which ends
the sequence as ABORTED without marking it exhausted.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager, nullcontext
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

import httpx

from nova_webhooks.core.errors import (
    DeliveryAborted,
    ReplayRejectedError,
    SubscriptionConfigError,
)
from nova_webhooks.core.settings import settings
from nova_webhooks.db.time import utcnow
from nova_webhooks.models import DeliveryLog
from nova_webhooks.models.delivery_log import (
    DELIVERY_STATE_ATTEMPTING,
    DELIVERY_STATE_EXHAUSTED,
    DELIVERY_STATE_SUCCEEDED,
)
from nova_webhooks.services.events import ChainEvent, WebhookEventType
from nova_webhooks.services.ledger import AttemptOutcome, DeliveryLedger, is_success_status
from nova_webhooks.services.rate_limit import RateLimiter
from nova_webhooks.services.registry import (
    SubscriptionRegistry,
    SubscriptionSnapshot,
    is_valid_webhook_url,
)
from nova_webhooks.services.signing import WebhookPayload, build_payload

# Configure logger for this module
logger = logging.getLogger(__name__)

MIN_DEFERRAL_SECONDS = 0.05

SleepFunc = Callable[[float], Awaitable[None]]
Clock = Callable[[], datetime]

TEST_EVENT_DATA: dict[str, Any] = {
    "tokenAddress": "GTEST...",
    "creator": "GTEST...",
    "name": "Test Token",
    "symbol": "TEST",
    "decimals": 7,
    "initialSupply": "1000000",
    "transactionHash": "test-hash",
    "ledger": 12345,
}


class DeliveryState(str, Enum):
    """States of one (subscription, event) delivery sequence."""

    QUEUED = "queued"
    DEFERRED = "deferred"
    ATTEMPTING = "attempting"
    ATTEMPT_FAILED = "attempt_failed"
    SUCCEEDED = "succeeded"
    EXHAUSTED = "exhausted"
    ABORTED = "aborted"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATES


_TERMINAL_STATES = frozenset(
    {DeliveryState.SUCCEEDED, DeliveryState.EXHAUSTED, DeliveryState.SKIPPED}
)


@dataclass(frozen=True)
class DeliveryConfig:
    """Immutable configuration for webhook delivery."""

    timeout_seconds: float
    max_attempts: int
    retry_base_delay: float
    sequence_timeout_seconds: float
    user_agent: str
    signature_header: str


def load_delivery_config() -> DeliveryConfig:
    """Build configuration object from global settings."""

    return DeliveryConfig(
        timeout_seconds=float(settings.webhook_timeout_seconds),
        max_attempts=settings.webhook_max_attempts,
        retry_base_delay=float(settings.webhook_retry_base_delay_seconds),
        sequence_timeout_seconds=float(settings.webhook_sequence_timeout_seconds),
        user_agent=settings.webhook_user_agent,
        signature_header=settings.webhook_signature_header,
    )


def retry_delay(attempt: int, base: float) -> float:
    """Backoff after failed attempt ``attempt`` (1-based): base, 2*base, 4*base..."""
    return base * (2 ** (attempt - 1))


@dataclass(frozen=True)
class DeliveryResult:
    """Outcome of :meth:`DeliveryEngine.deliver`."""

    subscription_id: str
    identity_key: tuple[str, int]
    state: DeliveryState
    attempts: int = 0
    deferrals: int = 0
    status_code: int | None = None
    error_message: str | None = None
    log: DeliveryLog | None = None

    @property
    def success(self) -> bool:
        if self.state == DeliveryState.SUCCEEDED:
            return True
        return bool(self.state == DeliveryState.SKIPPED and self.log is not None and self.log.success)

    @property
    def terminal(self) -> bool:
        return self.state.is_terminal


class DeliveryEngine:
    """Delivers signed payloads with bounded retries and per-subscription rate limits."""

    def __init__(
        self,
        registry: SubscriptionRegistry,
        ledger: DeliveryLedger,
        rate_limiter: RateLimiter,
        config: DeliveryConfig | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Clock = utcnow,
        sleep: SleepFunc = asyncio.sleep,
        shutdown: asyncio.Event | None = None,
    ) -> None:
        self.registry = registry
        self.ledger = ledger
        self.rate_limiter = rate_limiter
        self.config = config or load_delivery_config()
        self._transport = transport
        self._clock = clock
        self._sleep = sleep
        self.shutdown = shutdown or asyncio.Event()
        self._client: httpx.AsyncClient | None = None
        self._client_lock = asyncio.Lock()
        # (subscription_id, tx_hash, event_index) -> [lock, holders]
        self._pair_locks: dict[tuple[str, str, int], list[Any]] = {}

    async def _ensure_client(self) -> httpx.AsyncClient:
        async with self._client_lock:
            if self._client is None:
                self._client = httpx.AsyncClient(
                    timeout=httpx.Timeout(self.config.timeout_seconds),
                    follow_redirects=False,
                    transport=self._transport,
                )
        return self._client

    @asynccontextmanager
    async def _pair_lock(self, key: tuple[str, str, int]) -> AsyncIterator[None]:
        entry = self._pair_locks.setdefault(key, [asyncio.Lock(), 0])
        entry[1] += 1
        try:
            async with entry[0]:
                yield
        finally:
            entry[1] -= 1
            if entry[1] == 0:
                self._pair_locks.pop(key, None)

    # --- Public API ----------------------------------------------------------------
    async def deliver(
        self,
        subscription: SubscriptionSnapshot,
        event: ChainEvent,
        *,
        replay: bool = False,
        connection_slots: asyncio.Semaphore | None = None,
    ) -> DeliveryResult:
        """Deliver ``event`` to ``subscription`` unless it already reached a terminal state.

        ``replay`` lets an explicitly requested re-delivery run over an
        exhausted row; a row that succeeded is never sent again. When
        ``connection_slots`` is given, each HTTP attempt holds one slot while
        rate-limit deferrals and retry backoff hold none.
        """
        try:
            self._check_subscription(subscription)
        except SubscriptionConfigError as exc:
            logger.warning(
                "Skipping delivery of %s to subscription %s: %s",
                event.delivery_id,
                subscription.id,
                exc,
            )
            return DeliveryResult(
                subscription_id=subscription.id,
                identity_key=event.identity_key,
                state=DeliveryState.SKIPPED,
                error_message=str(exc),
            )

        async with self._pair_lock((subscription.id, *event.identity_key)):
            # Read under the lock: a concurrent sequence for this pair may have just finished.
            if replay:
                existing = self.ledger.find(subscription.id, event.identity_key)
                if existing is not None and existing.state != DELIVERY_STATE_SUCCEEDED:
                    existing = None
            else:
                existing = self.ledger.find_terminal(subscription.id, event.identity_key)
            if existing is not None:
                logger.debug(
                    "Delivery %s for subscription %s already %s; skipping",
                    event.delivery_id,
                    subscription.id,
                    existing.state,
                )
                return DeliveryResult(
                    subscription_id=subscription.id,
                    identity_key=event.identity_key,
                    state=DeliveryState.SKIPPED,
                    attempts=existing.attempts,
                    status_code=existing.status_code,
                    error_message=existing.error_message,
                    log=existing,
                )
            return await self._run_sequence(subscription, event, connection_slots)

    async def replay(self, subscription: SubscriptionSnapshot, log_id: str) -> DeliveryResult:
        """Re-run a failed delivery from attempt 1 under its original idempotency key."""
        row = self.ledger.get_entry(log_id)
        if row is None or row.subscription_id != subscription.id:
            raise ReplayRejectedError(f"Delivery log {log_id} not found for this subscription")
        if row.state == DELIVERY_STATE_SUCCEEDED:
            raise ReplayRejectedError(f"Delivery log {log_id} was already delivered")

        data = dict((row.payload or {}).get("data") or {})
        event = ChainEvent(
            event_type=WebhookEventType(row.event),
            token_address=row.token_address or str(data.get("tokenAddress", "")),
            fields=data,
            transaction_hash=row.transaction_hash,
            ledger_sequence=int(row.ledger),
            event_index=int(row.event_index),
        )
        logger.info("Replaying delivery %s for subscription %s", event.delivery_id, subscription.id)
        return await self.deliver(subscription, event, replay=True)

    async def send_test(self, subscription: SubscriptionSnapshot) -> bool:
        """Send one sample ``token.created`` payload; no retries and no ledger row."""
        if not is_valid_webhook_url(subscription.url):
            return False
        payload = build_payload(
            WebhookEventType.TOKEN_CREATED.value,
            TEST_EVENT_DATA,
            subscription.secret,
            self._clock(),
        )
        headers = self._build_headers(payload, event_header="test", delivery_id="test")
        try:
            response = await self._post(subscription.url, payload, headers)
        except httpx.HTTPError as exc:
            logger.warning("Test webhook to %s failed: %s", subscription.url, exc)
            return False
        return is_success_status(response.status_code)

    async def close(self) -> None:
        """Clean up underlying HTTP client resources."""

        async with self._client_lock:
            if self._client is not None:
                await self._client.aclose()
                self._client = None

    # --- Sequence ------------------------------------------------------------------
    def _check_subscription(self, subscription: SubscriptionSnapshot) -> None:
        if not subscription.active:
            raise SubscriptionConfigError("subscription is inactive")
        if not is_valid_webhook_url(subscription.url):
            raise SubscriptionConfigError(f"malformed webhook URL {subscription.url!r}")

    def _build_headers(
        self, payload: WebhookPayload, *, event_header: str, delivery_id: str
    ) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            self.config.signature_header: payload.signature,
            "X-Webhook-Event": event_header,
            "X-Webhook-Delivery": delivery_id,
            "X-Webhook-Timestamp": payload.timestamp,
            "User-Agent": self.config.user_agent,
        }

    async def _wait(self, delay: float) -> None:
        """Suspend for ``delay`` seconds unless shutdown is requested first."""
        if self.shutdown.is_set():
            raise DeliveryAborted("shutdown requested")

        sleeper = asyncio.ensure_future(self._sleep(delay))
        stopper = asyncio.ensure_future(self.shutdown.wait())
        try:
            await asyncio.wait({sleeper, stopper}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (sleeper, stopper):
                if not task.done():
                    task.cancel()
        if self.shutdown.is_set():
            raise DeliveryAborted("shutdown requested")

    async def _post(
        self, url: str, payload: WebhookPayload, headers: dict[str, str]
    ) -> httpx.Response:
        """POST the exact payload bytes, following at most one redirect hop."""
        client = await self._ensure_client()
        response = await client.post(url, content=payload.body, headers=headers)
        if response.is_redirect:
            target = str(response.url.join(response.headers["location"]))
            if not is_valid_webhook_url(target):
                return response
            logger.debug("Following redirect from %s to %s", url, target)
            response = await client.post(target, content=payload.body, headers=headers)
        return response

    async def _attempt(
        self,
        url: str,
        payload: WebhookPayload,
        headers: dict[str, str],
        connection_slots: asyncio.Semaphore | None = None,
    ) -> tuple[int | None, str | None]:
        try:
            async with connection_slots or nullcontext():
                response = await self._post(url, payload, headers)
        except httpx.TimeoutException as exc:
            return None, f"Request timed out: {exc.__class__.__name__}"
        except httpx.HTTPError as exc:
            return None, str(exc) or exc.__class__.__name__

        if is_success_status(response.status_code):
            return response.status_code, None
        return response.status_code, f"Receiver responded with HTTP {response.status_code}"

    async def _acquire_slot(self, subscription_id: str) -> tuple[int, float]:
        """Wait for a rate-limit slot; returns (deferrals, seconds spent deferred)."""
        deferrals = 0
        waited = 0.0
        decision = await self.rate_limiter.acquire(subscription_id)
        while not decision.allowed:
            deferrals += 1
            wait = max(decision.retry_after, MIN_DEFERRAL_SECONDS)
            logger.info(
                "Rate limit reached for subscription %s; deferring %.2fs",
                subscription_id,
                wait,
            )
            await self._wait(wait)
            waited += wait
            decision = await self.rate_limiter.acquire(subscription_id)
        return deferrals, waited

    async def _run_sequence(
        self,
        subscription: SubscriptionSnapshot,
        event: ChainEvent,
        connection_slots: asyncio.Semaphore | None = None,
    ) -> DeliveryResult:
        payload = build_payload(
            event.event_type.value, event.fields, subscription.secret, self._clock()
        )
        snapshot = payload.snapshot()
        headers = self._build_headers(
            payload, event_header=event.event_type.value, delivery_id=event.delivery_id
        )
        deadline = self._clock() + timedelta(seconds=self.config.sequence_timeout_seconds)

        state = DeliveryState.QUEUED
        attempt = 0
        deferrals = 0
        status_code: int | None = None
        error: str | None = None

        def outcome(ledger_state: str, when: datetime) -> AttemptOutcome:
            return AttemptOutcome(
                subscription_id=subscription.id,
                event=event,
                payload=snapshot,
                attempt_number=attempt,
                state=ledger_state,
                status_code=status_code,
                error_message=error,
                attempted_at=when,
            )

        def result(final: DeliveryState, log: DeliveryLog | None = None) -> DeliveryResult:
            return DeliveryResult(
                subscription_id=subscription.id,
                identity_key=event.identity_key,
                state=final,
                attempts=attempt,
                deferrals=deferrals,
                status_code=status_code,
                error_message=error,
                log=log,
            )

        try:
            while True:
                if self.shutdown.is_set():
                    raise DeliveryAborted("shutdown requested")

                deferred, waited = await self._acquire_slot(subscription.id)
                if deferred:
                    state = DeliveryState.DEFERRED
                    deferrals += deferred
                    # Time spent waiting on the rate limit does not count against retries.
                    deadline += timedelta(seconds=waited)

                attempt += 1
                state = DeliveryState.ATTEMPTING
                logger.debug(
                    "Delivering %s to %s (attempt %d/%d)",
                    event.delivery_id,
                    subscription.url,
                    attempt,
                    self.config.max_attempts,
                )
                status_code, error = await self._attempt(
                    subscription.url, payload, headers, connection_slots
                )
                now = self._clock()

                if is_success_status(status_code):
                    state = DeliveryState.SUCCEEDED
                    log = self.ledger.record(outcome(DELIVERY_STATE_SUCCEEDED, now))
                    self.registry.touch_last_triggered(subscription.id, now)
                    logger.info(
                        "Webhook %s delivered to %s (status %s, attempt %d)",
                        event.delivery_id,
                        subscription.url,
                        status_code,
                        attempt,
                    )
                    return result(state, log)

                state = DeliveryState.ATTEMPT_FAILED
                delay = retry_delay(attempt, self.config.retry_base_delay)
                out_of_attempts = attempt >= self.config.max_attempts
                past_deadline = now + timedelta(seconds=delay) > deadline

                if out_of_attempts or past_deadline:
                    state = DeliveryState.EXHAUSTED
                    if past_deadline and not out_of_attempts:
                        error = f"{error}; retry sequence deadline exceeded"
                    log = self.ledger.record(outcome(DELIVERY_STATE_EXHAUSTED, now))
                    logger.error(
                        "Webhook %s to subscription %s failed after %d attempts: %s",
                        event.delivery_id,
                        subscription.id,
                        attempt,
                        error,
                    )
                    return result(state, log)

                self.ledger.record(outcome(DELIVERY_STATE_ATTEMPTING, now))
                logger.warning(
                    "Webhook delivery failed (attempt %d/%d) url=%s status=%s error=%s; "
                    "retrying in %.1fs",
                    attempt,
                    self.config.max_attempts,
                    subscription.url,
                    status_code,
                    error,
                    delay,
                )
                await self._wait(delay)
        except DeliveryAborted:
            logger.warning(
                "Delivery %s to subscription %s aborted by shutdown in state %s",
                event.delivery_id,
                subscription.id,
                state.value,
            )
            return result(DeliveryState.ABORTED)


class _DeliveryEngineSingleton:
    """Singleton wrapper for DeliveryEngine."""

    _instance: DeliveryEngine | None = None

    @classmethod
    def get_instance(cls) -> DeliveryEngine:
        """Get or create the singleton DeliveryEngine instance."""
        if cls._instance is None:
            cls._instance = DeliveryEngine(
                SubscriptionRegistry(),
                DeliveryLedger(),
                RateLimiter(),
            )
        return cls._instance


def get_delivery_engine() -> DeliveryEngine:
    """Return a singleton delivery engine instance."""
    return _DeliveryEngineSingleton.get_instance()
