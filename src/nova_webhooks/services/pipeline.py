"""Background poll loop that turns chain events into webhook deliveries.

This module provides the EventPipelineWorker class, which periodically
polls the chain event source, fans each event out to its matching
subscriptions and commits the chain cursor once the whole batch has reached
a terminal delivery state.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from nova_webhooks.core.errors import (
    ChainSourceError,
    LedgerUnavailableError,
    RegistryUnavailableError,
)
from nova_webhooks.core.settings import settings
from nova_webhooks.services.chain_source import ChainEventBatch, ChainEventSource
from nova_webhooks.services.delivery import (
    DeliveryEngine,
    DeliveryResult,
    DeliveryState,
    get_delivery_engine,
)
from nova_webhooks.services.events import ChainEvent, Cursor
from nova_webhooks.services.ledger import CursorStore
from nova_webhooks.services.registry import SubscriptionRegistry, SubscriptionSnapshot

# Configure logger for this module
logger = logging.getLogger(__name__)

MAX_ERROR_BACKOFF_SECONDS = 30.0


@dataclass
class PipelineState:
    """Mutable observation state for the status endpoint."""

    cursor: Cursor | None = None
    cycles: int = 0
    last_error: str | None = None
    running: bool = False


@dataclass(frozen=True)
class PollCycleResult:
    """Summary of one poll cycle."""

    since: Cursor
    batch_cursor: Cursor
    committed: bool
    events: int = 0
    results: list[DeliveryResult] = field(default_factory=list)
    failures: int = 0

    @property
    def delivered(self) -> int:
        return sum(1 for r in self.results if r.state == DeliveryState.SUCCEEDED)


class EventPipelineWorker:
    """Periodically polls chain events and delivers them to subscribers.

    Each cycle:

    - Loads the committed cursor and polls the chain source from it
    - Fans every event out to its matching subscriptions concurrently
    - Commits the new cursor only if every delivery reached a terminal state
    """

    def __init__(
        self,
        source: ChainEventSource,
        registry: SubscriptionRegistry,
        engine: DeliveryEngine,
        cursor_store: CursorStore,
        *,
        source_id: str | None = None,
        max_concurrency: int | None = None,
        poll_interval: float | None = None,
    ) -> None:
        self.source = source
        self.registry = registry
        self.engine = engine
        self.cursor_store = cursor_store
        self.source_id = source_id or settings.chain_source_id
        self.poll_interval = max(
            0.1,
            float(poll_interval if poll_interval is not None else settings.chain_poll_interval_seconds),
        )
        self._semaphore = asyncio.Semaphore(max_concurrency or settings.webhook_max_concurrency)
        self.state = PipelineState()
        self.fatal_error: BaseException | None = None
        self._task: asyncio.Task[None] | None = None

    @property
    def _stopping(self) -> asyncio.Event:
        # Shared with the engine so backoff and deferral waits abort on stop().
        return self.engine.shutdown

    async def start(self) -> None:
        """Start the background polling loop."""

        if self._task is None or self._task.done():
            self._stopping.clear()
            self.fatal_error = None
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Stop the loop, letting the current batch finish or abort cleanly."""

        if self._task is None:
            return

        self._stopping.set()
        try:
            await self._task
        except LedgerUnavailableError:
            # Already logged and stored on fatal_error by _run.
            pass
        except Exception as e:
            self.fatal_error = self.fatal_error or e
            logger.error("Event pipeline task ended with an error: %s", e, exc_info=True)
        finally:
            self._task = None
            self.state.running = False

    async def _idle(self, delay: float) -> None:
        """Sleep between cycles, waking early on stop()."""
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=delay)
        except TimeoutError:
            pass

    async def _run(self) -> None:
        self.state.running = True
        error_backoff = min(self.poll_interval * 4, MAX_ERROR_BACKOFF_SECONDS)
        try:
            while not self._stopping.is_set():
                try:
                    await self.run_once()
                except ChainSourceError as e:
                    self.state.last_error = str(e)
                    logger.warning("Event pipeline could not poll the chain: %s", e)
                    await self._idle(error_backoff)
                    continue
                except RegistryUnavailableError as e:
                    self.state.last_error = str(e)
                    logger.warning("Event pipeline could not read subscriptions: %s", e)
                    await self._idle(error_backoff)
                    continue
                except LedgerUnavailableError as e:
                    self.state.last_error = str(e)
                    self.fatal_error = e
                    logger.critical("Event pipeline stopping, ledger unavailable: %s", e)
                    raise
                except Exception as e:
                    self.state.last_error = str(e)
                    logger.error("Event pipeline cycle failed: %s", e, exc_info=True)
                    await self._idle(error_backoff)
                    continue

                await self._idle(self.poll_interval)
        finally:
            self.state.running = False

    async def run_once(self) -> PollCycleResult:
        """Run one poll → match → deliver → commit cycle."""
        since = self.cursor_store.load(self.source_id)
        self.state.cursor = since
        batch = await self.source.poll(since)
        self.state.cycles += 1

        results, failures = await self._deliver_batch(batch)

        committed = False
        if failures == 0 and all(r.terminal for r in results):
            if batch.cursor > since:
                self.cursor_store.commit(self.source_id, batch.cursor)
                self.state.cursor = batch.cursor
            committed = True
        else:
            logger.warning(
                "Not committing cursor past %s: %d deliveries not terminal, %d crashed",
                since.paging_token,
                sum(1 for r in results if not r.terminal),
                failures,
            )

        self.state.last_error = None
        return PollCycleResult(
            since=since,
            batch_cursor=batch.cursor,
            committed=committed,
            events=len(batch.events),
            results=results,
            failures=failures,
        )

    async def _deliver_one(
        self, subscription: SubscriptionSnapshot, event: ChainEvent
    ) -> DeliveryResult:
        # The semaphore bounds in-flight POSTs only; deferral and backoff waits hold no slot.
        return await self.engine.deliver(subscription, event, connection_slots=self._semaphore)

    async def _deliver_batch(
        self, batch: ChainEventBatch
    ) -> tuple[list[DeliveryResult], int]:
        coros = []
        for event in batch.events:
            subscriptions = self.registry.matching_subscriptions(event)
            logger.debug(
                "Found %d subscriptions for event %s (%s)",
                len(subscriptions),
                event.delivery_id,
                event.event_type.value,
            )
            coros.extend(self._deliver_one(sub, event) for sub in subscriptions)

        if not coros:
            return [], 0

        outcomes = await asyncio.gather(*coros, return_exceptions=True)

        results: list[DeliveryResult] = []
        failures = 0
        for outcome in outcomes:
            if isinstance(outcome, LedgerUnavailableError):
                raise outcome
            if isinstance(outcome, BaseException):
                failures += 1
                logger.error(
                    "Delivery task crashed: %s",
                    outcome,
                    exc_info=(type(outcome), outcome, outcome.__traceback__),
                )
                continue
            results.append(outcome)
        return results, failures


class _PipelineWorkerSingleton:
    """Singleton wrapper for EventPipelineWorker."""

    _instance: EventPipelineWorker | None = None

    @classmethod
    def get_instance(cls) -> EventPipelineWorker:
        """Get or create the singleton EventPipelineWorker instance."""
        if cls._instance is None:
            engine = get_delivery_engine()
            cls._instance = EventPipelineWorker(
                ChainEventSource(),
                engine.registry,
                engine,
                CursorStore(),
            )
        return cls._instance


def get_pipeline_worker() -> EventPipelineWorker:
    """Return a singleton pipeline worker instance."""
    return _PipelineWorkerSingleton.get_instance()
