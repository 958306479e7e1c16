"""Chain event source for the token factory contract.

This module provides the ChainEventSource class that polls the network's
public query interface for new contract events. It includes:

- A shared HTTP client with a bounded request timeout
- Poll-level retries with capped exponential backoff
- Normalization of upstream records into canonical ChainEvent values
- Skipping of malformed records without aborting the batch

Committing the returned cursor is the caller's job, and must only happen
once every delivery for the batch has reached a terminal state.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

import httpx

from nova_webhooks.core.errors import ChainSourceError, MalformedEventError
from nova_webhooks.core.settings import settings
from nova_webhooks.services.events import ChainEvent, Cursor, normalize_event, parse_raw_event

# Configure logger for this module
logger = logging.getLogger(__name__)

HTTP_OK = 200
HTTP_INTERNAL_SERVER_ERROR = 500

SleepFunc = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class ChainSourceConfig:
    """Immutable configuration for chain polling."""

    rpc_url: str
    events_path: str
    page_limit: int
    timeout_seconds: float
    max_retries: int
    retry_base_delay: float
    retry_max_delay: float
    start_ledger: int | None


@dataclass(frozen=True)
class ChainEventBatch:
    """Events returned by one poll plus the cursor to commit after processing."""

    events: list[ChainEvent]
    cursor: Cursor
    skipped: int = 0
    malformed: list[str] = field(default_factory=list)


def load_chain_source_config() -> ChainSourceConfig:
    """Build configuration object from global settings."""

    return ChainSourceConfig(
        rpc_url=settings.chain_rpc_url,
        events_path=settings.chain_events_path,
        page_limit=settings.chain_page_limit,
        timeout_seconds=float(settings.chain_http_timeout_seconds),
        max_retries=max(1, settings.chain_max_poll_retries),
        retry_base_delay=float(settings.chain_retry_base_delay_seconds),
        retry_max_delay=float(settings.chain_retry_max_delay_seconds),
        start_ledger=settings.chain_start_ledger,
    )


def poll_backoff_delay(attempt: int, base: float, cap: float) -> float:
    """Return the capped exponential delay before poll retry ``attempt`` (1-based)."""
    return min(cap, base * (2 ** (attempt - 1)))


class ChainEventSource:
    """Polls contract events since a cursor and normalizes them."""

    def __init__(
        self,
        config: ChainSourceConfig | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: SleepFunc = asyncio.sleep,
    ) -> None:
        self.config = config or load_chain_source_config()
        self._transport = transport
        self._sleep = sleep
        self._client: httpx.AsyncClient | None = None
        self._client_lock = asyncio.Lock()

    async def _ensure_client(self) -> httpx.AsyncClient:
        async with self._client_lock:
            if self._client is None:
                self._client = httpx.AsyncClient(
                    base_url=self.config.rpc_url,
                    timeout=httpx.Timeout(self.config.timeout_seconds),
                    transport=self._transport,
                )
        return self._client

    def _query_params(self, since: Cursor) -> dict[str, Any]:
        params: dict[str, Any] = {"order": "asc", "limit": self.config.page_limit}
        if not since.is_genesis:
            params["cursor"] = since.paging_token
        elif self.config.start_ledger is not None:
            params["start_ledger"] = self.config.start_ledger
        return params

    async def _fetch_page(self, since: Cursor) -> list[Any]:
        client = await self._ensure_client()
        response = await client.get(self.config.events_path, params=self._query_params(since))

        if response.status_code >= HTTP_INTERNAL_SERVER_ERROR:
            raise ChainSourceError(f"Chain RPC responded with {response.status_code}")
        if response.status_code != HTTP_OK:
            # 4xx will not fix itself on retry, but it must not advance the cursor either.
            raise ChainSourceError(
                f"Unexpected chain RPC response ({response.status_code}) when polling events"
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise ChainSourceError(f"Chain RPC returned invalid JSON: {exc}") from exc

        if isinstance(payload, list):
            return payload
        if not isinstance(payload, Mapping):
            raise ChainSourceError("Chain RPC returned an unexpected payload shape")

        records = payload.get("events")
        if records is None:
            records = (payload.get("_embedded") or {}).get("records", [])
        return list(records or [])

    async def _fetch_with_retry(self, since: Cursor) -> list[Any]:
        last_error: Exception | None = None
        for attempt in range(1, self.config.max_retries + 1):
            try:
                return await self._fetch_page(since)
            except (httpx.HTTPError, ChainSourceError) as exc:
                last_error = exc
                if attempt >= self.config.max_retries:
                    break
                delay = poll_backoff_delay(
                    attempt, self.config.retry_base_delay, self.config.retry_max_delay
                )
                logger.warning(
                    "Chain poll failed (attempt %d/%d): %s; retrying in %.1fs",
                    attempt,
                    self.config.max_retries,
                    exc,
                    delay,
                )
                await self._sleep(delay)

        raise ChainSourceError(
            f"Chain poll failed after {self.config.max_retries} attempts: {last_error}"
        ) from last_error

    async def poll(self, since: Cursor) -> ChainEventBatch:
        """Return events strictly after ``since`` in ledger order.

        Network errors are retried here and never advance the cursor. A
        malformed record is logged and skipped; it still moves the returned
        cursor forward so it cannot block later events.
        """
        records = await self._fetch_with_retry(since)

        decoded: list[tuple[Cursor, ChainEvent]] = []
        malformed: list[str] = []
        skipped = 0
        newest = since

        for record in records:
            try:
                raw = parse_raw_event(record)
            except MalformedEventError as exc:
                logger.warning("Skipping malformed chain event record: %s", exc)
                malformed.append(str(exc))
                continue

            position = Cursor(raw.ledger_sequence, raw.event_index)
            if position <= since:
                continue
            newest = max(newest, position)

            try:
                event = normalize_event(raw)
            except MalformedEventError as exc:
                logger.warning(
                    "Skipping malformed event %s:%d: %s",
                    raw.transaction_hash,
                    raw.event_index,
                    exc,
                )
                malformed.append(str(exc))
                continue

            if event is None:
                skipped += 1
                continue
            decoded.append((position, event))

        decoded.sort(key=lambda item: item[0])

        events: list[ChainEvent] = []
        seen: set[tuple[str, int]] = set()
        for _, event in decoded:
            if event.identity_key in seen:
                continue
            seen.add(event.identity_key)
            events.append(event)

        if events or malformed:
            logger.debug(
                "Polled %d events (%d unrelated, %d malformed) since %s",
                len(events),
                skipped,
                len(malformed),
                since.paging_token,
            )

        return ChainEventBatch(events=events, cursor=newest, skipped=skipped, malformed=malformed)

    async def close(self) -> None:
        """Clean up underlying HTTP client resources."""

        async with self._client_lock:
            if self._client is not None:
                await self._client.aclose()
                self._client = None
