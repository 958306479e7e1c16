"""Polling, retry and skip behaviour of the chain event source."""

import httpx
import pytest

from nova_webhooks.core.errors import ChainSourceError
from nova_webhooks.services.chain_source import (
    ChainEventSource,
    ChainSourceConfig,
    poll_backoff_delay,
)
from nova_webhooks.services.events import Cursor, WebhookEventType
from tests.factories import CREATOR, TOKEN_A, TOKEN_B, FakeClock, FakeSleep

EVENTS_PATH = "/contracts/CFACTORY/events"


def _config(**overrides) -> ChainSourceConfig:
    values = {
        "rpc_url": "https://rpc.test",
        "events_path": EVENTS_PATH,
        "page_limit": 100,
        "timeout_seconds": 5.0,
        "max_retries": 3,
        "retry_base_delay": 1.0,
        "retry_max_delay": 30.0,
        "start_ledger": None,
    }
    values.update(overrides)
    return ChainSourceConfig(**values)


def _burn(ledger: int, index: int, token: str = TOKEN_A, tx: str | None = None) -> dict:
    return {
        "topics": ["tok_burn", token],
        "data": {"from": CREATOR, "amount": "1"},
        "tx_hash": tx or f"tx-{ledger}-{index}",
        "ledger": ledger,
        "event_index": index,
    }


class RpcStub:
    def __init__(self, *responses) -> None:
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        outcome = self.responses.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@pytest.fixture
def fake_sleep() -> FakeSleep:
    return FakeSleep(FakeClock())


def _source(stub: RpcStub, sleep: FakeSleep, **overrides) -> ChainEventSource:
    return ChainEventSource(_config(**overrides), transport=httpx.MockTransport(stub), sleep=sleep)


@pytest.mark.asyncio
async def test_poll_returns_ordered_events_and_advances_cursor(fake_sleep):
    stub = RpcStub(
        httpx.Response(
            200,
            json={
                "events": [
                    _burn(12, 1, token=TOKEN_B),
                    _burn(11, 0),
                    {"topics": ["transfer", TOKEN_A], "data": {}, "tx_hash": "t", "ledger": 12, "event_index": 5},
                ]
            },
        )
    )
    source = _source(stub, fake_sleep)

    batch = await source.poll(Cursor(10, 4))

    assert [e.position for e in batch.events] == [Cursor(11, 0), Cursor(12, 1)]
    assert batch.events[0].event_type is WebhookEventType.TOKEN_BURN_SELF
    assert batch.skipped == 1
    # Unrelated topics still move the cursor forward.
    assert batch.cursor == Cursor(12, 5)

    params = stub.requests[0].url.params
    assert stub.requests[0].url.path == EVENTS_PATH
    assert params["cursor"] == "10-4"
    assert params["order"] == "asc"
    assert params["limit"] == "100"
    await source.close()


@pytest.mark.asyncio
async def test_malformed_record_is_skipped_without_blocking_batch(fake_sleep):
    stub = RpcStub(
        httpx.Response(
            200,
            json=[
                _burn(20, 0),
                {"topics": ["tok_burn"], "data": {"amount": "1"}, "tx_hash": "bad", "ledger": 20, "event_index": 1},
                "garbage",
                _burn(21, 0),
            ],
        )
    )
    source = _source(stub, fake_sleep)

    batch = await source.poll(Cursor.GENESIS)

    assert [e.transaction_hash for e in batch.events] == ["tx-20-0", "tx-21-0"]
    assert len(batch.malformed) == 2
    assert batch.cursor == Cursor(21, 0)


@pytest.mark.asyncio
async def test_contract_tuple_values_are_delivered_not_skipped(fake_sleep):
    stub = RpcStub(
        httpx.Response(
            200,
            json=[
                {
                    "topic": ["adm_burn", TOKEN_A],
                    "value": ["GADMIN", "GHOLDER", 1000],
                    "transaction_hash": "tx-admin",
                    "ledger": 30,
                    "paging_token": "30-2",
                },
            ],
        )
    )
    source = _source(stub, fake_sleep)

    batch = await source.poll(Cursor.GENESIS)

    assert batch.malformed == []
    [event] = batch.events
    assert event.event_type is WebhookEventType.TOKEN_BURN_ADMIN
    assert event.fields["burner"] == "GADMIN"
    assert batch.cursor == Cursor(30, 2)


@pytest.mark.asyncio
async def test_events_at_or_before_cursor_and_duplicates_are_dropped(fake_sleep):
    stub = RpcStub(
        httpx.Response(
            200,
            json={"_embedded": {"records": [_burn(5, 0), _burn(5, 1), _burn(6, 0, tx="tx-5-1"), _burn(6, 0)]}},
        )
    )
    source = _source(stub, fake_sleep)

    batch = await source.poll(Cursor(5, 0))

    assert [e.identity_key for e in batch.events] == [("tx-5-1", 1), ("tx-5-1", 0), ("tx-6-0", 0)]
    assert batch.cursor == Cursor(6, 0)


@pytest.mark.asyncio
async def test_transient_errors_are_retried_with_backoff(fake_sleep):
    stub = RpcStub(
        httpx.Response(503),
        httpx.ConnectError("refused"),
        httpx.Response(200, json={"events": [_burn(30, 0)]}),
    )
    source = _source(stub, fake_sleep)

    batch = await source.poll(Cursor.GENESIS)

    assert len(batch.events) == 1
    assert fake_sleep.calls == [1.0, 2.0]
    assert len(stub.requests) == 3


@pytest.mark.asyncio
async def test_poll_gives_up_after_max_retries(fake_sleep):
    stub = RpcStub(httpx.Response(500), httpx.Response(502), httpx.Response(504))
    source = _source(stub, fake_sleep)

    with pytest.raises(ChainSourceError):
        await source.poll(Cursor(1, 0))

    assert fake_sleep.calls == [1.0, 2.0]
    assert len(stub.requests) == 3


@pytest.mark.asyncio
async def test_genesis_poll_uses_start_ledger(fake_sleep):
    stub = RpcStub(httpx.Response(200, json={"events": []}))
    source = _source(stub, fake_sleep, start_ledger=1000)

    batch = await source.poll(Cursor.GENESIS)

    params = stub.requests[0].url.params
    assert params["start_ledger"] == "1000"
    assert "cursor" not in params
    assert batch.events == []
    assert batch.cursor == Cursor.GENESIS


def test_poll_backoff_delay_is_capped() -> None:
    assert [poll_backoff_delay(n, 1.0, 5.0) for n in range(1, 6)] == [1.0, 2.0, 4.0, 5.0, 5.0]
