"""Canonical chain event types and upstream record normalization.

Upstream RPCs describe contract events as a list of topic symbols plus an
opaque value. Each supported topic symbol maps to one normalizer that turns
the raw record into a :class:`ChainEvent` for the fixed webhook taxonomy.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, ClassVar

from nova_webhooks.core.errors import MalformedEventError
from nova_webhooks.db.time import utcnow

DEFAULT_TOKEN_DECIMALS = 7


class WebhookEventType(str, Enum):
    """Fixed event taxonomy emitted by the token factory contract."""

    TOKEN_BURN_SELF = "token.burn.self"
    TOKEN_BURN_ADMIN = "token.burn.admin"
    TOKEN_CREATED = "token.created"
    TOKEN_METADATA_UPDATED = "token.metadata.updated"

    @classmethod
    def values(cls) -> frozenset[str]:
        return frozenset(member.value for member in cls)


@dataclass(frozen=True, order=True)
class Cursor:
    """Position in the chain event stream: ``(ledger_sequence, event_index)``."""

    GENESIS: ClassVar[Cursor]

    ledger_sequence: int = 0
    event_index: int = 0

    @property
    def is_genesis(self) -> bool:
        return self.ledger_sequence == 0 and self.event_index == 0

    @property
    def paging_token(self) -> str:
        return f"{self.ledger_sequence}-{self.event_index}"

    @classmethod
    def from_paging_token(cls, token: str) -> Cursor:
        """Parse ``"<ledger>-<index>"``; a bare integer is treated as a ledger."""
        ledger, _, index = token.strip().partition("-")
        try:
            return cls(int(ledger), int(index or 0))
        except ValueError as exc:
            raise ValueError(f"Invalid paging token: {token!r}") from exc


Cursor.GENESIS = Cursor(0, 0)


@dataclass(frozen=True)
class ChainEvent:
    """One on-chain event occurrence in canonical form."""

    event_type: WebhookEventType
    token_address: str
    fields: Mapping[str, Any]
    transaction_hash: str
    ledger_sequence: int
    event_index: int
    observed_at: datetime = field(default_factory=utcnow)

    @property
    def identity_key(self) -> tuple[str, int]:
        """Idempotency key used by every downstream component."""
        return (self.transaction_hash, self.event_index)

    @property
    def delivery_id(self) -> str:
        return f"{self.transaction_hash}:{self.event_index}"

    @property
    def position(self) -> Cursor:
        return Cursor(self.ledger_sequence, self.event_index)


@dataclass(frozen=True)
class RawContractEvent:
    """Upstream record fields after alias resolution, before topic dispatch."""

    topics: list[str]
    value: Mapping[str, Any] | tuple[Any, ...]
    transaction_hash: str
    ledger_sequence: int
    event_index: int
    contract_address: str | None = None


def _first_present(record: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in record and record[key] is not None:
            return record[key]
    return None


def _parse_event_index(record: Mapping[str, Any]) -> int | None:
    index = _first_present(record, "event_index", "eventIndex")
    if index is not None:
        return int(index)
    # Horizon-style paging tokens carry "<ledger>-<index>".
    paging_token = record.get("paging_token")
    if isinstance(paging_token, str) and "-" in paging_token:
        return Cursor.from_paging_token(paging_token).event_index
    return None


def parse_raw_event(record: Mapping[str, Any]) -> RawContractEvent:
    """Resolve field aliases of one upstream record.

    Accepts both ``{contract_address, topics, data, tx_hash, ledger, event_index}``
    and Horizon's ``{contract_id, topic, value, transaction_hash, ledger, paging_token}``.
    The value is either an object or the contract's positional tuple.
    """
    if not isinstance(record, Mapping):
        raise MalformedEventError(f"Event record must be an object, got {type(record).__name__}")

    value = _first_present(record, "data", "value")
    if value is None:
        value = {}
    elif isinstance(value, (list, tuple)):
        value = tuple(value)
    elif not isinstance(value, Mapping):
        raise MalformedEventError(
            f"Event value must be an object or a list, got {type(value).__name__}"
        )

    try:
        topics_raw = _first_present(record, "topics", "topic") or []
        if isinstance(topics_raw, str):
            topics_raw = [topics_raw]
        topics = [str(topic) for topic in topics_raw]

        tx_hash = _first_present(record, "tx_hash", "transaction_hash", "txHash")
        ledger = _first_present(record, "ledger", "ledger_sequence")
        event_index = _parse_event_index(record)
    except (TypeError, ValueError) as exc:
        raise MalformedEventError(f"Unparseable event record: {exc}") from exc

    if not tx_hash or ledger is None or event_index is None:
        raise MalformedEventError("Event record is missing tx_hash, ledger or event_index")

    try:
        ledger_sequence = int(ledger)
    except (TypeError, ValueError) as exc:
        raise MalformedEventError(f"Invalid ledger value: {ledger!r}") from exc

    return RawContractEvent(
        topics=topics,
        value=value,
        transaction_hash=str(tx_hash),
        ledger_sequence=ledger_sequence,
        event_index=event_index,
        contract_address=_first_present(record, "contract_address", "contract_id"),
    )


def _token_address(raw: RawContractEvent) -> str:
    address = raw.value.get("token_address")
    if not address:
        # Indexed events carry the token as the topic right after the event symbol.
        for position, topic in enumerate(raw.topics[:-1]):
            if topic in TOPIC_NORMALIZERS:
                address = raw.topics[position + 1]
                break
    if not address:
        raise MalformedEventError(
            f"Event {raw.transaction_hash}:{raw.event_index} has no token address"
        )
    return str(address)


def _base_fields(raw: RawContractEvent, token_address: str) -> dict[str, Any]:
    return {
        "tokenAddress": token_address,
        "transactionHash": raw.transaction_hash,
        "ledger": raw.ledger_sequence,
    }


def _amount(value: Any) -> str:
    return str(value) if value is not None else "0"


def _build(raw: RawContractEvent, event_type: WebhookEventType, extra: dict[str, Any]) -> ChainEvent:
    token_address = _token_address(raw)
    fields = _base_fields(raw, token_address)
    fields.update(extra)
    return ChainEvent(
        event_type=event_type,
        token_address=token_address,
        fields=fields,
        transaction_hash=raw.transaction_hash,
        ledger_sequence=raw.ledger_sequence,
        event_index=raw.event_index,
    )


def _burn_fields(value: Mapping[str, Any]) -> dict[str, Any]:
    sender = value.get("from") or ""
    return {
        "from": sender,
        "amount": _amount(value.get("amount")),
        "burner": value.get("burner") or value.get("admin") or sender,
    }


def normalize_burn(raw: RawContractEvent) -> ChainEvent:
    """Generic ``burn`` topic: admin burn when the value names an admin."""
    event_type = (
        WebhookEventType.TOKEN_BURN_ADMIN
        if raw.value.get("admin")
        else WebhookEventType.TOKEN_BURN_SELF
    )
    return _build(raw, event_type, _burn_fields(raw.value))


def normalize_self_burn(raw: RawContractEvent) -> ChainEvent:
    return _build(raw, WebhookEventType.TOKEN_BURN_SELF, _burn_fields(raw.value))


def normalize_admin_burn(raw: RawContractEvent) -> ChainEvent:
    return _build(raw, WebhookEventType.TOKEN_BURN_ADMIN, _burn_fields(raw.value))


def normalize_token_created(raw: RawContractEvent) -> ChainEvent:
    value = raw.value
    try:
        decimals = int(value.get("decimals") or DEFAULT_TOKEN_DECIMALS)
    except (TypeError, ValueError) as exc:
        raise MalformedEventError(f"Invalid decimals: {value.get('decimals')!r}") from exc
    return _build(
        raw,
        WebhookEventType.TOKEN_CREATED,
        {
            "creator": value.get("creator") or "",
            "name": value.get("name") or "",
            "symbol": value.get("symbol") or "",
            "decimals": decimals,
            "initialSupply": _amount(value.get("initial_supply")),
        },
    )


def normalize_metadata_updated(raw: RawContractEvent) -> ChainEvent:
    value = raw.value
    return _build(
        raw,
        WebhookEventType.TOKEN_METADATA_UPDATED,
        {
            "metadataUri": value.get("metadata_uri") or "",
            "updatedBy": value.get("updated_by") or "",
        },
    )


Normalizer = Callable[[RawContractEvent], ChainEvent]


# Topic symbol -> normalizer. Covers both the descriptive names used by the
# indexer and the short symbols published by the factory contract.
TOPIC_NORMALIZERS: dict[str, Normalizer] = {
    "burn": normalize_burn,
    "tok_burn": normalize_self_burn,
    "tkn_burn": normalize_self_burn,
    "adm_burn": normalize_admin_burn,
    "admin_burn": normalize_admin_burn,
    "token_created": normalize_token_created,
    "tok_reg": normalize_token_created,
    "metadata_updated": normalize_metadata_updated,
    "meta_upd": normalize_metadata_updated,
}


# Field names of the contract's positional event values, in publish order.
POSITIONAL_FIELDS: dict[str, tuple[str, ...]] = {
    "burn": ("from", "amount", "new_supply"),
    "tok_burn": ("amount",),
    "tkn_burn": ("amount",),
    "adm_burn": ("admin", "from", "amount"),
    "admin_burn": ("admin", "from", "amount", "new_supply"),
    "tok_reg": ("creator",),
}


def resolve_topic(topics: list[str]) -> str | None:
    """Return the first known topic symbol, if any."""
    for topic in topics:
        if topic in TOPIC_NORMALIZERS:
            return topic
    return None


def _keyed_value(symbol: str, raw: RawContractEvent) -> dict[str, Any]:
    names = POSITIONAL_FIELDS.get(symbol)
    if names is None:
        raise MalformedEventError(f"Topic {symbol!r} has no positional value layout")
    if len(raw.value) < len(names):
        raise MalformedEventError(
            f"Topic {symbol!r} expects {len(names)} values, got {len(raw.value)}"
        )
    return dict(zip(names, raw.value))


def normalize_event(raw: RawContractEvent) -> ChainEvent | None:
    """Map a raw record to a canonical event, or ``None`` for unrelated topics."""
    symbol = resolve_topic(raw.topics)
    if symbol is None:
        return None
    if isinstance(raw.value, tuple):
        raw = replace(raw, value=_keyed_value(symbol, raw))
    return TOPIC_NORMALIZERS[symbol](raw)
