"""HMAC-SHA256 signing of webhook payloads."""
from __future__ import annotations

import hashlib
import hmac
import json
import secrets
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any

SECRET_BYTES = 32


def generate_secret(length: int = SECRET_BYTES) -> str:
    """Return a random hex secret for a new subscription."""
    return secrets.token_hex(length)


def format_timestamp(moment: datetime) -> str:
    """Render an aware datetime as ``YYYY-MM-DDTHH:MM:SSZ``."""
    return moment.strftime("%Y-%m-%dT%H:%M:%SZ")


def canonical_body(event: str, timestamp: str, data: Mapping[str, Any]) -> bytes:
    """Serialize the signed part of a payload with a stable key order."""
    document = {"event": event, "timestamp": timestamp, "data": dict(data)}
    return json.dumps(
        document,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=str,
    ).encode("utf-8")


def sign_payload(secret: str, body: bytes) -> str:
    """Return the hex HMAC-SHA256 of ``body`` under ``secret``."""
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_signature(secret: str, body: bytes, signature: str) -> bool:
    """Check a received signature against the exact received bytes.

    Args:
        secret: Shared subscription secret.
        body: Raw request body exactly as transmitted.
        signature: Hex digest taken from the signature header.

    Returns:
        True if the signature matches; False otherwise.
    """
    expected = sign_payload(secret, body)
    try:
        received = signature.strip().lower().encode("ascii")
    except UnicodeEncodeError:
        return False
    return hmac.compare_digest(expected.encode("ascii"), received)


@dataclass(frozen=True)
class WebhookPayload:
    """A signed payload; ``body`` holds the exact bytes sent to the receiver."""

    event: str
    timestamp: str
    data: Mapping[str, Any]
    signature: str
    body: bytes

    def snapshot(self) -> dict[str, Any]:
        """Return the JSON-safe form stored alongside the delivery log."""
        return {
            "event": self.event,
            "timestamp": self.timestamp,
            "data": json.loads(self.body)["data"],
            "signature": self.signature,
        }


def build_payload(
    event: str,
    data: Mapping[str, Any],
    secret: str,
    moment: datetime,
) -> WebhookPayload:
    """Create the canonical body and sign it."""
    timestamp = format_timestamp(moment)
    body = canonical_body(event, timestamp, data)
    return WebhookPayload(
        event=event,
        timestamp=timestamp,
        data=dict(data),
        signature=sign_payload(secret, body),
        body=body,
    )
