# tests/test_signature.py
"""HMAC signing of webhook payloads."""

import hashlib
import hmac
import json
from datetime import UTC, datetime

from nova_webhooks.services.signing import (
    build_payload,
    canonical_body,
    format_timestamp,
    generate_secret,
    sign_payload,
    verify_signature,
)

SECRET = "a" * 64
MOMENT = datetime(2026, 3, 1, 9, 30, 15, 123456, tzinfo=UTC)


def test_verify_signature_rejects_bad_inputs() -> None:
    """Ensure verify_signature returns False for malformed signatures."""
    assert verify_signature(SECRET, b"msg", "zz") is False
    assert verify_signature(SECRET, b"msg", "") is False
    assert verify_signature(SECRET, b"msg", "é" * 64) is False


def test_signature_is_hmac_sha256_of_transmitted_bytes() -> None:
    payload = build_payload("token.burn.self", {"amount": "10"}, SECRET, MOMENT)

    expected = hmac.new(SECRET.encode(), payload.body, hashlib.sha256).hexdigest()
    assert payload.signature == expected
    assert verify_signature(SECRET, payload.body, payload.signature)


def test_signature_accepts_uppercase_hex() -> None:
    payload = build_payload("token.created", {"name": "X"}, SECRET, MOMENT)
    assert verify_signature(SECRET, payload.body, payload.signature.upper())


def test_tampered_body_fails_verification() -> None:
    payload = build_payload("token.burn.self", {"amount": "10"}, SECRET, MOMENT)
    tampered = payload.body.replace(b'"10"', b'"99"')

    assert tampered != payload.body
    assert verify_signature(SECRET, tampered, payload.signature) is False


def test_wrong_secret_fails_verification() -> None:
    payload = build_payload("token.burn.self", {"amount": "10"}, SECRET, MOMENT)
    assert verify_signature("b" * 64, payload.body, payload.signature) is False


def test_canonical_body_is_key_order_independent() -> None:
    first = canonical_body("token.created", "2026-03-01T09:30:15Z", {"b": 1, "a": 2})
    second = canonical_body("token.created", "2026-03-01T09:30:15Z", {"a": 2, "b": 1})

    assert first == second
    assert first == (
        b'{"data":{"a":2,"b":1},"event":"token.created","timestamp":"2026-03-01T09:30:15Z"}'
    )
    assert sign_payload(SECRET, first) == sign_payload(SECRET, second)


def test_timestamp_has_second_precision_and_z_suffix() -> None:
    assert format_timestamp(MOMENT) == "2026-03-01T09:30:15Z"


def test_snapshot_carries_signature_and_body_fields() -> None:
    payload = build_payload("token.burn.admin", {"amount": "5"}, SECRET, MOMENT)
    snapshot = payload.snapshot()

    assert snapshot == {
        "event": "token.burn.admin",
        "timestamp": "2026-03-01T09:30:15Z",
        "data": {"amount": "5"},
        "signature": payload.signature,
    }
    assert json.loads(payload.body)["data"] == snapshot["data"]


def test_generated_secrets_are_unique_hex() -> None:
    secrets = {generate_secret() for _ in range(20)}
    assert len(secrets) == 20
    for secret in secrets:
        assert len(secret) == 64
        int(secret, 16)
