"""Operator CLI over the subscription registry."""

import json

import pytest

from nova_webhooks.models.delivery_log import DELIVERY_STATE_EXHAUSTED
from nova_webhooks.scripts.subscriptions import build_parser, main
from nova_webhooks.services.ledger import AttemptOutcome
from tests.factories import CREATOR, make_event


@pytest.fixture(autouse=True)
def _quiet_logging(mocker):
    mocker.patch("nova_webhooks.scripts.subscriptions.setup_logging")


def _run(argv, registry, ledger, capsys):
    code = main(argv, registry=registry, ledger=ledger)
    out = capsys.readouterr()
    return code, out.out, out.err


def test_create_prints_full_secret_once(registry, ledger, capsys):
    code, out, _ = _run(
        [
            "create",
            "--url",
            "https://example.com/hook",
            "--events",
            "token.created",
            "token.burn.admin",
            "--created-by",
            CREATOR,
        ],
        registry,
        ledger,
        capsys,
    )

    assert code == 0
    created = json.loads(out)
    assert len(created["secret"]) == 64
    stored = registry.get_subscription(created["id"])
    assert stored.secret == created["secret"]
    assert stored.events == ["token.created", "token.burn.admin"]

    code, out, _ = _run(["list", "--created-by", CREATOR], registry, ledger, capsys)
    listed = json.loads(out)
    assert code == 0
    assert listed[0]["secret"] == f"{created['secret'][:8]}..."


def test_create_rejects_bad_url(registry, ledger, capsys):
    code, _, err = _run(
        ["create", "--url", "ftp://x", "--events", "token.created", "--created-by", CREATOR],
        registry,
        ledger,
        capsys,
    )
    assert code == 2
    assert "invalid subscription" in err


def test_unknown_event_type_is_rejected_by_parser():
    with pytest.raises(SystemExit):
        build_parser().parse_args(
            ["create", "--url", "https://x.test", "--events", "token.minted", "--created-by", "G"]
        )


def test_toggle_rotate_and_delete(registry, ledger, capsys, make_subscription):
    sub = make_subscription()

    code, _, _ = _run(["toggle", sub.id, "--inactive"], registry, ledger, capsys)
    assert code == 0
    assert registry.get_subscription(sub.id).active is False

    code, out, _ = _run(["rotate-secret", sub.id], registry, ledger, capsys)
    assert code == 0
    assert json.loads(out)["secret"] != sub.secret

    code, _, _ = _run(["delete", sub.id, "--created-by", "GNOTOWNER"], registry, ledger, capsys)
    assert code == 1
    code, _, _ = _run(["delete", sub.id, "--created-by", CREATOR], registry, ledger, capsys)
    assert code == 0
    assert registry.get_subscription(sub.id) is None


def test_missing_subscription_exit_codes(registry, ledger, capsys):
    assert _run(["toggle", "missing"], registry, ledger, capsys)[0] == 1
    assert _run(["rotate-secret", "missing"], registry, ledger, capsys)[0] == 1


def test_logs_lists_deliveries(registry, ledger, capsys, make_subscription):
    sub = make_subscription()
    event = make_event()
    ledger.record(
        AttemptOutcome(
            subscription_id=sub.id,
            event=event,
            payload={"event": event.event_type.value, "data": dict(event.fields)},
            attempt_number=3,
            state=DELIVERY_STATE_EXHAUSTED,
            status_code=500,
            error_message="Receiver responded with HTTP 500",
        )
    )

    code, out, _ = _run(["logs", sub.id, "--limit", "5"], registry, ledger, capsys)

    assert code == 0
    logs = json.loads(out)
    assert logs[0]["attempts"] == 3
    assert logs[0]["success"] is False
    assert logs[0]["transaction_hash"] == event.transaction_hash
