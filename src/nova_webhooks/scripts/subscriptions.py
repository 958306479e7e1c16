# src/nova_webhooks/scripts/subscriptions.py
"""Manage webhook subscriptions from the command line.

Examples::

    nova-webhooks create --url https://example.com/hook --events token.burn.self \
        --created-by GABC...
    nova-webhooks list --created-by GABC...
    nova-webhooks toggle <id> --inactive
    nova-webhooks rotate-secret <id>
    nova-webhooks delete <id> --created-by GABC...
    nova-webhooks logs <id> --limit 20
"""

from __future__ import annotations

import argparse
import json
import sys
from collections.abc import Sequence

from nova_webhooks.core.errors import LedgerUnavailableError, SubscriptionConfigError
from nova_webhooks.core.logging_config import setup_logging
from nova_webhooks.core.settings import settings
from nova_webhooks.schemas.webhook import DeliveryLogResponse, SubscriptionResponse
from nova_webhooks.services.events import WebhookEventType
from nova_webhooks.services.ledger import DeliveryLedger
from nova_webhooks.services.registry import SubscriptionRegistry


def _print_json(data: object) -> None:
    print(json.dumps(data, indent=2, default=str))


def cmd_create(args: argparse.Namespace, registry: SubscriptionRegistry, _ledger: DeliveryLedger) -> int:
    subscription = registry.create_subscription(
        url=args.url,
        events=args.events,
        created_by=args.created_by,
        token_address=args.token_address,
    )
    data = SubscriptionResponse.from_subscription(subscription).model_dump(mode="json")
    # The full secret is shown once, at creation.
    data["secret"] = subscription.secret
    _print_json(data)
    return 0


def cmd_list(args: argparse.Namespace, registry: SubscriptionRegistry, _ledger: DeliveryLedger) -> int:
    active = None if args.all else True
    rows = registry.list_subscriptions(args.created_by, active=active)
    _print_json(
        [SubscriptionResponse.from_subscription(row).model_dump(mode="json") for row in rows]
    )
    return 0


def cmd_toggle(args: argparse.Namespace, registry: SubscriptionRegistry, _ledger: DeliveryLedger) -> int:
    if not registry.set_active(args.subscription_id, not args.inactive):
        print(f"Subscription {args.subscription_id} not found", file=sys.stderr)
        return 1
    state = "inactive" if args.inactive else "active"
    print(f"Subscription {args.subscription_id} is now {state}")
    return 0


def cmd_rotate_secret(
    args: argparse.Namespace, registry: SubscriptionRegistry, _ledger: DeliveryLedger
) -> int:
    secret = registry.rotate_secret(args.subscription_id)
    if secret is None:
        print(f"Subscription {args.subscription_id} not found", file=sys.stderr)
        return 1
    _print_json({"id": args.subscription_id, "secret": secret})
    return 0


def cmd_delete(args: argparse.Namespace, registry: SubscriptionRegistry, _ledger: DeliveryLedger) -> int:
    if not registry.delete_subscription(args.subscription_id, args.created_by):
        print(
            f"Subscription {args.subscription_id} not found or not owned by {args.created_by}",
            file=sys.stderr,
        )
        return 1
    print(f"Deleted subscription {args.subscription_id}")
    return 0


def cmd_logs(args: argparse.Namespace, _registry: SubscriptionRegistry, ledger: DeliveryLedger) -> int:
    rows = ledger.get(args.subscription_id, limit=args.limit)
    _print_json(
        [DeliveryLogResponse.model_validate(row).model_dump(mode="json") for row in rows]
    )
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="nova-webhooks", description="Manage webhook subscriptions"
    )
    sub = parser.add_subparsers(dest="command", required=True)

    create = sub.add_parser("create", help="Register a new subscription")
    create.add_argument("--url", required=True)
    create.add_argument(
        "--events",
        nargs="+",
        required=True,
        choices=sorted(WebhookEventType.values()),
        help="Event types to deliver",
    )
    create.add_argument("--created-by", required=True, help="Owner account address")
    create.add_argument(
        "--token-address", default=None, help="Only deliver events for this token"
    )
    create.set_defaults(handler=cmd_create)

    lst = sub.add_parser("list", help="List an owner's subscriptions")
    lst.add_argument("--created-by", required=True)
    lst.add_argument("--all", action="store_true", help="Include inactive subscriptions")
    lst.set_defaults(handler=cmd_list)

    toggle = sub.add_parser("toggle", help="Activate or deactivate a subscription")
    toggle.add_argument("subscription_id")
    toggle.add_argument("--inactive", action="store_true")
    toggle.set_defaults(handler=cmd_toggle)

    rotate = sub.add_parser("rotate-secret", help="Issue a new signing secret")
    rotate.add_argument("subscription_id")
    rotate.set_defaults(handler=cmd_rotate_secret)

    delete = sub.add_parser("delete", help="Delete a subscription")
    delete.add_argument("subscription_id")
    delete.add_argument("--created-by", required=True)
    delete.set_defaults(handler=cmd_delete)

    logs = sub.add_parser("logs", help="Show recent deliveries")
    logs.add_argument("subscription_id")
    logs.add_argument("--limit", type=int, default=settings.delivery_log_default_limit)
    logs.set_defaults(handler=cmd_logs)

    return parser


def main(
    argv: Sequence[str] | None = None,
    *,
    registry: SubscriptionRegistry | None = None,
    ledger: DeliveryLedger | None = None,
) -> int:
    args = build_parser().parse_args(argv)
    setup_logging()
    try:
        return args.handler(args, registry or SubscriptionRegistry(), ledger or DeliveryLedger())
    except SubscriptionConfigError as exc:
        print(f"[subscriptions] invalid subscription: {exc}", file=sys.stderr)
        return 2
    except LedgerUnavailableError as exc:
        print(f"[subscriptions] ERROR: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
