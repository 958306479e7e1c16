"""Exception hierarchy for the webhook pipeline."""

from __future__ import annotations


class WebhookError(RuntimeError):
    """Base exception raised for webhook pipeline failures."""


class ChainSourceError(WebhookError):
    """Raised when the chain RPC cannot be polled after exhausting retries.

    Poll-level failures never advance the cursor.
    """


class MalformedEventError(WebhookError, ValueError):
    """Raised when an upstream event record cannot be normalized."""


class SubscriptionConfigError(WebhookError):
    """Raised for permanent subscription problems (bad URL, inactive, unknown events).

    These are never attempted and never consume a retry.
    """


class LedgerUnavailableError(WebhookError):
    """Raised when the delivery ledger or cursor store cannot be read or written.

    Resuming without cursor integrity risks event loss, so this escalates to
    the process instead of being contained.
    """


class DeliveryAborted(WebhookError):
    """Raised when shutdown interrupts a delivery sequence before a terminal state."""


class ReplayRejectedError(WebhookError):
    """Raised when a delivery log cannot be replayed (already delivered or foreign)."""


class RegistryUnavailableError(WebhookError):
    """Raised when active subscriptions cannot be read from the store.

    The poll cycle is retried later; the cursor is not advanced.
    """
