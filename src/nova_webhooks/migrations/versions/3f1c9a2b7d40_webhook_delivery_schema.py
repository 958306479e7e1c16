"""webhook delivery schema

Revision ID: 3f1c9a2b7d40
Revises:
Create Date: 2026-10-18 10:12:44.518301

"""
from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "3f1c9a2b7d40"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create subscription, delivery log, rate limit and cursor tables."""
    op.create_table(
        "webhook_subscriptions",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("url", sa.String(length=2048), nullable=False),
        sa.Column("token_address", sa.String(length=56), nullable=True),
        sa.Column("events", sa.JSON(), nullable=False),
        sa.Column("secret", sa.String(length=64), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False),
        sa.Column("created_by", sa.String(length=56), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_triggered", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("url LIKE 'http://%' OR url LIKE 'https://%'", name="valid_url"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_webhook_subscriptions_token_address", "webhook_subscriptions", ["token_address"]
    )
    op.create_index("ix_webhook_subscriptions_active", "webhook_subscriptions", ["active"])
    op.create_index(
        "ix_webhook_subscriptions_created_by", "webhook_subscriptions", ["created_by"]
    )

    op.create_table(
        "webhook_delivery_logs",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("subscription_id", sa.String(length=36), nullable=False),
        sa.Column("event", sa.String(length=50), nullable=False),
        sa.Column("transaction_hash", sa.String(length=128), nullable=False),
        sa.Column("event_index", sa.Integer(), nullable=False),
        sa.Column("ledger", sa.BigInteger(), nullable=False),
        sa.Column("token_address", sa.String(length=56), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("status_code", sa.Integer(), nullable=True),
        sa.Column("success", sa.Boolean(), nullable=False),
        sa.Column("state", sa.String(length=20), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False),
        sa.Column("last_attempt_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["subscription_id"], ["webhook_subscriptions.id"], ondelete="CASCADE"
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "subscription_id",
            "transaction_hash",
            "event_index",
            name="uq_delivery_logs_subscription_event",
        ),
    )
    op.create_index(
        "ix_webhook_delivery_logs_subscription_id", "webhook_delivery_logs", ["subscription_id"]
    )
    op.create_index("ix_webhook_delivery_logs_success", "webhook_delivery_logs", ["success"])
    op.create_index(
        "ix_webhook_delivery_logs_created_at", "webhook_delivery_logs", ["created_at"]
    )

    op.create_table(
        "webhook_rate_limits",
        sa.Column("subscription_id", sa.String(length=36), nullable=False),
        sa.Column("request_count", sa.Integer(), nullable=False),
        sa.Column("window_start", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("request_count >= 0", name="positive_count"),
        sa.ForeignKeyConstraint(
            ["subscription_id"], ["webhook_subscriptions.id"], ondelete="CASCADE"
        ),
        sa.PrimaryKeyConstraint("subscription_id"),
    )

    op.create_table(
        "event_cursors",
        sa.Column("source_id", sa.String(length=64), nullable=False),
        sa.Column("ledger_sequence", sa.BigInteger(), nullable=False),
        sa.Column("event_index", sa.Integer(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("source_id"),
    )


def downgrade() -> None:
    """Drop the webhook delivery tables."""
    op.drop_table("event_cursors")
    op.drop_table("webhook_rate_limits")
    op.drop_index("ix_webhook_delivery_logs_created_at", table_name="webhook_delivery_logs")
    op.drop_index("ix_webhook_delivery_logs_success", table_name="webhook_delivery_logs")
    op.drop_index(
        "ix_webhook_delivery_logs_subscription_id", table_name="webhook_delivery_logs"
    )
    op.drop_table("webhook_delivery_logs")
    op.drop_index("ix_webhook_subscriptions_created_by", table_name="webhook_subscriptions")
    op.drop_index("ix_webhook_subscriptions_active", table_name="webhook_subscriptions")
    op.drop_index(
        "ix_webhook_subscriptions_token_address", table_name="webhook_subscriptions"
    )
    op.drop_table("webhook_subscriptions")
