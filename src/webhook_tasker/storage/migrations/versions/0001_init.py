"""
Инициальная миграция.

Создаёт таблицы:
- webhooks
- subscription_billing_states
- proration_entries
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "webhooks",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("subscriber_url", sa.String(length=2048), nullable=False),
        sa.Column("secret", sa.String(length=255), nullable=True),
        sa.Column("active", sa.Boolean(), nullable=False),
        sa.Column("event_triggers", sa.JSON(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("event_type_id", sa.Integer(), nullable=True),
        sa.Column("team_id", sa.Integer(), nullable=True),
        sa.Column("org_id", sa.Integer(), nullable=True),
        sa.Column("platform_oauth_client_id", sa.String(length=128), nullable=True),
        sa.Column("version", sa.String(length=32), nullable=False),
        sa.Column("payload_template", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    for column in ("user_id", "event_type_id", "team_id", "org_id", "platform_oauth_client_id"):
        op.create_index(f"ix_webhooks_{column}", "webhooks", [column], unique=False)

    op.create_table(
        "subscription_billing_states",
        sa.Column("subscription_id", sa.String(length=128), primary_key=True),
        sa.Column("subscription_item_id", sa.String(length=128), nullable=True),
        sa.Column("team_id", sa.Integer(), nullable=True),
        sa.Column(
            "billing_mode",
            sa.Enum("flat_seats", "active_users", name="billingmode"),
            nullable=False,
        ),
        sa.Column(
            "billing_period",
            sa.Enum("monthly", "annually", name="billingperiod"),
            nullable=False,
        ),
        sa.Column("price_per_seat_cents", sa.Integer(), nullable=False),
        sa.Column("seat_count", sa.Integer(), nullable=False),
        sa.Column("paid_seats", sa.Integer(), nullable=False),
        sa.Column("period_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("period_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_subscription_billing_states_team_id",
        "subscription_billing_states",
        ["team_id"],
        unique=False,
    )

    op.create_table(
        "proration_entries",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column(
            "subscription_id",
            sa.String(length=128),
            sa.ForeignKey("subscription_billing_states.subscription_id"),
            nullable=False,
        ),
        sa.Column("seats_delta", sa.Integer(), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column(
            "status",
            sa.Enum("pending", "charged", "failed", name="prorationstatus"),
            nullable=False,
        ),
        sa.Column("invoice_id", sa.String(length=128), nullable=True),
        sa.Column("failure_reason", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("charged_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("failed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "ix_proration_entries_subscription_id",
        "proration_entries",
        ["subscription_id"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_proration_entries_subscription_id", table_name="proration_entries")
    op.drop_table("proration_entries")
    op.drop_index(
        "ix_subscription_billing_states_team_id", table_name="subscription_billing_states"
    )
    op.drop_table("subscription_billing_states")
    for column in ("user_id", "event_type_id", "team_id", "org_id", "platform_oauth_client_id"):
        op.drop_index(f"ix_webhooks_{column}", table_name="webhooks")
    op.drop_table("webhooks")
    sa.Enum(name="prorationstatus").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="billingperiod").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="billingmode").drop(op.get_bind(), checkfirst=True)
