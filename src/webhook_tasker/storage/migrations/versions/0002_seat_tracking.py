"""
Трекинг мест для выбора стратегии биллинга.

subscription_billing_states:
- trial_end
- high_water_mark, high_water_mark_period_start
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "0002_seat_tracking"
down_revision = "0001_init"
branch_labels = None
depends_on = None

_TABLE = "subscription_billing_states"


def upgrade() -> None:
    op.add_column(_TABLE, sa.Column("trial_end", sa.DateTime(timezone=True), nullable=True))
    op.add_column(_TABLE, sa.Column("high_water_mark", sa.Integer(), nullable=True))
    op.add_column(
        _TABLE,
        sa.Column("high_water_mark_period_start", sa.DateTime(timezone=True), nullable=True),
    )


def downgrade() -> None:
    op.drop_column(_TABLE, "high_water_mark_period_start")
    op.drop_column(_TABLE, "high_water_mark")
    op.drop_column(_TABLE, "trial_end")
