"""
ORM-модели базы данных.

Назначение:
- Подписки на вебхуки (подписчики)
- Состояние биллинга подписки (режим, окно периода, места)
- Записи пророции по изменению мест
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from webhook_tasker.common.time import utc_now
from webhook_tasker.domain.enums import (
    DEFAULT_WEBHOOK_VERSION,
    BillingMode,
    BillingPeriod,
    ProrationStatus,
)


# =============================================================================
# BASE
# =============================================================================
class Base(DeclarativeBase):
    pass


# =============================================================================
# WEBHOOK SUBSCRIPTIONS
# =============================================================================
class WebhookSubscription(Base):
    """
    Зарегистрированный endpoint подписчика.
    Скоуп: user / event type / team / org / oAuth-клиент платформы.
    """

    __tablename__ = "webhooks"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    subscriber_url: Mapped[str] = mapped_column(String(2048), nullable=False)
    secret: Mapped[str | None] = mapped_column(String(255), nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    event_triggers: Mapped[list] = mapped_column(JSON, default=list, nullable=False)

    user_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    event_type_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    team_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    org_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    platform_oauth_client_id: Mapped[str | None] = mapped_column(
        String(128), nullable=True, index=True
    )

    version: Mapped[str] = mapped_column(
        String(32), default=DEFAULT_WEBHOOK_VERSION.value, nullable=False
    )
    payload_template: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )


# =============================================================================
# SUBSCRIPTION BILLING STATE
# =============================================================================
class SubscriptionBillingState(Base):
    """
    Состояние биллинга подписки провайдера.
    Меняется только стратегиями реконсиляции, ключ: id подписки.
    """

    __tablename__ = "subscription_billing_states"

    subscription_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    subscription_item_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    team_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)

    billing_mode: Mapped[BillingMode] = mapped_column(Enum(BillingMode), nullable=False)
    billing_period: Mapped[BillingPeriod] = mapped_column(
        Enum(BillingPeriod), default=BillingPeriod.monthly, nullable=False
    )
    price_per_seat_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    seat_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    paid_seats: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    period_start: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    period_end: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    trial_end: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Пик мест за текущий период (помесячные подписки)
    high_water_mark: Mapped[int | None] = mapped_column(Integer, nullable=True)
    high_water_mark_period_start: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )


# =============================================================================
# PRORATION ENTRIES
# =============================================================================
class ProrationEntry(Base):
    """
    Пророция за изменение мест посреди периода.
    id попадает в metadata строки инвойса (prorationId) и служит ключом идемпотентности.
    """

    __tablename__ = "proration_entries"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    subscription_id: Mapped[str] = mapped_column(
        ForeignKey("subscription_billing_states.subscription_id"), nullable=False, index=True
    )

    seats_delta: Mapped[int] = mapped_column(Integer, nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    status: Mapped[ProrationStatus] = mapped_column(
        Enum(ProrationStatus), default=ProrationStatus.pending, nullable=False
    )
    invoice_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )
    charged_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    failed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
