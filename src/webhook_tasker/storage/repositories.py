"""
Репозитории (DAO слой).

Правила:
- Никакой бизнес-логики
- Только CRUD и запросы
- Переходы состояний делаются условными UPDATE (идемпотентно при повторе)
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from typing import Any

from sqlalchemy import or_
from sqlalchemy.orm import Session

from webhook_tasker.domain.enums import ProrationStatus

from .models import ProrationEntry, SubscriptionBillingState, WebhookSubscription


# =============================================================================
# WEBHOOK SUBSCRIPTIONS
# =============================================================================
class WebhookRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, webhook_id: str) -> WebhookSubscription | None:
        return self.session.get(WebhookSubscription, webhook_id)

    def save(self, webhook: WebhookSubscription) -> None:
        self.session.add(webhook)

    def list_active_in_scope(
        self,
        *,
        user_id: int | None = None,
        event_type_id: int | None = None,
        team_id: int | None = None,
        org_id: int | None = None,
        oauth_client_id: str | None = None,
    ) -> list[WebhookSubscription]:
        """
        Активные подписки, у которых совпадает хотя бы один идентификатор скоупа.
        Фильтр по триггеру делает вызывающий (JSON-колонка).
        """
        clauses = []
        if user_id is not None:
            clauses.append(WebhookSubscription.user_id == user_id)
        if event_type_id is not None:
            clauses.append(WebhookSubscription.event_type_id == event_type_id)
        if team_id is not None:
            clauses.append(WebhookSubscription.team_id == team_id)
        if org_id is not None:
            clauses.append(WebhookSubscription.org_id == org_id)
        if oauth_client_id is not None:
            clauses.append(WebhookSubscription.platform_oauth_client_id == oauth_client_id)
        if not clauses:
            return []
        return (
            self.session.query(WebhookSubscription)
            .filter(WebhookSubscription.active.is_(True), or_(*clauses))
            .order_by(WebhookSubscription.created_at)
            .all()
        )


# =============================================================================
# SUBSCRIPTION BILLING STATE
# =============================================================================
class SubscriptionBillingStateRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, subscription_id: str) -> SubscriptionBillingState | None:
        return self.session.get(SubscriptionBillingState, subscription_id)

    def save(self, state: SubscriptionBillingState) -> None:
        self.session.add(state)

    def list_for_team(self, team_id: int) -> list[SubscriptionBillingState]:
        return (
            self.session.query(SubscriptionBillingState)
            .filter(SubscriptionBillingState.team_id == team_id)
            .all()
        )

    def add_paid_seats(self, subscription_id: str, delta: int) -> int:
        return (
            self.session.query(SubscriptionBillingState)
            .filter(SubscriptionBillingState.subscription_id == subscription_id)
            .update(
                {"paid_seats": SubscriptionBillingState.paid_seats + delta},
                synchronize_session=False,
            )
        )

    def set_paid_seats(self, subscription_id: str, paid_seats: int) -> int:
        return (
            self.session.query(SubscriptionBillingState)
            .filter(SubscriptionBillingState.subscription_id == subscription_id)
            .update({"paid_seats": paid_seats}, synchronize_session=False)
        )

    def raise_high_water_mark(
        self, subscription_id: str, *, seat_count: int, period_start: datetime
    ) -> bool:
        """
        Пик мест растёт только вверх в пределах периода; новый период
        (другой period_start) перезаписывает значение.
        """
        hwm = SubscriptionBillingState.high_water_mark
        hwm_start = SubscriptionBillingState.high_water_mark_period_start
        updated = (
            self.session.query(SubscriptionBillingState)
            .filter(
                SubscriptionBillingState.subscription_id == subscription_id,
                or_(
                    hwm.is_(None),
                    hwm_start.is_(None),
                    hwm_start != period_start,
                    hwm < seat_count,
                ),
            )
            .update(
                {"high_water_mark": seat_count, "high_water_mark_period_start": period_start},
                synchronize_session=False,
            )
        )
        return updated == 1

    def reset_high_water_mark(
        self, subscription_id: str, *, seat_count: int, period_start: datetime
    ) -> int:
        return (
            self.session.query(SubscriptionBillingState)
            .filter(SubscriptionBillingState.subscription_id == subscription_id)
            .update(
                {"high_water_mark": seat_count, "high_water_mark_period_start": period_start},
                synchronize_session=False,
            )
        )

    def move_period_window(
        self,
        subscription_id: str,
        *,
        expected_start: datetime | None,
        new_start: datetime,
        new_end: datetime | None,
    ) -> bool:
        """
        Compare-and-set окна периода: меняем, только если start не изменился
        с момента чтения.
        """
        start_col = SubscriptionBillingState.period_start
        start_clause = start_col.is_(None) if expected_start is None else start_col == expected_start
        updated = (
            self.session.query(SubscriptionBillingState)
            .filter(SubscriptionBillingState.subscription_id == subscription_id, start_clause)
            .update(
                {"period_start": new_start, "period_end": new_end},
                synchronize_session=False,
            )
        )
        return updated == 1


# =============================================================================
# PRORATION ENTRIES
# =============================================================================
class ProrationEntryRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, entry_id: str) -> ProrationEntry | None:
        return self.session.get(ProrationEntry, entry_id)

    def add(self, entry: ProrationEntry) -> None:
        self.session.add(entry)

    def list_for_subscription(
        self, subscription_id: str, *, status: ProrationStatus | None = None
    ) -> list[ProrationEntry]:
        q = self.session.query(ProrationEntry).filter(
            ProrationEntry.subscription_id == subscription_id
        )
        if status is not None:
            q = q.filter(ProrationEntry.status == status)
        return q.order_by(ProrationEntry.created_at).all()

    def transition(
        self,
        entry_id: str,
        *,
        sources: Iterable[ProrationStatus],
        target: ProrationStatus,
        values: dict[str, Any] | None = None,
    ) -> bool:
        """
        Условный переход статуса: UPDATE ... WHERE id = :id AND status IN (:sources).
        True, если переход применён этим вызовом.
        """
        updated = (
            self.session.query(ProrationEntry)
            .filter(ProrationEntry.id == entry_id, ProrationEntry.status.in_(list(sources)))
            .update({"status": target, **(values or {})}, synchronize_session=False)
        )
        return updated == 1
