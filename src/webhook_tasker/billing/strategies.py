"""
Стратегии биллинга мест.

Назначение:
- единый интерфейс колбэков биллинга (смена мест, оплата/неоплата инвойса,
  продление, предстоящий инвойс)
- FlatSeatBillingStrategy: фиксированные места + пророции (годовые подписки)
- HighWaterMarkStrategy: пик мест за период (помесячные подписки)
- ActiveUserBillingStrategy: количество = активные пользователи за период
- ImmediateUpdateStrategy: запасная, количество мест сразу уходит в провайдер

Все колбэки возвращают StrategyResult(handled=...). База: no-op с handled=False.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from webhook_tasker.common.logging import get_billing_logger
from webhook_tasker.common.time import as_utc, from_unix
from webhook_tasker.contracts.billing_events import InvoiceLineItem, InvoiceLines
from webhook_tasker.domain.enums import PaymentOutcome, SeatChangeType
from webhook_tasker.storage.db import SessionScope, db_session
from webhook_tasker.storage.repositories import SubscriptionBillingStateRepository

from .high_water_mark import HighWaterMarkService
from .proration import BillingPeriodService, ProrationService, SeatChangeContext
from .provider import BillingProvider

log = get_billing_logger()


@dataclass(frozen=True)
class StrategyResult:
    handled: bool


NOT_HANDLED = StrategyResult(handled=False)


class ActiveUserCounter(Protocol):
    def count_active_users(self, team_id: int | None, period_start: datetime, period_end: datetime) -> int: ...


class BaseSeatBillingStrategy:
    name = "base"

    def on_seat_change(self, ctx: SeatChangeContext) -> StrategyResult:
        return NOT_HANDLED

    def on_payment_succeeded(self, lines: InvoiceLines) -> StrategyResult:
        return NOT_HANDLED

    def on_payment_failed(self, lines: InvoiceLines, reason: str) -> StrategyResult:
        return NOT_HANDLED

    def on_renewal_paid(self, subscription_id: str, period_start: datetime) -> StrategyResult:
        return NOT_HANDLED

    def on_invoice_upcoming(self, subscription_id: str) -> StrategyResult:
        return NOT_HANDLED


def find_proration_line(lines: InvoiceLines) -> InvoiceLineItem | None:
    for line in lines.data:
        if line.is_proration:
            return line
    return None


class FlatSeatBillingStrategy(BaseSeatBillingStrategy):
    name = "flat_seats"

    def __init__(self, *, proration: ProrationService, periods: BillingPeriodService) -> None:
        self.proration = proration
        self.periods = periods

    def on_seat_change(self, ctx: SeatChangeContext) -> StrategyResult:
        return StrategyResult(handled=self.proration.record_seat_change(ctx) is not None)

    def on_payment_succeeded(self, lines: InvoiceLines) -> StrategyResult:
        return self._apply(lines, PaymentOutcome.succeeded)

    def on_payment_failed(self, lines: InvoiceLines, reason: str) -> StrategyResult:
        return self._apply(lines, PaymentOutcome.failed, reason=reason)

    def on_renewal_paid(self, subscription_id: str, period_start: datetime) -> StrategyResult:
        return StrategyResult(handled=self.periods.advance_period(subscription_id, period_start))

    def _apply(
        self, lines: InvoiceLines, outcome: PaymentOutcome, *, reason: str | None = None
    ) -> StrategyResult:
        line = find_proration_line(lines)
        if line is None:
            return NOT_HANDLED
        proration_id = line.proration_id
        if not proration_id:
            log.warning(
                "proration_line_without_id",
                extra={"payload": {"line_id": line.id, "outcome": outcome.value}},
            )
            return NOT_HANDLED
        applied = self.proration.apply_payment_outcome(proration_id, outcome, reason=reason)
        return StrategyResult(handled=applied)


class HighWaterMarkStrategy(BaseSeatBillingStrategy):
    name = "high_water_mark"

    def __init__(self, *, marks: HighWaterMarkService, periods: BillingPeriodService) -> None:
        self.marks = marks
        self.periods = periods

    def on_seat_change(self, ctx: SeatChangeContext) -> StrategyResult:
        raised = self.marks.record_seats(
            ctx.subscription_id,
            ctx.membership_count,
            raise_mark=ctx.change_type == SeatChangeType.addition,
        )
        return StrategyResult(handled=raised)

    def on_invoice_upcoming(self, subscription_id: str) -> StrategyResult:
        return StrategyResult(handled=self.marks.apply_to_subscription(subscription_id))

    def on_renewal_paid(self, subscription_id: str, period_start: datetime) -> StrategyResult:
        advanced = self.periods.advance_period(subscription_id, period_start)
        if not advanced:
            # Повтор или устаревшее продление: пик текущего периода не трогаем
            return NOT_HANDLED
        self.marks.reset_after_renewal(subscription_id, period_start)
        return StrategyResult(handled=True)


class ImmediateUpdateStrategy(BaseSeatBillingStrategy):
    name = "immediate_update"

    def __init__(self, *, provider: BillingProvider, session_scope: SessionScope = db_session) -> None:
        self.provider = provider
        self._session_scope = session_scope

    def on_seat_change(self, ctx: SeatChangeContext) -> StrategyResult:
        item_id = ctx.subscription_item_id
        if not item_id:
            with self._session_scope() as session:
                state = SubscriptionBillingStateRepository(session).get(ctx.subscription_id)
                item_id = state.subscription_item_id if state is not None else None
        if not item_id:
            log.warning(
                "seat_change_item_missing",
                extra={"payload": {"subscription_id": ctx.subscription_id}},
            )
            return NOT_HANDLED

        self.provider.update_subscription_quantity(
            subscription_id=ctx.subscription_id,
            subscription_item_id=item_id,
            quantity=ctx.membership_count,
        )
        return StrategyResult(handled=True)


class ActiveUserBillingStrategy(BaseSeatBillingStrategy):
    name = "active_users"

    def __init__(
        self,
        *,
        provider: BillingProvider,
        counter: ActiveUserCounter,
        periods: BillingPeriodService,
        session_scope: SessionScope = db_session,
    ) -> None:
        self.provider = provider
        self.counter = counter
        self.periods = periods
        self._session_scope = session_scope

    def on_renewal_paid(self, subscription_id: str, period_start: datetime) -> StrategyResult:
        return StrategyResult(handled=self.periods.advance_period(subscription_id, period_start))

    def on_invoice_upcoming(self, subscription_id: str) -> StrategyResult:
        with self._session_scope() as session:
            state = SubscriptionBillingStateRepository(session).get(subscription_id)
            if state is None:
                log.warning(
                    "active_users_unknown_subscription",
                    extra={"payload": {"subscription_id": subscription_id}},
                )
                return NOT_HANDLED
            team_id = state.team_id
            item_id = state.subscription_item_id
            stored_window = (state.period_start, state.period_end)

        subscription = self.provider.get_subscription(subscription_id)
        if subscription is None:
            log.warning(
                "active_users_subscription_missing",
                extra={"payload": {"subscription_id": subscription_id}},
            )
            return NOT_HANDLED

        if subscription.current_period_start and subscription.current_period_end:
            start = from_unix(subscription.current_period_start)
            end = from_unix(subscription.current_period_end)
        elif stored_window[0] is not None and stored_window[1] is not None:
            start, end = as_utc(stored_window[0]), as_utc(stored_window[1])
        else:
            log.warning(
                "active_users_period_unknown",
                extra={"payload": {"subscription_id": subscription_id}},
            )
            return NOT_HANDLED

        item_id = item_id or (subscription.items[0].id if subscription.items else None)
        if not item_id:
            log.warning(
                "active_users_item_missing",
                extra={"payload": {"subscription_id": subscription_id}},
            )
            return NOT_HANDLED

        active = self.counter.count_active_users(team_id, start, end)
        self.provider.update_subscription_quantity(
            subscription_id=subscription_id,
            subscription_item_id=item_id,
            quantity=active,
        )
        log.info(
            "active_users_quantity_set",
            extra={
                "payload": {
                    "subscription_id": subscription_id,
                    "team_id": team_id,
                    "active_users": active,
                }
            },
        )
        return StrategyResult(handled=True)


class SeatCountActiveUserCounter:
    """
    Счётчик по умолчанию: без внешнего источника активности
    активными считаются все места команды.
    """

    def __init__(self, session_scope: SessionScope = db_session) -> None:
        self._session_scope = session_scope

    def count_active_users(self, team_id: int | None, period_start: datetime, period_end: datetime) -> int:
        if team_id is None:
            return 0
        with self._session_scope() as session:
            states = SubscriptionBillingStateRepository(session).list_for_team(team_id)
            return max((int(s.seat_count) for s in states), default=0)
