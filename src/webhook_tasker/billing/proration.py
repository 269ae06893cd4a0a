"""
Сервисы состояния биллинга подписки.

ProrationService:
- создание записи пророции при добавлении мест посреди периода
- применение исхода оплаты инвойса к записи (pending/failed → charged, pending → failed)
- побочный эффект успешной оплаты (paid_seats += seats_delta) применяется ровно один раз:
  условный UPDATE статуса и инкремент мест в одной транзакции

BillingPeriodService:
- сдвиг окна периода при оплате продления
- повтор того же start ничего не меняет; более старый start (порядок доставки нарушен) игнорируется
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta

from webhook_tasker.common.ids import new_proration_id
from webhook_tasker.common.logging import get_billing_logger
from webhook_tasker.common.time import as_utc, utc_now
from webhook_tasker.domain.enums import BillingPeriod, PaymentOutcome, ProrationStatus, SeatChangeType
from webhook_tasker.domain.state_machine import allowed_sources, target_status, transition
from webhook_tasker.storage.db import SessionScope, db_session
from webhook_tasker.storage.models import ProrationEntry, SubscriptionBillingState
from webhook_tasker.storage.repositories import (
    ProrationEntryRepository,
    SubscriptionBillingStateRepository,
)

log = get_billing_logger()

_DEFAULT_PERIOD_LENGTH = {
    BillingPeriod.monthly: timedelta(days=30),
    BillingPeriod.annually: timedelta(days=365),
}


@dataclass(frozen=True)
class SeatChangeContext:
    subscription_id: str
    membership_count: int
    change_type: SeatChangeType
    team_id: int | None = None
    subscription_item_id: str | None = None


def remaining_period_share(state: SubscriptionBillingState, now: datetime) -> float:
    """
    Доля оставшегося периода в [0, 1]. Окно неизвестно → 1 (полный период).
    """
    if state.period_start is None or state.period_end is None:
        return 1.0
    start, end = as_utc(state.period_start), as_utc(state.period_end)
    total = (end - start).total_seconds()
    if total <= 0:
        return 0.0
    left = (end - as_utc(now)).total_seconds()
    return min(1.0, max(0.0, left / total))


def proration_amount_cents(state: SubscriptionBillingState, seats_delta: int, now: datetime) -> int:
    share = remaining_period_share(state, now)
    return int(math.ceil(seats_delta * state.price_per_seat_cents * share))


class ProrationService:
    def __init__(self, session_scope: SessionScope = db_session) -> None:
        self._session_scope = session_scope

    def record_seat_change(self, ctx: SeatChangeContext, *, now: datetime | None = None) -> str | None:
        """
        Добавление мест: обновляет seat_count и создаёт pending-пророцию.
        Снятие мест и синхронизация пророцию не создают.
        Возвращает id созданной записи или None.
        """
        now = now or utc_now()
        with self._session_scope() as session:
            states = SubscriptionBillingStateRepository(session)
            state = states.get(ctx.subscription_id)
            if state is None:
                log.warning(
                    "seat_change_unknown_subscription",
                    extra={"payload": {"subscription_id": ctx.subscription_id}},
                )
                return None

            if ctx.change_type != SeatChangeType.addition:
                return None
            delta = int(ctx.membership_count) - int(state.seat_count)
            if delta <= 0:
                return None
            state.seat_count = int(ctx.membership_count)

            entry = ProrationEntry(
                id=new_proration_id(),
                subscription_id=state.subscription_id,
                seats_delta=delta,
                amount_cents=proration_amount_cents(state, delta, now),
                status=ProrationStatus.pending,
                created_at=now,
            )
            ProrationEntryRepository(session).add(entry)
            log.info(
                "proration_created",
                extra={
                    "payload": {
                        "proration_id": entry.id,
                        "subscription_id": entry.subscription_id,
                        "seats_delta": delta,
                        "amount_cents": entry.amount_cents,
                    }
                },
            )
            return entry.id

    def apply_payment_outcome(
        self,
        proration_id: str,
        outcome: PaymentOutcome,
        *,
        reason: str | None = None,
        now: datetime | None = None,
    ) -> bool:
        """
        True, если переход применён этим вызовом. Повтор события → False без побочных эффектов.
        """
        now = now or utc_now()
        with self._session_scope() as session:
            entries = ProrationEntryRepository(session)
            entry = entries.get(proration_id)
            if entry is None:
                log.warning("proration_not_found", extra={"payload": {"proration_id": proration_id}})
                return False

            planned = transition(ProrationStatus(entry.status), outcome)
            if not planned.ok:
                log.info(
                    "proration_transition_skipped",
                    extra={
                        "payload": {
                            "proration_id": proration_id,
                            "status": planned.status.value,
                            "outcome": outcome.value,
                            "reason": planned.reason,
                        }
                    },
                )
                return False

            if outcome == PaymentOutcome.succeeded:
                values = {"charged_at": now, "failure_reason": None}
            else:
                values = {"failed_at": now, "failure_reason": (reason or "")[:255] or None}

            applied = entries.transition(
                proration_id,
                sources=allowed_sources(outcome),
                target=target_status(outcome),
                values=values,
            )
            if not applied:
                # Параллельный обработчик успел раньше
                return False

            if outcome == PaymentOutcome.succeeded:
                SubscriptionBillingStateRepository(session).add_paid_seats(
                    entry.subscription_id, entry.seats_delta
                )

            log.info(
                "proration_transitioned",
                extra={
                    "payload": {
                        "proration_id": proration_id,
                        "subscription_id": entry.subscription_id,
                        "to": target_status(outcome).value,
                        "reason": reason,
                    }
                },
            )
            return True


class BillingPeriodService:
    def __init__(self, session_scope: SessionScope = db_session) -> None:
        self._session_scope = session_scope

    def advance_period(self, subscription_id: str, period_start: datetime) -> bool:
        new_start = as_utc(period_start)
        with self._session_scope() as session:
            states = SubscriptionBillingStateRepository(session)
            state = states.get(subscription_id)
            if state is None:
                log.warning(
                    "billing_period_unknown_subscription",
                    extra={"payload": {"subscription_id": subscription_id}},
                )
                return False

            stored_start = state.period_start
            if stored_start is not None:
                current = as_utc(stored_start)
                if new_start == current:
                    return False
                if new_start < current:
                    log.info(
                        "billing_period_out_of_order",
                        extra={
                            "payload": {
                                "subscription_id": subscription_id,
                                "stored_start": current.isoformat(),
                                "event_start": new_start.isoformat(),
                            }
                        },
                    )
                    return False

            if state.period_start is not None and state.period_end is not None:
                length = as_utc(state.period_end) - as_utc(state.period_start)
            else:
                length = _DEFAULT_PERIOD_LENGTH[BillingPeriod(state.billing_period)]

            moved = states.move_period_window(
                subscription_id,
                expected_start=stored_start,
                new_start=new_start,
                new_end=new_start + length,
            )
            if moved:
                log.info(
                    "billing_period_advanced",
                    extra={
                        "payload": {
                            "subscription_id": subscription_id,
                            "period_start": new_start.isoformat(),
                            "period_end": (new_start + length).isoformat(),
                        }
                    },
                )
            return moved
