"""
High-water mark мест для помесячных подписок.

Назначение:
- в течение периода запоминаем пик мест (только рост)
- перед выставлением инвойса (invoice.upcoming) количество в провайдере = пик
- после оплаты продления количество возвращается к текущему числу мест,
  пик сбрасывается на новый период

Количество в провайдере меняется без пророции: за пик платят один раз за период.
"""

from __future__ import annotations

from datetime import datetime

from webhook_tasker.common.logging import get_billing_logger
from webhook_tasker.common.time import as_utc
from webhook_tasker.domain.enums import BillingPeriod
from webhook_tasker.storage.db import SessionScope, db_session
from webhook_tasker.storage.repositories import SubscriptionBillingStateRepository

from .provider import BillingProvider

log = get_billing_logger()


class HighWaterMarkService:
    def __init__(self, provider: BillingProvider, session_scope: SessionScope = db_session) -> None:
        self.provider = provider
        self._session_scope = session_scope

    def record_seats(self, subscription_id: str, seat_count: int, *, raise_mark: bool) -> bool:
        """
        Запоминает текущее число мест; при добавлении поднимает пик периода.
        True, если пик изменился.
        """
        with self._session_scope() as session:
            states = SubscriptionBillingStateRepository(session)
            state = states.get(subscription_id)
            if state is None:
                log.warning(
                    "hwm_unknown_subscription",
                    extra={"payload": {"subscription_id": subscription_id}},
                )
                return False
            state.seat_count = int(seat_count)
            if not raise_mark:
                return False

            period_start = state.high_water_mark_period_start or state.period_start
            if period_start is None:
                return False
            previous = state.high_water_mark
            session.flush()
            raised = states.raise_high_water_mark(
                subscription_id, seat_count=int(seat_count), period_start=period_start
            )

        if raised:
            log.info(
                "hwm_raised",
                extra={
                    "payload": {
                        "subscription_id": subscription_id,
                        "previous": previous,
                        "high_water_mark": seat_count,
                    }
                },
            )
        return raised

    def apply_to_subscription(self, subscription_id: str) -> bool:
        """
        Выставляет в провайдере количество = пик периода.
        True, если количество в провайдере изменено.
        """
        with self._session_scope() as session:
            states = SubscriptionBillingStateRepository(session)
            state = states.get(subscription_id)
            if state is None or BillingPeriod(state.billing_period) != BillingPeriod.monthly:
                return False

            mark = state.high_water_mark
            if mark is None:
                # Пик ещё не отслеживался: стартуем с текущего числа мест
                period_start = state.high_water_mark_period_start or state.period_start
                if period_start is None:
                    log.warning(
                        "hwm_period_unknown",
                        extra={"payload": {"subscription_id": subscription_id}},
                    )
                    return False
                mark = int(state.seat_count)
                states.reset_high_water_mark(
                    subscription_id, seat_count=mark, period_start=period_start
                )

            paid = int(state.paid_seats)
            item_id = state.subscription_item_id
            if mark == paid:
                return False
            if not item_id:
                log.warning(
                    "hwm_item_missing",
                    extra={"payload": {"subscription_id": subscription_id}},
                )
                return False

            self.provider.update_subscription_quantity(
                subscription_id=subscription_id, subscription_item_id=item_id, quantity=mark
            )
            states.set_paid_seats(subscription_id, mark)

        log.info(
            "hwm_applied",
            extra={
                "payload": {
                    "subscription_id": subscription_id,
                    "previous_paid_seats": paid,
                    "paid_seats": mark,
                    "direction": "up" if mark > paid else "down",
                }
            },
        )
        return True

    def reset_after_renewal(self, subscription_id: str, period_start: datetime) -> bool:
        """
        Новый период: количество в провайдере = текущие места, пик = текущие места.
        True, если количество в провайдере изменено.
        """
        new_start = as_utc(period_start)
        with self._session_scope() as session:
            states = SubscriptionBillingStateRepository(session)
            state = states.get(subscription_id)
            if state is None or BillingPeriod(state.billing_period) != BillingPeriod.monthly:
                return False

            seats = int(state.seat_count)
            paid = int(state.paid_seats)
            item_id = state.subscription_item_id
            states.reset_high_water_mark(subscription_id, seat_count=seats, period_start=new_start)
            if seats == paid or not item_id:
                return False

            self.provider.update_subscription_quantity(
                subscription_id=subscription_id, subscription_item_id=item_id, quantity=seats
            )
            states.set_paid_seats(subscription_id, seats)

        log.info(
            "hwm_reset_after_renewal",
            extra={
                "payload": {
                    "subscription_id": subscription_id,
                    "previous_paid_seats": paid,
                    "paid_seats": seats,
                    "period_start": new_start.isoformat(),
                }
            },
        )
        return True
