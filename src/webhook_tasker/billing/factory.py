"""
Выбор стратегии биллинга по подписке.

Порядок (только вне триала и после старта подписки):
- active_users → ActiveUserBillingStrategy
- годовая подписка → пророции (FlatSeatBillingStrategy)
- помесячная подписка → HighWaterMarkStrategy
Иначе (триал, неизвестная подписка, период не начался) → ImmediateUpdateStrategy.
"""

from __future__ import annotations

from datetime import datetime

from webhook_tasker.common.logging import get_billing_logger
from webhook_tasker.common.time import as_utc, utc_now
from webhook_tasker.domain.enums import BillingMode, BillingPeriod
from webhook_tasker.storage.db import SessionScope, db_session
from webhook_tasker.storage.models import SubscriptionBillingState
from webhook_tasker.storage.repositories import SubscriptionBillingStateRepository

from .strategies import (
    ActiveUserBillingStrategy,
    BaseSeatBillingStrategy,
    FlatSeatBillingStrategy,
    HighWaterMarkStrategy,
    ImmediateUpdateStrategy,
)

log = get_billing_logger()


def is_in_trial(state: SubscriptionBillingState, now: datetime) -> bool:
    return state.trial_end is not None and as_utc(state.trial_end) > as_utc(now)


class SeatBillingStrategyFactory:
    def __init__(
        self,
        *,
        flat: FlatSeatBillingStrategy,
        high_water_mark: HighWaterMarkStrategy,
        active_users: ActiveUserBillingStrategy,
        fallback: ImmediateUpdateStrategy,
        session_scope: SessionScope = db_session,
    ) -> None:
        self.flat = flat
        self.high_water_mark = high_water_mark
        self.active_users = active_users
        self.fallback = fallback
        self._session_scope = session_scope

    def create_by_subscription_id(
        self, subscription_id: str, *, now: datetime | None = None
    ) -> BaseSeatBillingStrategy:
        now = now or utc_now()
        with self._session_scope() as session:
            state = SubscriptionBillingStateRepository(session).get(subscription_id)
            if state is None:
                log.warning(
                    "billing_strategy_fallback",
                    extra={
                        "payload": {
                            "subscription_id": subscription_id,
                            "strategy": self.fallback.name,
                        }
                    },
                )
                return self.fallback
            if is_in_trial(state, now) or state.period_start is None:
                return self.fallback
            mode = BillingMode(state.billing_mode)
            period = BillingPeriod(state.billing_period)

        if mode == BillingMode.active_users:
            return self.active_users
        if period == BillingPeriod.annually:
            return self.flat
        return self.high_water_mark
