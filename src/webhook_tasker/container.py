"""
Сборка зависимостей процесса (API и воркеры).

Один AppContext на процесс: продюсер, консьюмер, таскеры, биллинговые сервисы.
Тесты собирают свой контекст через build_context(...) с фейками.
"""

from __future__ import annotations

from dataclasses import dataclass

from webhook_tasker.billing.factory import SeatBillingStrategyFactory
from webhook_tasker.billing.high_water_mark import HighWaterMarkService
from webhook_tasker.billing.proration import BillingPeriodService, ProrationService
from webhook_tasker.billing.provider import BillingProvider, StripeBillingProvider
from webhook_tasker.billing.strategies import (
    ActiveUserBillingStrategy,
    ActiveUserCounter,
    FlatSeatBillingStrategy,
    HighWaterMarkStrategy,
    ImmediateUpdateStrategy,
    SeatCountActiveUserCounter,
)
from webhook_tasker.billing.usage import UsageIncrementService
from webhook_tasker.billing.webhook_handlers import BillingWebhookHandlers
from webhook_tasker.queue.backend import RedisTaskBackend, get_task_backend
from webhook_tasker.queue.dispatcher import PlatformBillingTasker, WebhookTasker
from webhook_tasker.storage.db import SessionScope, db_session
from webhook_tasker.webhooks.consumer import WebhookTaskConsumer
from webhook_tasker.webhooks.fetchers import default_fetchers
from webhook_tasker.webhooks.payload_builder import PayloadBuilderFactory
from webhook_tasker.webhooks.producer import WebhookProducer
from webhook_tasker.webhooks.sender import HttpWebhookSender
from webhook_tasker.webhooks.subscribers import (
    SqlWebhookSubscriberRepository,
    WebhookSubscriberRepository,
)


@dataclass
class AppContext:
    backend: RedisTaskBackend
    producer: WebhookProducer
    webhook_consumer: WebhookTaskConsumer
    webhook_tasker: WebhookTasker
    billing_tasker: PlatformBillingTasker
    usage: UsageIncrementService
    billing_handlers: BillingWebhookHandlers
    strategies: SeatBillingStrategyFactory
    proration: ProrationService


def build_context(
    *,
    session_scope: SessionScope = db_session,
    backend: RedisTaskBackend | None = None,
    provider: BillingProvider | None = None,
    sender: HttpWebhookSender | None = None,
    subscribers: WebhookSubscriberRepository | None = None,
    active_users: ActiveUserCounter | None = None,
    mode: str | None = None,
) -> AppContext:
    backend = backend or get_task_backend()
    provider = provider or StripeBillingProvider()
    subscribers = subscribers or SqlWebhookSubscriberRepository(session_scope)

    consumer = WebhookTaskConsumer(
        subscribers=subscribers,
        fetchers=default_fetchers(),
        builders=PayloadBuilderFactory(),
        sender=sender or HttpWebhookSender(),
    )
    webhook_tasker = WebhookTasker(backend=backend, consumer=consumer, mode=mode)

    usage = UsageIncrementService(provider)
    billing_tasker = PlatformBillingTasker(backend=backend, usage=usage, mode=mode)

    proration = ProrationService(session_scope)
    periods = BillingPeriodService(session_scope)
    factory = SeatBillingStrategyFactory(
        flat=FlatSeatBillingStrategy(proration=proration, periods=periods),
        high_water_mark=HighWaterMarkStrategy(
            marks=HighWaterMarkService(provider, session_scope), periods=periods
        ),
        active_users=ActiveUserBillingStrategy(
            provider=provider,
            counter=active_users or SeatCountActiveUserCounter(session_scope),
            periods=periods,
            session_scope=session_scope,
        ),
        fallback=ImmediateUpdateStrategy(provider=provider, session_scope=session_scope),
        session_scope=session_scope,
    )

    return AppContext(
        backend=backend,
        producer=WebhookProducer(subscribers=subscribers, tasker=webhook_tasker),
        webhook_consumer=consumer,
        webhook_tasker=webhook_tasker,
        billing_tasker=billing_tasker,
        usage=usage,
        billing_handlers=BillingWebhookHandlers(factory=factory, provider=provider),
        strategies=factory,
        proration=proration,
    )


_CONTEXT: AppContext | None = None


def get_app_context() -> AppContext:
    global _CONTEXT
    if _CONTEXT is None:
        _CONTEXT = build_context()
    return _CONTEXT


def set_app_context(ctx: AppContext | None) -> None:
    global _CONTEXT
    _CONTEXT = ctx
