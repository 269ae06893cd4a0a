"""
Подписчики вебхуков.

Назначение:
- контекст поиска подписчиков (триггер + идентификаторы скоупа)
- интерфейс репозитория подписчиков для продюсера и консьюмера
- SQL-реализация поверх таблицы webhooks

Важно:
- совпадение скоупа прямое (user / event type / team / org / oAuth-клиент);
  наследование по иерархии команд/организаций здесь не выводится
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol

from webhook_tasker.domain.enums import DEFAULT_WEBHOOK_VERSION
from webhook_tasker.storage.db import SessionScope, db_session
from webhook_tasker.storage.models import WebhookSubscription
from webhook_tasker.storage.repositories import WebhookRepository


@dataclass(frozen=True)
class SubscriberContext:
    trigger_event: str
    user_id: int | None = None
    event_type_id: int | None = None
    team_id: int | None = None
    org_id: int | None = None
    oauth_client_id: str | None = None


@dataclass(frozen=True)
class WebhookSubscriber:
    id: str
    subscriber_url: str
    secret: str | None = None
    event_triggers: tuple[str, ...] = field(default_factory=tuple)
    version: str = DEFAULT_WEBHOOK_VERSION.value
    payload_template: str | None = None
    active: bool = True

    def listens_to(self, trigger_event: str) -> bool:
        return trigger_event in self.event_triggers


class WebhookSubscriberRepository(Protocol):
    def get_subscribers(self, ctx: SubscriberContext) -> list[WebhookSubscriber]: ...

    def get_subscriber(self, subscriber_id: str) -> WebhookSubscriber | None: ...


def _to_subscriber(row: WebhookSubscription) -> WebhookSubscriber:
    return WebhookSubscriber(
        id=row.id,
        subscriber_url=row.subscriber_url,
        secret=row.secret,
        event_triggers=tuple(row.event_triggers or ()),
        version=row.version or DEFAULT_WEBHOOK_VERSION.value,
        payload_template=row.payload_template,
        active=bool(row.active),
    )


class SqlWebhookSubscriberRepository:
    def __init__(self, session_scope: SessionScope = db_session) -> None:
        self._session_scope = session_scope

    def get_subscribers(self, ctx: SubscriberContext) -> list[WebhookSubscriber]:
        with self._session_scope() as session:
            rows = WebhookRepository(session).list_active_in_scope(
                user_id=ctx.user_id,
                event_type_id=ctx.event_type_id,
                team_id=ctx.team_id,
                org_id=ctx.org_id,
                oauth_client_id=ctx.oauth_client_id,
            )
            subscribers = [_to_subscriber(row) for row in rows]
        return [s for s in subscribers if s.listens_to(ctx.trigger_event)]

    def get_subscriber(self, subscriber_id: str) -> WebhookSubscriber | None:
        with self._session_scope() as session:
            row = WebhookRepository(session).get(subscriber_id)
            return _to_subscriber(row) if row else None
