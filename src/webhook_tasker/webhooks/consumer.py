"""
Консьюмер задач доставки вебхуков (очередь webhook-delivery).

Алгоритм:
- загружаем подписчика по id из задачи; нет/неактивен → пропуск (успех)
- выбираем загрузчик данных по triggerEvent (can_handle); нет → ошибка конфигурации
- подтягиваем данные события; нет данных → пропуск
- собираем тело версионированным билдером (или шаблоном подписчика)
- отправляем HTTP POST; не-2xx/сеть/таймаут → WebhookDeliveryError (ретрай)
"""

from __future__ import annotations

import json
from typing import Any

import pydantic

from webhook_tasker.common.errors import (
    AppError,
    ErrCode,
    ValidationError,
    WebhookDeliveryError,
)
from webhook_tasker.common.logging import get_project_logger
from webhook_tasker.contracts.payloads import WebhookTaskPayload, parse_webhook_payload
from webhook_tasker.queue.backend import DeliveryTask

from .fetchers import WebhookDataFetcher
from .payload_builder import PayloadBuilderFactory, render_payload_template
from .sender import HttpWebhookSender
from .subscribers import WebhookSubscriber, WebhookSubscriberRepository

log = get_project_logger()


def _is_json(text: str) -> bool:
    try:
        json.loads(text)
    except ValueError:
        return False
    return True


class WebhookTaskConsumer:
    def __init__(
        self,
        *,
        subscribers: WebhookSubscriberRepository,
        fetchers: list[WebhookDataFetcher],
        builders: PayloadBuilderFactory,
        sender: HttpWebhookSender,
    ) -> None:
        self.subscribers = subscribers
        self.fetchers = list(fetchers)
        self.builders = builders
        self.sender = sender

    def handle_task(self, task: DeliveryTask) -> None:
        self.process_webhook_task(task.payload, task.id)

    def process_webhook_task(self, payload: dict[str, Any], task_id: str) -> None:
        """
        Основная точка входа для задачи доставки.
        Исключение = неуспешная попытка (воркер решает про ретрай/DLQ).
        """
        event = self._parse_event(payload, task_id)
        subscriber_id = str(payload.get("subscriberId") or "")
        trigger_event = event.trigger_event
        ctx = {
            "task_id": task_id,
            "operation_id": event.operation_id,
            "trigger_event": trigger_event,
            "subscriber_id": subscriber_id,
        }

        subscriber = self.subscribers.get_subscriber(subscriber_id) if subscriber_id else None
        if subscriber is None or not subscriber.active:
            log.info("webhook_subscriber_gone", extra={"payload": ctx})
            return
        if not subscriber.listens_to(trigger_event):
            log.info("webhook_subscriber_unsubscribed", extra={"payload": ctx})
            return

        fetcher = self._get_data_fetcher(trigger_event)
        if fetcher is None:
            log.error("webhook_fetcher_missing", extra={"payload": ctx})
            raise AppError(
                ErrCode.TASK_HANDLER_MISSING,
                f"No data fetcher registered for trigger event: {trigger_event}",
            )

        data = fetcher.fetch_event_data(event)
        if data is None:
            log.warning("webhook_event_data_not_found", extra={"payload": ctx})
            return

        body, content_type = self._build_body(subscriber, event, data)
        result = self.sender.send(
            subscriber=subscriber,
            trigger_event=trigger_event,
            body=body,
            content_type=content_type,
        )
        if not result.ok:
            raise WebhookDeliveryError(
                "Доставка вебхука не удалась",
                details={**ctx, "status": result.status_code, "err": result.error},
            )

    # -------------------------------------------------------------------------
    # helpers
    # -------------------------------------------------------------------------
    def _parse_event(self, payload: dict[str, Any], task_id: str) -> WebhookTaskPayload:
        try:
            return parse_webhook_payload(payload.get("event") or {})
        except pydantic.ValidationError as e:
            log.error(
                "webhook_task_invalid",
                extra={"payload": {"task_id": task_id, "err": str(e)[:300]}},
            )
            raise ValidationError(
                "Невалидный payload задачи вебхука", details={"task_id": task_id}
            ) from e

    def _get_data_fetcher(self, trigger_event: str) -> WebhookDataFetcher | None:
        return next((f for f in self.fetchers if f.can_handle(trigger_event)), None)

    def _build_body(
        self,
        subscriber: WebhookSubscriber,
        event: WebhookTaskPayload,
        data: dict[str, Any],
    ) -> tuple[str, str]:
        builder = self.builders.get_builder(subscriber.version)
        body = builder.build(
            trigger_event=event.trigger_event,
            created_at=event.timestamp,
            data=data,
        )
        if not subscriber.payload_template:
            return json.dumps(body, ensure_ascii=False, default=str), "application/json"

        rendered = render_payload_template(subscriber.payload_template, body)
        if _is_json(rendered):
            return rendered, "application/json"
        return rendered, "application/x-www-form-urlencoded"
