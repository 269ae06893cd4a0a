"""
Диспетчер задач (tasker'ы).

Назначение:
- единая упаковка задач в DeliveryTask
- выбор backend'а по QUEUE_MODE:
  redis:  постановка в надёжную очередь
  inline: синхронное исполнение в процессе (тесты, локальная разработка)
"""

from __future__ import annotations

from typing import Any, Protocol

from webhook_tasker.common.config import get_settings
from webhook_tasker.common.errors import ExpectedTaskError
from webhook_tasker.common.logging import get_project_logger
from webhook_tasker.common.metrics import TASKS_QUEUED_TOTAL

from .backend import DeliveryTask, RedisTaskBackend
from .config import (
    KIND_DELIVER_WEBHOOK,
    KIND_INCREMENT_USAGE,
    Q_PLATFORM_BILLING,
    Q_WEBHOOK_DELIVERY,
    get_queue_config,
)

log = get_project_logger()


class WebhookTaskProcessor(Protocol):
    def process_webhook_task(self, payload: dict[str, Any], task_id: str) -> None: ...


class UsageTaskProcessor(Protocol):
    def increment_usage(self, payload: dict[str, Any]) -> None: ...


def _resolve_mode(mode: str | None) -> str:
    return (mode or get_settings().queue_mode or "redis").strip().lower()


class _BaseTasker:
    queue_name: str = ""

    def __init__(self, *, backend: RedisTaskBackend | None = None, mode: str | None = None) -> None:
        self.backend = backend
        self.mode = _resolve_mode(mode)

    @property
    def inline(self) -> bool:
        return self.mode == "inline"

    def _enqueue(self, task: DeliveryTask) -> str:
        if self.backend is None:
            raise RuntimeError("task backend is not configured for redis mode")
        return self.backend.enqueue(task, get_queue_config(self.queue_name))

    def _log_inline_failure(self, task: DeliveryTask, err: Exception) -> None:
        ctx = {"task_id": task.id, "queue": task.queue, "kind": task.kind, "err": str(err)[:200]}
        if isinstance(err, ExpectedTaskError):
            log.info("inline_task_skipped", extra={"payload": ctx})
            return
        log.error("inline_task_failed", extra={"payload": ctx})


class WebhookTasker(_BaseTasker):
    """
    Backend доставки вебхуков для продюсера.
    """

    queue_name = Q_WEBHOOK_DELIVERY

    def __init__(
        self,
        *,
        backend: RedisTaskBackend | None = None,
        consumer: WebhookTaskProcessor | None = None,
        mode: str | None = None,
    ) -> None:
        super().__init__(backend=backend, mode=mode)
        self.consumer = consumer

    def deliver_webhook(self, event: dict[str, Any], subscriber_id: str) -> str:
        task = DeliveryTask(
            queue=self.queue_name,
            kind=KIND_DELIVER_WEBHOOK,
            payload={"subscriberId": subscriber_id, "event": event},
        )
        if not self.inline:
            return self._enqueue(task)

        TASKS_QUEUED_TOTAL.labels(queue=task.queue, kind=task.kind, mode="inline").inc()
        if self.consumer is None:
            raise RuntimeError("webhook consumer is not configured for inline mode")
        try:
            self.consumer.process_webhook_task(task.payload, task.id)
        except Exception as e:
            self._log_inline_failure(task, e)
        return task.id


class PlatformBillingTasker(_BaseTasker):
    """
    Backend задач platform-billing (инкремент usage).
    """

    queue_name = Q_PLATFORM_BILLING

    def __init__(
        self,
        *,
        backend: RedisTaskBackend | None = None,
        usage: UsageTaskProcessor | None = None,
        mode: str | None = None,
    ) -> None:
        super().__init__(backend=backend, mode=mode)
        self.usage = usage

    def increment_usage(self, payload: dict[str, Any]) -> str:
        task = DeliveryTask(queue=self.queue_name, kind=KIND_INCREMENT_USAGE, payload=payload)
        if not self.inline:
            return self._enqueue(task)

        TASKS_QUEUED_TOTAL.labels(queue=task.queue, kind=task.kind, mode="inline").inc()
        if self.usage is None:
            raise RuntimeError("usage service is not configured for inline mode")
        try:
            self.usage.increment_usage(task.payload)
        except Exception as e:
            self._log_inline_failure(task, e)
        return task.id
