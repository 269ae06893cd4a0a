"""
Worker Webhooks.

Алгоритм:
- забирает созревшие задачи очереди webhook-delivery (machine из WORKER_MACHINE)
- параллельность ограничена concurrency_limit очереди
- WebhookTaskConsumer: подписчик → данные события → тело → HTTP доставка
- ошибки доставки ретраятся с экспоненциальным backoff, затем DLQ
"""

from __future__ import annotations

import time

from webhook_tasker.common.config import get_settings
from webhook_tasker.common.logging import get_project_logger, setup_logging
from webhook_tasker.container import get_app_context
from webhook_tasker.queue.config import KIND_DELIVER_WEBHOOK, Q_WEBHOOK_DELIVERY, get_queue_config
from webhook_tasker.queue.worker import QueueWorker

log = get_project_logger()
SERVICE = "worker-webhooks"


def build_worker() -> QueueWorker:
    settings = get_settings()
    ctx = get_app_context()
    return QueueWorker(
        get_queue_config(Q_WEBHOOK_DELIVERY),
        ctx.backend,
        {KIND_DELIVER_WEBHOOK: ctx.webhook_consumer.handle_task},
        machine=settings.worker_machine,
        service=SERVICE,
        batch_size=settings.worker_batch_size,
        poll_interval_sec=settings.worker_poll_interval_sec,
    )


def main() -> None:
    setup_logging(SERVICE)
    worker = build_worker()
    try:
        while True:
            try:
                worker.run_forever()
            except Exception as e:
                log.error("worker_webhooks_fatal", extra={"payload": {"err": str(e)[:200]}})
                time.sleep(2)
    finally:
        worker.shutdown(wait=True)


if __name__ == "__main__":
    main()
