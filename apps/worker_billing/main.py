"""
Worker Billing.

Алгоритм:
- забирает задачи очереди platform-billing (инкремент usage)
- ожидаемые ошибки провайдера (песочные/временные подписки, не-usage подписки)
  завершают задачу без ретрая
- прочие ошибки ретраятся, OOM эскалирует задачу на более крупную машину
"""

from __future__ import annotations

import time

from webhook_tasker.common.config import get_settings
from webhook_tasker.common.logging import get_billing_logger, setup_logging
from webhook_tasker.container import get_app_context
from webhook_tasker.queue.config import KIND_INCREMENT_USAGE, Q_PLATFORM_BILLING, get_queue_config
from webhook_tasker.queue.worker import QueueWorker

log = get_billing_logger()
SERVICE = "worker-billing"


def build_worker() -> QueueWorker:
    settings = get_settings()
    ctx = get_app_context()
    return QueueWorker(
        get_queue_config(Q_PLATFORM_BILLING),
        ctx.backend,
        {KIND_INCREMENT_USAGE: ctx.usage.handle_task},
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
                log.error("worker_billing_fatal", extra={"payload": {"err": str(e)[:200]}})
                time.sleep(2)
    finally:
        worker.shutdown(wait=True)


if __name__ == "__main__":
    main()
