"""
Retry/DLQ утилиты для очередей.

Назначение:
- перепланировать упавшую задачу с экспоненциальным backoff
- ограничивать число попыток политикой очереди
- после исчерпания попыток класть задачу в DLQ <queue>:dlq и громко логировать

Важно:
- задержка не блокирует воркер: задача просто получает новый scheduled_at
"""

from __future__ import annotations

import random

from webhook_tasker.common.logging import get_project_logger
from webhook_tasker.common.metrics import QUEUE_TASKS_TOTAL

from .backend import DeliveryTask, RedisTaskBackend
from .config import QueueConfig, compute_retry_delay

log = get_project_logger()


def reschedule_with_backoff(
    *,
    backend: RedisTaskBackend,
    task: DeliveryTask,
    config: QueueConfig,
    error: str,
    service: str = "worker",
    rng: random.Random | None = None,
) -> bool:
    """
    Повторно запланировать задачу, увеличивая attempts.

    Возвращает:
    - True: задача перепланирована
    - False: задача отправлена в DLQ (окончательный провал)
    """
    policy = config.retry
    task.attempts = int(task.attempts) + 1
    task.last_error = (error or "")[:500]

    if task.attempts > policy.max_attempts:
        # Попытки исчерпаны: в DLQ
        backend.dead_letter(task)
        QUEUE_TASKS_TOTAL.labels(service=service, queue=config.name, result="dead_letter").inc()
        log.error(
            "task_permanently_failed",
            extra={
                "payload": {
                    "task_id": task.id,
                    "queue": config.name,
                    "kind": task.kind,
                    "attempts": task.attempts,
                    "max_attempts": policy.max_attempts,
                    "err": task.last_error[:200],
                }
            },
        )
        return False

    delay_sec = compute_retry_delay(policy, task.attempts, rng)
    backend.reschedule(task, delay_sec=delay_sec)
    QUEUE_TASKS_TOTAL.labels(service=service, queue=config.name, result="retry").inc()
    log.warning(
        "task_requeued",
        extra={
            "payload": {
                "task_id": task.id,
                "queue": config.name,
                "attempts": task.attempts,
                "max_attempts": policy.max_attempts,
                "delay_sec": round(delay_sec, 3),
            }
        },
    )
    return True


def reschedule_on_larger_machine(
    *,
    backend: RedisTaskBackend,
    task: DeliveryTask,
    config: QueueConfig,
    error: str,
    service: str = "worker",
) -> bool:
    """
    OOM: перезапуск на машине большего размера без задержки.
    Попытка засчитывается; если машина для эскалации не задана
    или попытки кончились, работает обычный backoff/DLQ.
    """
    target = config.retry.out_of_memory_machine
    if not target or task.attempts + 1 > config.retry.max_attempts:
        return reschedule_with_backoff(
            backend=backend, task=task, config=config, error=error, service=service
        )

    task.attempts = int(task.attempts) + 1
    task.last_error = (error or "")[:500]
    previous = task.machine
    backend.reschedule(task, delay_sec=0.0, machine=target)
    QUEUE_TASKS_TOTAL.labels(service=service, queue=config.name, result="oom").inc()
    log.warning(
        "task_escalated_machine",
        extra={
            "payload": {
                "task_id": task.id,
                "queue": config.name,
                "attempts": task.attempts,
                "from_machine": previous,
                "to_machine": target,
            }
        },
    )
    return True
