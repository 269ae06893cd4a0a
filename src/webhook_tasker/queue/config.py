"""
Конфигурация очередей.

Назначение:
- единые имена очередей
- лимит параллельности на очередь (admission control воркера)
- политика ретраев: экспоненциальный backoff, jitter, эскалация машины при OOM

Важно:
- конфиги неизменяемые и определяются при импорте
"""

from __future__ import annotations

import random
from dataclasses import dataclass

from webhook_tasker.common.errors import NotFoundError

# =============================================================================
# ИМЕНА ОЧЕРЕДЕЙ
# =============================================================================
Q_WEBHOOK_DELIVERY = "webhook-delivery"
Q_CALENDARS = "calendars"
Q_PLATFORM_BILLING = "platform-billing"

# Виды задач (kind) внутри очередей
KIND_DELIVER_WEBHOOK = "deliver-webhook"
KIND_INCREMENT_USAGE = "increment-usage"


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int
    factor: float
    min_timeout_ms: int
    max_timeout_ms: int
    randomize: bool = True
    out_of_memory_machine: str | None = None


@dataclass(frozen=True)
class QueueConfig:
    name: str
    concurrency_limit: int
    machine: str
    retry: RetryPolicy


QUEUE_CONFIGS: dict[str, QueueConfig] = {
    Q_WEBHOOK_DELIVERY: QueueConfig(
        name=Q_WEBHOOK_DELIVERY,
        concurrency_limit=25,
        machine="small-1x",
        retry=RetryPolicy(
            max_attempts=3,
            factor=2,
            min_timeout_ms=30_000,
            max_timeout_ms=600_000,
            randomize=True,
            out_of_memory_machine="medium-1x",
        ),
    ),
    Q_CALENDARS: QueueConfig(
        name=Q_CALENDARS,
        concurrency_limit=10,
        machine="small-2x",
        retry=RetryPolicy(
            max_attempts=3,
            factor=2,
            min_timeout_ms=60_000,
            max_timeout_ms=300_000,
            randomize=True,
            out_of_memory_machine="medium-1x",
        ),
    ),
    Q_PLATFORM_BILLING: QueueConfig(
        name=Q_PLATFORM_BILLING,
        concurrency_limit=10,
        machine="small-1x",
        retry=RetryPolicy(
            max_attempts=3,
            factor=2,
            min_timeout_ms=60_000,
            max_timeout_ms=600_000,
            randomize=True,
            out_of_memory_machine="medium-1x",
        ),
    ),
}


def get_queue_config(name: str) -> QueueConfig:
    config = QUEUE_CONFIGS.get(name)
    if config is None:
        raise NotFoundError("Очередь не найдена", details={"queue": name})
    return config


def machines_for(config: QueueConfig) -> list[str]:
    """
    Пресеты машин, на которых могут лежать задачи очереди:
    основной + OOM-эскалация.
    """
    machines = [config.machine]
    oom = config.retry.out_of_memory_machine
    if oom and oom not in machines:
        machines.append(oom)
    return machines


def compute_retry_delay(
    policy: RetryPolicy, attempt: int, rng: random.Random | None = None
) -> float:
    """
    Задержка перед n-м ретраем (n >= 1), в секундах.

    delay = min(max_timeout, min_timeout * factor^(n-1) * jitter)
    jitter ∈ [1, factor) при randomize, иначе 1.
    Последовательность не убывает и ограничена max_timeout.
    """
    n = max(1, int(attempt))
    base_ms = policy.min_timeout_ms * (policy.factor ** (n - 1))
    if policy.randomize and policy.factor > 1:
        base_ms *= (rng or random).uniform(1, policy.factor)
    return min(float(policy.max_timeout_ms), base_ms) / 1000.0
