from __future__ import annotations

import random

from webhook_tasker.queue.backend import DeliveryTask
from webhook_tasker.queue.config import (
    KIND_DELIVER_WEBHOOK,
    Q_WEBHOOK_DELIVERY,
    QueueConfig,
    RetryPolicy,
    get_queue_config,
)
from webhook_tasker.queue.retry import reschedule_on_larger_machine, reschedule_with_backoff


def test_task_dead_lettered_after_max_attempts(backend, fake_redis):
    config = get_queue_config(Q_WEBHOOK_DELIVERY)
    task = DeliveryTask(queue=Q_WEBHOOK_DELIVERY, kind=KIND_DELIVER_WEBHOOK, payload={})
    backend.enqueue(task, config)

    outcomes = []
    for _ in range(config.retry.max_attempts + 1):
        outcomes.append(
            reschedule_with_backoff(
                backend=backend, task=task, config=config, error="boom", rng=random.Random(7)
            )
        )

    assert outcomes == [True, True, True, False]
    assert task.attempts == config.retry.max_attempts + 1
    assert backend.dlq_depth(Q_WEBHOOK_DELIVERY) == 1
    assert backend.list_dead_letters(Q_WEBHOOK_DELIVERY)[0].last_error == "boom"


def test_reschedule_delay_respects_policy(backend, monkeypatch):
    monkeypatch.setattr("webhook_tasker.queue.backend.time.time", lambda: 1000.0)
    config = QueueConfig(
        name="q",
        concurrency_limit=1,
        machine="small-1x",
        retry=RetryPolicy(max_attempts=4, factor=2, min_timeout_ms=1000, max_timeout_ms=3000, randomize=False),
    )
    task = DeliveryTask(queue="q", kind="k", payload={}, machine="small-1x")

    delays = []
    for _ in range(4):
        assert reschedule_with_backoff(backend=backend, task=task, config=config, error="e") is True
        delays.append(backend.r.zscore("tasks:q:small-1x", task.id) - 1000.0)

    assert delays == [1.0, 2.0, 3.0, 3.0]
    assert task.attempts == 4


def test_oom_escalates_to_larger_machine(backend, fake_redis):
    config = get_queue_config(Q_WEBHOOK_DELIVERY)
    task = DeliveryTask(queue=Q_WEBHOOK_DELIVERY, kind=KIND_DELIVER_WEBHOOK, payload={}, machine="small-1x")

    assert reschedule_on_larger_machine(backend=backend, task=task, config=config, error="oom") is True
    assert task.machine == "medium-1x"
    assert task.attempts == 1
    assert fake_redis.zscore("tasks:webhook-delivery:medium-1x", task.id) is not None


def test_oom_without_target_machine_falls_back_to_backoff(backend):
    config = QueueConfig(
        name="q",
        concurrency_limit=1,
        machine="small-1x",
        retry=RetryPolicy(max_attempts=1, factor=2, min_timeout_ms=1000, max_timeout_ms=3000),
    )
    task = DeliveryTask(queue="q", kind="k", payload={}, machine="small-1x")

    assert reschedule_on_larger_machine(backend=backend, task=task, config=config, error="oom") is True
    assert task.machine == "small-1x"
    assert reschedule_on_larger_machine(backend=backend, task=task, config=config, error="oom") is False
    assert backend.dlq_depth("q") == 1
