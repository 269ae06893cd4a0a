from __future__ import annotations

import time

from webhook_tasker.queue.backend import DeliveryTask, RedisTaskBackend, dlq_key, lease_key, schedule_key
from webhook_tasker.queue.config import KIND_DELIVER_WEBHOOK, Q_WEBHOOK_DELIVERY, get_queue_config


def _task(**kw) -> DeliveryTask:
    return DeliveryTask(queue=Q_WEBHOOK_DELIVERY, kind=KIND_DELIVER_WEBHOOK, payload={"x": 1}, **kw)


def test_enqueue_places_task_on_default_machine(backend, fake_redis):
    config = get_queue_config(Q_WEBHOOK_DELIVERY)
    task_id = backend.enqueue(_task(), config)

    assert fake_redis.zscore(schedule_key(Q_WEBHOOK_DELIVERY, "small-1x"), task_id) is not None
    assert backend.depth(Q_WEBHOOK_DELIVERY, machine="small-1x") == 1


def test_claim_due_is_exclusive(backend):
    config = get_queue_config(Q_WEBHOOK_DELIVERY)
    task_id = backend.enqueue(_task(), config)

    first = backend.claim_due(Q_WEBHOOK_DELIVERY, "small-1x")
    second = backend.claim_due(Q_WEBHOOK_DELIVERY, "small-1x")

    assert [t.id for t in first] == [task_id]
    assert first[0].payload == {"x": 1}
    assert second == []


def test_delayed_task_is_not_claimed_before_due(backend):
    config = get_queue_config(Q_WEBHOOK_DELIVERY)
    backend.enqueue(_task(), config, delay_sec=60)

    assert backend.claim_due(Q_WEBHOOK_DELIVERY, "small-1x") == []
    assert len(backend.claim_due(Q_WEBHOOK_DELIVERY, "small-1x", now=time.time() + 120)) == 1


def test_dead_letter_moves_body_to_dlq(backend, fake_redis):
    config = get_queue_config(Q_WEBHOOK_DELIVERY)
    backend.enqueue(_task(), config)
    task = backend.claim_due(Q_WEBHOOK_DELIVERY, "small-1x")[0]

    backend.dead_letter(task, error="boom")

    assert backend.dlq_depth(Q_WEBHOOK_DELIVERY) == 1
    assert fake_redis.llen(dlq_key(Q_WEBHOOK_DELIVERY)) == 1
    dead = backend.list_dead_letters(Q_WEBHOOK_DELIVERY)
    assert dead[0].id == task.id
    assert dead[0].last_error == "boom"
    assert fake_redis.hget("tasks:bodies", task.id) is None


def test_claimed_task_is_leased_until_finished(backend):
    config = get_queue_config(Q_WEBHOOK_DELIVERY)
    for _ in range(3):
        backend.enqueue(_task(), config)
    done, retried, dead = backend.claim_due(Q_WEBHOOK_DELIVERY, "small-1x")

    assert backend.in_flight(Q_WEBHOOK_DELIVERY, machine="small-1x") == 3

    backend.complete(done)
    backend.reschedule(retried, delay_sec=30, machine="medium-1x")
    backend.dead_letter(dead, error="boom")

    assert backend.in_flight(Q_WEBHOOK_DELIVERY, machine="small-1x") == 0
    assert backend.in_flight(Q_WEBHOOK_DELIVERY, machine="medium-1x") == 0
    assert backend.depth(Q_WEBHOOK_DELIVERY, machine="medium-1x") == 1


def test_task_of_crashed_worker_is_recovered_after_lease(fake_redis):
    config = get_queue_config(Q_WEBHOOK_DELIVERY)
    crashed = RedisTaskBackend(client=fake_redis, lease_sec=60)
    task_id = crashed.enqueue(_task(), config)
    assert [t.id for t in crashed.claim_due(Q_WEBHOOK_DELIVERY, "small-1x")] == [task_id]
    del crashed

    survivor = RedisTaskBackend(client=fake_redis, lease_sec=60)
    assert survivor.depth(Q_WEBHOOK_DELIVERY, machine="small-1x") == 0
    assert survivor.reap_expired(Q_WEBHOOK_DELIVERY, "small-1x") == []

    recovered = survivor.reap_expired(Q_WEBHOOK_DELIVERY, "small-1x", now=time.time() + 61)

    assert [t.id for t in recovered] == [task_id]
    assert recovered[0].payload == {"x": 1}
    assert fake_redis.zcard(lease_key(Q_WEBHOOK_DELIVERY, "small-1x")) == 0


def test_reap_skips_finished_and_rescheduled_tasks(fake_redis):
    config = get_queue_config(Q_WEBHOOK_DELIVERY)
    backend = RedisTaskBackend(client=fake_redis, lease_sec=60)
    task_id = backend.enqueue(_task(), config)
    # Аренда без задачи в работе: задача всё ещё в расписании
    fake_redis.zadd(lease_key(Q_WEBHOOK_DELIVERY, "small-1x"), {task_id: 0.0})
    fake_redis.zadd(lease_key(Q_WEBHOOK_DELIVERY, "small-1x"), {"gone": 0.0})

    assert backend.reap_expired(Q_WEBHOOK_DELIVERY, "small-1x") == []
    assert backend.depth(Q_WEBHOOK_DELIVERY, machine="small-1x") == 1
    assert backend.in_flight(Q_WEBHOOK_DELIVERY, machine="small-1x") == 0
