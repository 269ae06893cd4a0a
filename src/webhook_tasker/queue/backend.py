"""
Минимальная надёжная очередь задач на Redis.

Назначение:
- хранение запланированных задач по (очередь, машина) в sorted set (score = scheduled_at)
- тела задач в общем hash
- DLQ как список <queue>:dlq
- задачи в работе в sorted set <schedule>:leases (score = дедлайн аренды)

Важно:
- claim атомарный: задача забирается только тем воркером, чей ZREM вернул 1,
  поэтому одна и та же попытка не исполняется дважды параллельно
- ZREM из расписания и ZADD в аренды идут одной MULTI-транзакцией: упавший
  процесс оставляет задачу в арендах, reap_expired возвращает её воркерам
- complete / reschedule / dead_letter снимают аренду
- синхронная реализация (подходит для наших воркеров)
"""

from __future__ import annotations

import json
import time
from dataclasses import asdict, dataclass, field
from typing import Any

import redis

from webhook_tasker.common.config import get_settings
from webhook_tasker.common.ids import new_task_id
from webhook_tasker.common.logging import get_project_logger
from webhook_tasker.common.metrics import TASKS_QUEUED_TOTAL
from webhook_tasker.common.time import utc_now_iso

from .config import QueueConfig
from .redis import redis_client

log = get_project_logger()

_BODIES_KEY = "tasks:bodies"


@dataclass
class DeliveryTask:
    """
    Единица работы очереди.
    """

    queue: str
    kind: str
    payload: dict[str, Any]
    id: str = field(default_factory=new_task_id)
    attempts: int = 0
    scheduled_at: float = field(default_factory=time.time)
    created_at: str = field(default_factory=utc_now_iso)
    machine: str | None = None
    last_error: str | None = None

    def to_json(self) -> str:
        return json.dumps(asdict(self), ensure_ascii=False)

    @classmethod
    def from_json(cls, raw: str) -> DeliveryTask:
        data = json.loads(raw)
        return cls(**data)


def schedule_key(queue: str, machine: str) -> str:
    return f"tasks:{queue}:{machine}"


def lease_key(queue: str, machine: str) -> str:
    return f"{schedule_key(queue, machine)}:leases"


def dlq_key(queue: str) -> str:
    return f"{queue}:dlq"


class RedisTaskBackend:
    def __init__(self, client: redis.Redis | None = None, *, lease_sec: float | None = None) -> None:
        self._client = client
        self.lease_sec = lease_sec if lease_sec is not None else get_settings().worker_lease_sec

    @property
    def r(self) -> redis.Redis:
        if self._client is None:
            self._client = redis_client()
        return self._client

    # -------------------------------------------------------------------------
    # Постановка
    # -------------------------------------------------------------------------
    def enqueue(self, task: DeliveryTask, config: QueueConfig, *, delay_sec: float = 0.0) -> str:
        task.queue = config.name
        task.machine = task.machine or config.machine
        task.scheduled_at = time.time() + max(0.0, delay_sec)
        self._store(task)
        TASKS_QUEUED_TOTAL.labels(queue=task.queue, kind=task.kind, mode="redis").inc()
        log.info(
            "task_enqueued",
            extra={
                "payload": {
                    "task_id": task.id,
                    "queue": task.queue,
                    "kind": task.kind,
                    "machine": task.machine,
                }
            },
        )
        return task.id

    def _store(self, task: DeliveryTask) -> None:
        pipe = self.r.pipeline()
        pipe.hset(_BODIES_KEY, task.id, task.to_json())
        pipe.zadd(schedule_key(task.queue, task.machine or ""), {task.id: task.scheduled_at})
        pipe.execute()

    # -------------------------------------------------------------------------
    # Забор к исполнению
    # -------------------------------------------------------------------------
    def claim_due(
        self, queue: str, machine: str, *, limit: int = 50, now: float | None = None
    ) -> list[DeliveryTask]:
        key = schedule_key(queue, machine)
        leases = lease_key(queue, machine)
        now = time.time() if now is None else now
        deadline = now + self.lease_sec
        ids = self.r.zrangebyscore(key, "-inf", now, start=0, num=limit)

        claimed: list[DeliveryTask] = []
        for task_id in ids:
            pipe = self.r.pipeline()
            pipe.zrem(key, task_id)
            pipe.zadd(leases, {task_id: deadline}, nx=True)
            removed, leased = pipe.execute()
            # Кто удалил из расписания, тот и исполняет
            if removed != 1:
                continue
            if not leased:
                self.r.zadd(leases, {task_id: deadline})
            raw = self.r.hget(_BODIES_KEY, task_id)
            if raw is None:
                self.r.zrem(leases, task_id)
                log.warning(
                    "task_body_missing",
                    extra={"payload": {"task_id": task_id, "queue": queue}},
                )
                continue
            claimed.append(DeliveryTask.from_json(raw))
        return claimed

    def reap_expired(
        self, queue: str, machine: str, *, limit: int = 50, now: float | None = None
    ) -> list[DeliveryTask]:
        """
        Задачи, аренда которых истекла (процесс воркера умер посреди попытки).
        Аренда снимается; решение о повторе или DLQ принимает вызывающий.
        """
        leases = lease_key(queue, machine)
        now = time.time() if now is None else now
        ids = self.r.zrangebyscore(leases, "-inf", now, start=0, num=limit)

        expired: list[DeliveryTask] = []
        for task_id in ids:
            if self.r.zrem(leases, task_id) != 1:
                continue
            # Аренда от проигравшего claim: задача завершена или снова в расписании
            if self.r.zscore(schedule_key(queue, machine), task_id) is not None:
                continue
            raw = self.r.hget(_BODIES_KEY, task_id)
            if raw is None:
                continue
            expired.append(DeliveryTask.from_json(raw))
        return expired

    def _release_lease(self, pipe, task: DeliveryTask) -> None:
        pipe.zrem(lease_key(task.queue, task.machine or ""), task.id)

    def complete(self, task: DeliveryTask) -> None:
        pipe = self.r.pipeline()
        pipe.hdel(_BODIES_KEY, task.id)
        self._release_lease(pipe, task)
        pipe.execute()

    def reschedule(self, task: DeliveryTask, *, delay_sec: float, machine: str | None = None) -> None:
        pipe = self.r.pipeline()
        self._release_lease(pipe, task)
        if machine:
            task.machine = machine
        task.scheduled_at = time.time() + max(0.0, delay_sec)
        pipe.hset(_BODIES_KEY, task.id, task.to_json())
        pipe.zadd(schedule_key(task.queue, task.machine or ""), {task.id: task.scheduled_at})
        pipe.execute()

    def dead_letter(self, task: DeliveryTask, *, error: str | None = None) -> None:
        if error:
            task.last_error = error
        pipe = self.r.pipeline()
        pipe.lpush(dlq_key(task.queue), task.to_json())
        pipe.hdel(_BODIES_KEY, task.id)
        self._release_lease(pipe, task)
        pipe.execute()

    # -------------------------------------------------------------------------
    # Наблюдаемость
    # -------------------------------------------------------------------------
    def depth(self, queue: str, *, machine: str) -> int:
        return int(self.r.zcard(schedule_key(queue, machine)))

    def in_flight(self, queue: str, *, machine: str) -> int:
        return int(self.r.zcard(lease_key(queue, machine)))

    def dlq_depth(self, queue: str) -> int:
        return int(self.r.llen(dlq_key(queue)))

    def list_dead_letters(self, queue: str, *, limit: int = 50) -> list[DeliveryTask]:
        raw_items = self.r.lrange(dlq_key(queue), 0, max(0, limit - 1))
        return [DeliveryTask.from_json(raw) for raw in raw_items]


_backend: RedisTaskBackend | None = None


def get_task_backend() -> RedisTaskBackend:
    """
    Singleton backend поверх общего Redis-клиента.
    """
    global _backend
    if _backend is None:
        _backend = RedisTaskBackend()
    return _backend
