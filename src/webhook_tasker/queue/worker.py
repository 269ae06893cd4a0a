"""
Воркер очереди.

Алгоритм:
- забираем из Redis due-задачи своей очереди/машины (не больше свободных слотов)
- исполняем в пуле потоков размером concurrency_limit очереди
- успех → complete
- ExpectedTaskError → info-лог, complete, без ретрая и алерта
- MemoryError → перезапуск на машине большего размера
- прочие ошибки → backoff-ретрай, после исчерпания попыток DLQ
- задачи с истёкшей арендой (процесс умер посреди попытки) возвращаются
  в расписание как OOM: попытка засчитывается, машина повышается

Важно:
- лишние задачи остаются в очереди, воркер их не отклоняет
- таймаут попытки ограничен таймаутами HTTP/провайдер-клиентов
"""

from __future__ import annotations

import random
import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor

from webhook_tasker.common.errors import ErrCode, ExpectedTaskError
from webhook_tasker.common.logging import get_project_logger
from webhook_tasker.common.metrics import QUEUE_TASKS_TOTAL, track_task_latency

from .backend import DeliveryTask, RedisTaskBackend
from .config import QueueConfig, machines_for
from .retry import reschedule_on_larger_machine, reschedule_with_backoff

log = get_project_logger()

TaskHandler = Callable[[DeliveryTask], None]


class QueueWorker:
    def __init__(
        self,
        config: QueueConfig,
        backend: RedisTaskBackend,
        handlers: dict[str, TaskHandler] | None = None,
        machine: str | None = None,
        *,
        service: str | None = None,
        batch_size: int = 50,
        poll_interval_sec: float = 1.0,
        rng: random.Random | None = None,
    ) -> None:
        self.config = config
        self.backend = backend
        self.machines = [machine] if machine else machines_for(config)
        self.service = service or f"worker-{config.name}"
        self.batch_size = max(1, int(batch_size))
        self.poll_interval_sec = poll_interval_sec
        self._handlers: dict[str, TaskHandler] = dict(handlers or {})
        self._rng = rng
        self._pool = ThreadPoolExecutor(
            max_workers=config.concurrency_limit, thread_name_prefix=self.service
        )
        self._inflight: set[Future] = set()
        self._lock = threading.Lock()

    def on_execute(self, kind: str, handler: TaskHandler) -> None:
        self._handlers[kind] = handler

    # -------------------------------------------------------------------------
    # Исполнение одной задачи
    # -------------------------------------------------------------------------
    def execute(self, task: DeliveryTask) -> str:
        """
        Исполняет задачу и сообщает исход backend'у.
        Возвращает метку исхода: success|skipped|retry|dead_letter|oom.
        """
        handler = self._handlers.get(task.kind)
        if handler is None:
            log.error(
                "task_handler_missing",
                extra={"payload": {"task_id": task.id, "queue": task.queue, "kind": task.kind}},
            )
            return self._retry(task, f"{ErrCode.TASK_HANDLER_MISSING}: {task.kind}")

        try:
            with track_task_latency(self.config.name, task.kind):
                handler(task)
        except ExpectedTaskError as e:
            log.info(
                "task_expected_failure",
                extra={"payload": {"task_id": task.id, "queue": task.queue, "err": str(e)[:200]}},
            )
            self.backend.complete(task)
            QUEUE_TASKS_TOTAL.labels(
                service=self.service, queue=self.config.name, result="skipped"
            ).inc()
            return "skipped"
        except MemoryError as e:
            log.warning(
                "task_out_of_memory",
                extra={"payload": {"task_id": task.id, "queue": task.queue, "machine": task.machine}},
            )
            escalated = reschedule_on_larger_machine(
                backend=self.backend,
                task=task,
                config=self.config,
                error=f"{ErrCode.TASK_OUT_OF_MEMORY}: {str(e)[:200]}",
                service=self.service,
            )
            return "oom" if escalated else "dead_letter"
        except Exception as e:
            log.error(
                "task_failed",
                extra={
                    "payload": {
                        "task_id": task.id,
                        "queue": task.queue,
                        "kind": task.kind,
                        "attempts": task.attempts,
                        "err": str(e)[:200],
                    }
                },
            )
            return self._retry(task, str(e))

        self.backend.complete(task)
        QUEUE_TASKS_TOTAL.labels(service=self.service, queue=self.config.name, result="success").inc()
        return "success"

    def _retry(self, task: DeliveryTask, error: str) -> str:
        retried = reschedule_with_backoff(
            backend=self.backend,
            task=task,
            config=self.config,
            error=error,
            service=self.service,
            rng=self._rng,
        )
        return "retry" if retried else "dead_letter"

    # -------------------------------------------------------------------------
    # Цикл
    # -------------------------------------------------------------------------
    def free_slots(self) -> int:
        with self._lock:
            self._inflight = {f for f in self._inflight if not f.done()}
            return self.config.concurrency_limit - len(self._inflight)

    def reap_expired(self, machine: str) -> int:
        """
        Вернуть в расписание задачи, чья аренда истекла.
        Возвращает число возвращённых задач.
        """
        tasks = self.backend.reap_expired(self.config.name, machine, limit=self.batch_size)
        for task in tasks:
            log.warning(
                "task_lease_expired",
                extra={
                    "payload": {
                        "task_id": task.id,
                        "queue": task.queue,
                        "machine": task.machine,
                        "attempts": task.attempts,
                    }
                },
            )
            reschedule_on_larger_machine(
                backend=self.backend,
                task=task,
                config=self.config,
                error=f"{ErrCode.TASK_LEASE_EXPIRED}: machine {task.machine}",
                service=self.service,
            )
        return len(tasks)

    def poll_once(self) -> int:
        """
        Вернуть задачи с истёкшей арендой, затем забрать due-задачи
        в пределах свободных слотов и отправить в пул.
        Возвращает число отправленных задач.
        """
        submitted = 0
        for machine in self.machines:
            self.reap_expired(machine)
            free = self.free_slots()
            if free <= 0:
                break
            tasks = self.backend.claim_due(
                self.config.name, machine, limit=min(free, self.batch_size)
            )
            for task in tasks:
                future = self._pool.submit(self.execute, task)
                with self._lock:
                    self._inflight.add(future)
                submitted += 1
        return submitted

    def run_forever(self, stop: threading.Event | None = None) -> None:
        stop = stop or threading.Event()
        log.info(
            "worker_started",
            extra={
                "payload": {
                    "service": self.service,
                    "queue": self.config.name,
                    "machines": self.machines,
                    "concurrency_limit": self.config.concurrency_limit,
                }
            },
        )
        while not stop.is_set():
            try:
                submitted = self.poll_once()
            except Exception as e:
                log.error(
                    "worker_poll_error",
                    extra={"payload": {"queue": self.config.name, "err": str(e)[:200]}},
                )
                submitted = 0
            if submitted == 0:
                stop.wait(self.poll_interval_sec)

    def shutdown(self, wait: bool = True) -> None:
        self._pool.shutdown(wait=wait)
