"""
Метрики Prometheus для сервиса.

Назначение:
- Экспорт /metrics
- Счётчики задач очередей, доставки вебхуков и биллинговых событий
- Используется API Gateway и воркерами
"""

from __future__ import annotations

import time
from collections.abc import Iterator
from contextlib import contextmanager

from fastapi import FastAPI, Request
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest

# =============================================================================
# СЧЁТЧИКИ И МЕТРИКИ
# =============================================================================

REQUESTS_TOTAL = Counter(
    "tasker_requests_total",
    "Общее количество HTTP запросов",
    ["service", "route", "method", "status"],
)

HTTP_REQUEST_LATENCY_MS = Histogram(
    "tasker_http_request_latency_ms",
    "Задержка HTTP запроса (мс)",
    ["service", "route", "method"],
    buckets=(5, 10, 25, 50, 100, 250, 500, 1000, 2500, 5000, 10000),
)

# Постановка задач продюсером
TASKS_QUEUED_TOTAL = Counter(
    "tasker_tasks_queued_total",
    "Количество поставленных в очередь задач",
    ["queue", "kind", "mode"],  # mode=redis|inline
)

# Результаты исполнения задач воркерами
QUEUE_TASKS_TOTAL = Counter(
    "tasker_queue_tasks_total",
    "Количество обработанных задач очереди",
    ["service", "queue", "result"],  # success|retry|dead_letter|skipped|oom
)

TASK_LATENCY_MS = Histogram(
    "tasker_task_latency_ms",
    "Длительность исполнения задачи (мс)",
    ["queue", "kind"],
    buckets=(5, 10, 25, 50, 100, 250, 500, 1000, 2500, 5000, 10000, 30000),
)

WEBHOOK_DELIVERIES_TOTAL = Counter(
    "tasker_webhook_deliveries_total",
    "Результаты HTTP доставки вебхуков подписчикам",
    ["trigger_event", "result"],  # ok|http_error|network_error
)

BILLING_WEBHOOK_EVENTS_TOTAL = Counter(
    "tasker_billing_webhook_events_total",
    "Входящие события биллинг-провайдера",
    ["event_type", "result"],  # handled|skipped|duplicate|error
)

QUEUE_DEPTH = Gauge(
    "tasker_queue_depth",
    "Текущая глубина очередей (запланированные задачи)",
    ["queue", "machine"],
)

DLQ_DEPTH = Gauge(
    "tasker_dlq_depth",
    "Текущая глубина DLQ",
    ["queue"],
)

METRICS_COLLECTION_ERRORS_TOTAL = Counter(
    "tasker_metrics_collection_errors_total",
    "Ошибки сборки служебных метрик",
    ["source"],
)


@contextmanager
def track_task_latency(queue: str, kind: str) -> Iterator[None]:
    started = time.perf_counter()
    try:
        yield
    finally:
        elapsed_ms = (time.perf_counter() - started) * 1000
        TASK_LATENCY_MS.labels(queue=queue, kind=kind).observe(elapsed_ms)


def record_billing_event(*, event_type: str, result: str) -> None:
    BILLING_WEBHOOK_EVENTS_TOTAL.labels(event_type=event_type or "unknown", result=result).inc()


def refresh_queue_metrics() -> None:
    try:
        from webhook_tasker.queue.backend import get_task_backend
        from webhook_tasker.queue.config import QUEUE_CONFIGS, machines_for

        backend = get_task_backend()
        for name, config in QUEUE_CONFIGS.items():
            for machine in machines_for(config):
                QUEUE_DEPTH.labels(queue=name, machine=machine).set(
                    backend.depth(name, machine=machine)
                )
            DLQ_DEPTH.labels(queue=name).set(backend.dlq_depth(name))
    except Exception:
        METRICS_COLLECTION_ERRORS_TOTAL.labels(source="queue_metrics").inc()


# =============================================================================
# ENDPOINT /metrics
# =============================================================================
def setup_metrics_endpoint(app: FastAPI) -> None:
    """
    Регистрирует endpoint /metrics для Prometheus.
    """

    @app.middleware("http")
    async def http_metrics(request: Request, call_next):
        route = request.url.path
        method = request.method
        started = time.perf_counter()

        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000
        status_code = str(response.status_code)

        REQUESTS_TOTAL.labels(
            service="api-gateway",
            route=route,
            method=method,
            status=status_code,
        ).inc()
        HTTP_REQUEST_LATENCY_MS.labels(
            service="api-gateway",
            route=route,
            method=method,
        ).observe(elapsed_ms)
        return response

    @app.get("/metrics")
    def metrics() -> Response:
        refresh_queue_metrics()
        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
