"""
Service-only admin endpoints.

Назначение:
- глубина очередей по machine-пресетам и DLQ
- просмотр dead-letter задач очереди
- доступ только по service API key
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel

from apps.api_gateway.deps import app_context_dep, service_auth_dep
from webhook_tasker.common.errors import NotFoundError
from webhook_tasker.container import AppContext
from webhook_tasker.queue.config import QUEUE_CONFIGS, get_queue_config, machines_for

router = APIRouter()


class QueueDepthItem(BaseModel):
    queue: str
    concurrency_limit: int
    depth: dict[str, int]
    in_flight: dict[str, int] = {}
    dlq_depth: int
    error: str | None = None


class QueueDepthResponse(BaseModel):
    queues: list[QueueDepthItem]


class DeadLetterItem(BaseModel):
    id: str
    kind: str
    attempts: int
    created_at: str
    last_error: str | None = None
    payload: dict[str, Any]


class DeadLetterResponse(BaseModel):
    queue: str
    total: int
    items: list[DeadLetterItem]


@router.get(
    "/admin/queues",
    response_model=QueueDepthResponse,
    dependencies=[Depends(service_auth_dep)],
)
def admin_queues(ctx: AppContext = Depends(app_context_dep)) -> QueueDepthResponse:
    items: list[QueueDepthItem] = []
    for name, config in QUEUE_CONFIGS.items():
        try:
            depth = {m: ctx.backend.depth(name, machine=m) for m in machines_for(config)}
            in_flight = {m: ctx.backend.in_flight(name, machine=m) for m in machines_for(config)}
            dlq = ctx.backend.dlq_depth(name)
            items.append(
                QueueDepthItem(
                    queue=name,
                    concurrency_limit=config.concurrency_limit,
                    depth=depth,
                    in_flight=in_flight,
                    dlq_depth=dlq,
                )
            )
        except Exception as e:
            items.append(
                QueueDepthItem(
                    queue=name,
                    concurrency_limit=config.concurrency_limit,
                    depth={},
                    dlq_depth=0,
                    error=str(e)[:200],
                )
            )
    return QueueDepthResponse(queues=items)


@router.get(
    "/admin/queues/{name}/dlq",
    response_model=DeadLetterResponse,
    dependencies=[Depends(service_auth_dep)],
)
def admin_queue_dlq(
    name: str,
    limit: int = Query(default=50, ge=1, le=500),
    ctx: AppContext = Depends(app_context_dep),
) -> DeadLetterResponse:
    try:
        get_queue_config(name)
    except NotFoundError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"code": e.code, "message": e.message},
        ) from e

    tasks = ctx.backend.list_dead_letters(name, limit=limit)
    return DeadLetterResponse(
        queue=name,
        total=ctx.backend.dlq_depth(name),
        items=[
            DeadLetterItem(
                id=t.id,
                kind=t.kind,
                attempts=t.attempts,
                created_at=t.created_at,
                last_error=t.last_error,
                payload=t.payload,
            )
            for t in tasks
        ],
    )
