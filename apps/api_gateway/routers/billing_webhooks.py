"""
Приём вебхуков биллинг-провайдера.

POST /v1/billing/webhook:
- проверка Stripe-Signature по сырому телу
- 400: неверная подпись или тело не JSON-объект
- 200: {"success": true, ...} включая сознательные пропуски
- 500: неожиданная ошибка обработки (провайдер повторит доставку)
"""

from __future__ import annotations

import json

import stripe
from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from fastapi.concurrency import run_in_threadpool

from apps.api_gateway.deps import app_context_dep
from webhook_tasker.billing.provider import verify_webhook_signature
from webhook_tasker.common.config import get_settings
from webhook_tasker.common.errors import ErrCode, ProviderError
from webhook_tasker.common.logging import get_billing_logger
from webhook_tasker.container import AppContext

router = APIRouter()
log = get_billing_logger()


@router.post("/billing/webhook")
async def billing_webhook(
    request: Request,
    stripe_signature: str | None = Header(default=None, alias="Stripe-Signature"),
    ctx: AppContext = Depends(app_context_dep),
) -> dict:
    raw = (await request.body()).decode("utf-8")

    try:
        verify_webhook_signature(raw, stripe_signature, get_settings().stripe_webhook_secret)
    except stripe.SignatureVerificationError as e:
        log.warning("billing_webhook_bad_signature", extra={"payload": {"err": str(e)[:200]}})
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": ErrCode.VALIDATION, "message": "Неверная подпись"},
        ) from e
    except ProviderError as e:
        log.error("billing_webhook_not_configured", extra={"payload": {"err": e.message}})
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"code": e.code, "message": e.message},
        ) from e

    try:
        envelope = json.loads(raw)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": ErrCode.VALIDATION, "message": "Тело не является JSON"},
        ) from e
    if not isinstance(envelope, dict):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": ErrCode.VALIDATION, "message": "Ожидался JSON-объект события"},
        )

    try:
        result = await run_in_threadpool(ctx.billing_handlers.handle_billing_event, envelope)
    except Exception as e:
        log.error(
            "billing_webhook_failed",
            extra={"payload": {"event_id": envelope.get("id"), "err": str(e)[:200]}},
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"success": False, "message": "billing webhook processing failed"},
        ) from e

    return result.as_dict()
