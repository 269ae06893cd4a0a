"""
API Gateway (FastAPI).

Функции:
- /health
- /metrics
- POST /v1/billing/webhook: вебхуки биллинг-провайдера
- /v1/admin/queues: служебный просмотр очередей и DLQ
"""

from __future__ import annotations

from typing import Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from apps.api_gateway.routers.admin import router as admin_router
from apps.api_gateway.routers.billing_webhooks import router as billing_router
from webhook_tasker.common.config import get_settings
from webhook_tasker.common.logging import get_project_logger, setup_logging
from webhook_tasker.common.metrics import setup_metrics_endpoint
from webhook_tasker.contracts.versions import HTTP_API_VERSION

log = get_project_logger()


def _parse_origins(raw: str) -> list[str]:
    origins = [o.strip() for o in (raw or "").split(",") if o.strip()]
    return origins or ["*"]


def _is_prod_env(app_env: str | None) -> bool:
    env = (app_env or "").strip().lower()
    return env in {"prod", "production"}


def _cors_origins() -> list[str]:
    settings = get_settings()
    allow_origins = _parse_origins(settings.cors_allowed_origins)
    if _is_prod_env(settings.app_env) and "*" in allow_origins:
        raise RuntimeError("CORS wildcard '*' запрещён в APP_ENV=prod")
    return allow_origins


def _create_app() -> FastAPI:
    app = FastAPI(title="Webhook Tasker", version="0.1.0")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=_cors_origins(),
        allow_methods=["*"],
        allow_headers=["*"],
        allow_credentials=False,
    )

    setup_metrics_endpoint(app)

    @app.get("/health")
    def health() -> dict[str, Any]:
        return {"ok": True, "api_version": HTTP_API_VERSION}

    app.include_router(billing_router, prefix="/v1")
    app.include_router(admin_router, prefix="/v1")

    return app


setup_logging()
log.info("api_gateway_ready")

app = _create_app()
