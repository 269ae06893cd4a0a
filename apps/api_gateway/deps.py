"""
FastAPI Depends.

Сюда выносим:
- проверку service API key для служебных endpoint'ов (X-API-Key)
- доступ к AppContext процесса
"""

from __future__ import annotations

import hmac

from fastapi import Header, HTTPException, Request, status

from webhook_tasker.common.config import get_settings
from webhook_tasker.common.errors import ErrCode
from webhook_tasker.common.logging import get_project_logger
from webhook_tasker.container import AppContext, get_app_context

log = get_project_logger()


def _configured_keys() -> list[str]:
    raw = get_settings().service_api_keys or ""
    return [k.strip() for k in raw.split(",") if k.strip()]


def _is_prod_env() -> bool:
    return (get_settings().app_env or "").strip().lower() in {"prod", "production"}


def service_auth_dep(
    request: Request,
    x_api_key: str | None = Header(default=None, alias="X-API-Key"),
) -> None:
    keys = _configured_keys()
    if not keys and not _is_prod_env():
        return
    if x_api_key and any(hmac.compare_digest(x_api_key, k) for k in keys):
        return

    log.warning(
        "service_auth_denied",
        extra={"payload": {"path": request.url.path, "has_key": bool(x_api_key)}},
    )
    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"code": ErrCode.UNAUTHORIZED, "message": "Требуется service API key"},
    )


def app_context_dep() -> AppContext:
    return get_app_context()
