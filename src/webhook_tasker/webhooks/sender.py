"""
HTTP-доставка вебхуков подписчикам.

Назначение:
- POST JSON на URL подписчика с подписью и версией контракта
- ограниченный таймаут на попытку (таймаут = транзиентная ошибка)
- 2xx = успех, всё остальное = неуспешная доставка

Важно:
- не логировать тело вебхука (там могут быть PII участников)
- логировать только метаданные (url, статус, длительность)
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any

import requests

from webhook_tasker.common.config import get_settings
from webhook_tasker.common.logging import get_project_logger
from webhook_tasker.common.metrics import WEBHOOK_DELIVERIES_TOTAL

from .signing import SIGNATURE_HEADER, VERSION_HEADER, sign_body
from .subscribers import WebhookSubscriber

log = get_project_logger()


@dataclass
class DeliveryResult:
    """
    Результат доставки.
    """

    ok: bool
    provider: str
    status_code: int | None = None
    error: str | None = None
    meta: dict[str, Any] | None = None


def ok_result(provider: str, status_code: int, meta: dict | None = None) -> DeliveryResult:
    return DeliveryResult(ok=True, provider=provider, status_code=status_code, meta=meta)


def fail_result(
    provider: str, error: str, status_code: int | None = None, meta: dict | None = None
) -> DeliveryResult:
    return DeliveryResult(
        ok=False, provider=provider, status_code=status_code, error=error, meta=meta
    )


class HttpWebhookSender:
    provider = "http"

    def __init__(
        self,
        *,
        session: requests.Session | None = None,
        timeout_sec: float | None = None,
        user_agent: str | None = None,
    ) -> None:
        s = get_settings()
        self.session = session or requests.Session()
        self.timeout_sec = timeout_sec if timeout_sec is not None else s.webhook_timeout_sec
        self.user_agent = user_agent or s.webhook_user_agent
        self.response_log_max_len = s.webhook_response_log_max_len

    def send(
        self,
        *,
        subscriber: WebhookSubscriber,
        trigger_event: str,
        body: str,
        content_type: str = "application/json",
    ) -> DeliveryResult:
        headers = {
            "Content-Type": content_type,
            "User-Agent": self.user_agent,
            SIGNATURE_HEADER: sign_body(body, subscriber.secret),
            VERSION_HEADER: subscriber.version,
        }
        started = time.perf_counter()
        try:
            resp = self.session.post(
                subscriber.subscriber_url,
                data=body.encode("utf-8"),
                headers=headers,
                timeout=self.timeout_sec,
            )
        except requests.RequestException as e:
            WEBHOOK_DELIVERIES_TOTAL.labels(trigger_event=trigger_event, result="network_error").inc()
            log.warning(
                "webhook_http_error",
                extra={
                    "payload": {
                        "subscriber_id": subscriber.id,
                        "url": subscriber.subscriber_url,
                        "err": str(e)[:200],
                    }
                },
            )
            return fail_result(self.provider, str(e)[:500], meta={"kind": type(e).__name__})

        elapsed_ms = int((time.perf_counter() - started) * 1000)
        if 200 <= resp.status_code < 300:
            WEBHOOK_DELIVERIES_TOTAL.labels(trigger_event=trigger_event, result="ok").inc()
            log.info(
                "webhook_delivered",
                extra={
                    "payload": {
                        "subscriber_id": subscriber.id,
                        "status": resp.status_code,
                        "elapsed_ms": elapsed_ms,
                    }
                },
            )
            return ok_result(self.provider, resp.status_code, meta={"elapsed_ms": elapsed_ms})

        WEBHOOK_DELIVERIES_TOTAL.labels(trigger_event=trigger_event, result="http_error").inc()
        text_head = (resp.text or "")[: self.response_log_max_len]
        log.warning(
            "webhook_rejected",
            extra={
                "payload": {
                    "subscriber_id": subscriber.id,
                    "url": subscriber.subscriber_url,
                    "status": resp.status_code,
                    "text_head": text_head,
                }
            },
        )
        return fail_result(
            self.provider,
            f"HTTP {resp.status_code}",
            status_code=resp.status_code,
            meta={"text_head": text_head, "elapsed_ms": elapsed_ms},
        )
