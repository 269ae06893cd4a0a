"""
Обработка входящих вебхуков биллинг-провайдера.

Назначение:
- invoice.paid (продление периода), invoice.payment_failed / invoice.payment_succeeded
  (исход оплаты пророции), invoice.upcoming (пересчёт количества для active_users)
- дедупликация по id события провайдера
- маршрутизация в стратегию подписки через SeatBillingStrategyFactory

Контракт ответа: {"success": True, "handled"?: bool, "message"?: str}.
success=True и для пропусков: провайдер не должен повторять событие,
которое мы сознательно не обрабатываем. Невалидный конверт или объект
инвойса тоже пропуск: {"success": True, "handled": False, "message": "invalid <type> payload"}.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import pydantic

from webhook_tasker.common.config import get_settings
from webhook_tasker.common.logging import get_billing_logger
from webhook_tasker.common.metrics import record_billing_event
from webhook_tasker.common.time import from_unix
from webhook_tasker.contracts.billing_events import (
    RENEWAL_BILLING_REASON,
    BillingEvent,
    InvoiceObject,
    InvoicePaidObject,
)
from webhook_tasker.queue.idempotency import check_and_set, release

from .factory import SeatBillingStrategyFactory
from .provider import BillingProvider

log = get_billing_logger()

IDEMPOTENCY_SCOPE = "billing_event"

NOT_SUBSCRIPTION_INVOICE = "not a subscription invoice"
UNHANDLED_EVENT_TYPE = "unhandled event type"
DUPLICATE_EVENT = "duplicate event"


@dataclass(frozen=True)
class BillingWebhookResult:
    success: bool = True
    handled: bool | None = None
    message: str | None = None

    def as_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"success": self.success}
        if self.handled is not None:
            out["handled"] = self.handled
        if self.message is not None:
            out["message"] = self.message
        return out


def _invalid_payload(event_type: str) -> BillingWebhookResult:
    return BillingWebhookResult(handled=False, message=f"invalid {event_type} payload")


def _raw_subscription_id(obj: dict[str, Any]) -> str | None:
    value = obj.get("subscription")
    if isinstance(value, dict):
        return value.get("id")
    return value or None


class BillingWebhookHandlers:
    def __init__(
        self,
        *,
        factory: SeatBillingStrategyFactory,
        provider: BillingProvider,
        idempotency_ttl_sec: int | None = None,
    ) -> None:
        self.factory = factory
        self.provider = provider
        self.idempotency_ttl_sec = (
            idempotency_ttl_sec or get_settings().billing_event_idempotency_ttl_sec
        )
        self._handlers: dict[str, Callable[[dict[str, Any]], BillingWebhookResult]] = {
            "invoice.paid": self.handle_invoice_paid,
            "invoice.payment_failed": self.handle_invoice_payment_failed,
            "invoice.payment_succeeded": self.handle_invoice_payment_succeeded,
            "invoice.upcoming": self.handle_invoice_upcoming,
        }

    @property
    def event_types(self) -> list[str]:
        return sorted(self._handlers)

    # -------------------------------------------------------------------------
    # Конверт события
    # -------------------------------------------------------------------------
    def handle_billing_event(self, envelope: dict[str, Any]) -> BillingWebhookResult:
        try:
            event = BillingEvent.model_validate(envelope)
        except pydantic.ValidationError as e:
            # 200 с пропуском: провайдер не повторяет доставку
            event_type = envelope.get("type")
            event_type = event_type if isinstance(event_type, str) and event_type else "billing event"
            log.warning(
                "billing_event_payload_invalid",
                extra={
                    "payload": {
                        "event_id": envelope.get("id"),
                        "event_type": event_type,
                        "err": str(e)[:300],
                    }
                },
            )
            record_billing_event(event_type=event_type, result="invalid")
            return _invalid_payload(event_type)

        handler = self._handlers.get(event.type)
        if handler is None:
            record_billing_event(event_type=event.type, result="skipped")
            return BillingWebhookResult(handled=False, message=UNHANDLED_EVENT_TYPE)

        if not check_and_set(IDEMPOTENCY_SCOPE, event.id, ttl_sec=self.idempotency_ttl_sec):
            log.info(
                "billing_event_duplicate",
                extra={"payload": {"event_id": event.id, "event_type": event.type}},
            )
            record_billing_event(event_type=event.type, result="duplicate")
            return BillingWebhookResult(handled=False, message=DUPLICATE_EVENT)

        try:
            result = handler(event.data.object)
        except Exception as e:
            release(IDEMPOTENCY_SCOPE, event.id)
            record_billing_event(event_type=event.type, result="error")
            log.error(
                "billing_event_failed",
                extra={
                    "payload": {
                        "event_id": event.id,
                        "event_type": event.type,
                        "err": str(e)[:200],
                    }
                },
            )
            raise

        record_billing_event(
            event_type=event.type, result="handled" if result.handled else "skipped"
        )
        log.info(
            "billing_event_processed",
            extra={
                "payload": {
                    "event_id": event.id,
                    "event_type": event.type,
                    "handled": result.handled,
                    "message": result.message,
                }
            },
        )
        return result

    # -------------------------------------------------------------------------
    # invoice.paid
    # -------------------------------------------------------------------------
    def handle_invoice_paid(self, obj: dict[str, Any]) -> BillingWebhookResult:
        if _raw_subscription_id(obj) is None:
            return BillingWebhookResult(message=NOT_SUBSCRIPTION_INVOICE)

        try:
            invoice = InvoicePaidObject.model_validate(obj)
        except pydantic.ValidationError as e:
            log.warning(
                "invoice_paid_payload_invalid",
                extra={"payload": {"invoice_id": obj.get("id"), "err": str(e)[:300]}},
            )
            return _invalid_payload("invoice.paid")

        if invoice.billing_reason != RENEWAL_BILLING_REASON:
            return BillingWebhookResult(handled=False, message="not a renewal invoice")

        period_start = invoice.first_period_start()
        if period_start is None:
            log.warning(
                "invoice_paid_period_missing",
                extra={
                    "payload": {"invoice_id": invoice.id, "subscription_id": invoice.subscription}
                },
            )
            return BillingWebhookResult()

        strategy = self.factory.create_by_subscription_id(invoice.subscription)
        result = strategy.on_renewal_paid(invoice.subscription, from_unix(period_start))
        return BillingWebhookResult(handled=result.handled)

    # -------------------------------------------------------------------------
    # invoice.payment_failed / invoice.payment_succeeded
    # -------------------------------------------------------------------------
    def handle_invoice_payment_failed(self, obj: dict[str, Any]) -> BillingWebhookResult:
        if _raw_subscription_id(obj) is None:
            return BillingWebhookResult(message=NOT_SUBSCRIPTION_INVOICE)
        invoice = self._parse_invoice(obj, "invoice.payment_failed")
        if invoice is None:
            return _invalid_payload("invoice.payment_failed")

        fallback = invoice.status or "payment_failed"
        if invoice.payment_intent:
            reason = self.provider.get_payment_intent_failure_reason(invoice.payment_intent) or fallback
        else:
            reason = fallback

        strategy = self.factory.create_by_subscription_id(invoice.subscription)
        result = strategy.on_payment_failed(invoice.lines, reason)
        return BillingWebhookResult(handled=result.handled)

    def handle_invoice_payment_succeeded(self, obj: dict[str, Any]) -> BillingWebhookResult:
        if _raw_subscription_id(obj) is None:
            return BillingWebhookResult(message=NOT_SUBSCRIPTION_INVOICE)
        invoice = self._parse_invoice(obj, "invoice.payment_succeeded")
        if invoice is None:
            return _invalid_payload("invoice.payment_succeeded")

        strategy = self.factory.create_by_subscription_id(invoice.subscription)
        result = strategy.on_payment_succeeded(invoice.lines)
        return BillingWebhookResult(handled=result.handled)

    # -------------------------------------------------------------------------
    # invoice.upcoming
    # -------------------------------------------------------------------------
    def handle_invoice_upcoming(self, obj: dict[str, Any]) -> BillingWebhookResult:
        if _raw_subscription_id(obj) is None:
            return BillingWebhookResult(message=NOT_SUBSCRIPTION_INVOICE)
        invoice = self._parse_invoice(obj, "invoice.upcoming")
        if invoice is None:
            return _invalid_payload("invoice.upcoming")

        strategy = self.factory.create_by_subscription_id(invoice.subscription)
        result = strategy.on_invoice_upcoming(invoice.subscription)
        return BillingWebhookResult(handled=result.handled)

    @staticmethod
    def _parse_invoice(obj: dict[str, Any], event_type: str) -> InvoiceObject | None:
        try:
            return InvoiceObject.model_validate(obj)
        except pydantic.ValidationError as e:
            log.warning(
                "invoice_payload_invalid",
                extra={
                    "payload": {
                        "invoice_id": obj.get("id"),
                        "event_type": event_type,
                        "err": str(e)[:300],
                    }
                },
            )
            return None
