"""
Инкремент usage платформенной подписки (очередь platform-billing).

Классификация ошибок:
- ожидаемая: "no such subscription" вместе с "temp"/"sandbox"
  (тестовые и песочные подписки) или "is not usage based" →
  info-лог и ExpectedTaskError: воркер завершает задачу без ретрая и алерта
- прочие → error-лог и проброс (ретрай по политике очереди, затем DLQ)
"""

from __future__ import annotations

from typing import Any

import pydantic

from webhook_tasker.common.errors import ExpectedTaskError, ValidationError
from webhook_tasker.common.logging import get_billing_logger
from webhook_tasker.contracts.payloads import IncrementUsagePayload
from webhook_tasker.queue.backend import DeliveryTask

from .provider import BillingProvider

log = get_billing_logger()


def is_expected_billing_error(err: BaseException | str) -> bool:
    message = str(err).lower()
    if "no such subscription" in message and ("temp" in message or "sandbox" in message):
        return True
    return "is not usage based" in message


class UsageIncrementService:
    def __init__(self, provider: BillingProvider) -> None:
        self.provider = provider

    def handle_task(self, task: DeliveryTask) -> None:
        self.increment_usage(task.payload)

    def increment_usage(self, payload: dict[str, Any]) -> None:
        try:
            usage = IncrementUsagePayload.model_validate(payload)
        except pydantic.ValidationError as e:
            raise ValidationError(
                "Невалидный payload инкремента usage", details={"err": str(e)[:300]}
            ) from e

        ctx = {
            "subscription_id": usage.subscription_id,
            "organization_id": usage.organization_id,
            "quantity": usage.quantity,
            "operation_id": usage.operation_id,
        }
        try:
            self.provider.increment_usage(
                subscription_id=usage.subscription_id,
                quantity=usage.quantity,
                identifier=usage.operation_id,
            )
        except Exception as e:
            if is_expected_billing_error(e):
                log.info("usage_increment_skipped", extra={"payload": {**ctx, "err": str(e)[:200]}})
                raise ExpectedTaskError(str(e)[:200], details={"subscription_id": usage.subscription_id}) from e
            log.error("usage_increment_failed", extra={"payload": {**ctx, "err": str(e)[:200]}})
            raise

        log.info("usage_incremented", extra={"payload": ctx})
