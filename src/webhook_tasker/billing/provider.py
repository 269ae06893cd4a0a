"""
Биллинг-провайдер (Stripe).

Назначение:
- единый контракт BillingProvider для стратегий, usage-задач и обработчиков вебхуков
- StripeBillingProvider поверх официального SDK stripe
- проверка подписи входящих вебхуков провайдера

Важно:
- ошибки SDK заворачиваются в ProviderError с исходным сообщением провайдера
  (по нему классифицируются ожидаемые ошибки биллинга)
- не логировать платёжные данные, только id
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

import stripe

from webhook_tasker.common.config import get_settings
from webhook_tasker.common.errors import ErrCode, ProviderError
from webhook_tasker.common.logging import get_billing_logger

log = get_billing_logger()


@dataclass
class ProviderSubscriptionItem:
    id: str
    quantity: int | None = None
    usage_type: str | None = None  # licensed|metered


@dataclass
class ProviderSubscription:
    id: str
    customer: str | None
    status: str | None
    current_period_start: int | None
    current_period_end: int | None
    items: list[ProviderSubscriptionItem] = field(default_factory=list)

    @property
    def is_usage_based(self) -> bool:
        return any(item.usage_type == "metered" for item in self.items)


class BillingProvider(Protocol):
    def get_payment_intent_failure_reason(self, payment_intent_id: str) -> str | None: ...

    def get_subscription(self, subscription_id: str) -> ProviderSubscription | None: ...

    def update_subscription_quantity(
        self, *, subscription_id: str, subscription_item_id: str, quantity: int
    ) -> None: ...

    def increment_usage(
        self, *, subscription_id: str, quantity: int, identifier: str | None = None
    ) -> None: ...


def _collapse_id(value: Any) -> str | None:
    if value is None or isinstance(value, str):
        return value
    return getattr(value, "id", None)


def _to_subscription(obj: Any) -> ProviderSubscription:
    # StripeObject наследует dict: "items" читаем через get, а не атрибутом (dict.items)
    raw_items = (obj.get("items") or {}).get("data") or []
    items: list[ProviderSubscriptionItem] = []
    for item in raw_items:
        price = item.get("price") or {}
        recurring = price.get("recurring") or {}
        items.append(
            ProviderSubscriptionItem(
                id=item.get("id"),
                quantity=item.get("quantity"),
                usage_type=recurring.get("usage_type"),
            )
        )

    # Новые версии API держат окно периода на items
    period_source = obj if obj.get("current_period_start") else (raw_items[0] if raw_items else {})
    return ProviderSubscription(
        id=obj.get("id"),
        customer=_collapse_id(obj.get("customer")),
        status=obj.get("status"),
        current_period_start=period_source.get("current_period_start"),
        current_period_end=period_source.get("current_period_end"),
        items=items,
    )


class StripeBillingProvider:
    def __init__(
        self,
        *,
        api_key: str | None = None,
        usage_event_name: str | None = None,
        timeout_sec: int | None = None,
        client: stripe.StripeClient | None = None,
    ) -> None:
        s = get_settings()
        self.api_key = api_key or s.stripe_api_key
        self.usage_event_name = usage_event_name or s.stripe_usage_event_name
        self.timeout_sec = timeout_sec or s.stripe_timeout_sec
        self._client = client

    @property
    def client(self) -> stripe.StripeClient:
        if self._client is None:
            if not self.api_key:
                raise ProviderError(ErrCode.BILLING_PROVIDER_ERROR, "STRIPE_API_KEY не задан")
            self._client = stripe.StripeClient(
                self.api_key,
                http_client=stripe.RequestsClient(timeout=self.timeout_sec),
            )
        return self._client

    def _wrap(self, op: str, e: stripe.StripeError, **ids: Any) -> ProviderError:
        message = getattr(e, "user_message", None) or str(e)
        log.warning(
            "billing_provider_error",
            extra={"payload": {"op": op, **ids, "err": message[:200]}},
        )
        return ProviderError(
            ErrCode.BILLING_PROVIDER_ERROR,
            message,
            {"op": op, **ids, "http_status": getattr(e, "http_status", None)},
        )

    def get_payment_intent_failure_reason(self, payment_intent_id: str) -> str | None:
        try:
            intent = self.client.payment_intents.retrieve(payment_intent_id)
        except stripe.StripeError as e:
            raise self._wrap("payment_intent_retrieve", e, payment_intent_id=payment_intent_id) from e

        last_error = intent.get("last_payment_error")
        if not last_error:
            return None
        return (
            last_error.get("decline_code")
            or last_error.get("code")
            or last_error.get("message")
            or None
        )

    def get_subscription(self, subscription_id: str) -> ProviderSubscription | None:
        try:
            obj = self.client.subscriptions.retrieve(subscription_id)
        except stripe.InvalidRequestError as e:
            if getattr(e, "http_status", None) == 404:
                return None
            raise self._wrap("subscription_retrieve", e, subscription_id=subscription_id) from e
        except stripe.StripeError as e:
            raise self._wrap("subscription_retrieve", e, subscription_id=subscription_id) from e
        return _to_subscription(obj)

    def update_subscription_quantity(
        self, *, subscription_id: str, subscription_item_id: str, quantity: int
    ) -> None:
        try:
            self.client.subscription_items.update(
                subscription_item_id,
                params={"quantity": int(quantity), "proration_behavior": "none"},
            )
        except stripe.StripeError as e:
            raise self._wrap(
                "subscription_item_update",
                e,
                subscription_id=subscription_id,
                subscription_item_id=subscription_item_id,
            ) from e
        log.info(
            "billing_quantity_updated",
            extra={
                "payload": {
                    "subscription_id": subscription_id,
                    "subscription_item_id": subscription_item_id,
                    "quantity": quantity,
                }
            },
        )

    def increment_usage(
        self, *, subscription_id: str, quantity: int, identifier: str | None = None
    ) -> None:
        try:
            obj = self.client.subscriptions.retrieve(subscription_id)
        except stripe.StripeError as e:
            raise self._wrap("subscription_retrieve", e, subscription_id=subscription_id) from e

        subscription = _to_subscription(obj)
        if not subscription.is_usage_based:
            raise ProviderError(
                ErrCode.BILLING_PROVIDER_ERROR,
                f"Subscription {subscription_id} is not usage based",
                {"subscription_id": subscription_id},
            )

        params: dict[str, Any] = {
            "event_name": self.usage_event_name,
            "payload": {
                "stripe_customer_id": subscription.customer or "",
                "value": str(int(quantity)),
            },
        }
        if identifier:
            params["identifier"] = identifier
        try:
            self.client.billing.meter_events.create(params=params)
        except stripe.StripeError as e:
            raise self._wrap("meter_event_create", e, subscription_id=subscription_id) from e


# =============================================================================
# ВХОДЯЩИЕ ВЕБХУКИ
# =============================================================================
def verify_webhook_signature(
    payload: str, sig_header: str | None, secret: str | None, *, tolerance: int = 300
) -> None:
    """
    Проверка подписи Stripe-Signature.
    Бросает stripe.SignatureVerificationError при несовпадении.
    """
    if not secret:
        raise ProviderError(ErrCode.BILLING_PROVIDER_ERROR, "STRIPE_WEBHOOK_SECRET не задан")
    stripe.WebhookSignature.verify_header(payload, sig_header or "", secret, tolerance)
