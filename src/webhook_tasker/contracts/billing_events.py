"""
Контракты входящих событий биллинг-провайдера (Stripe-подобные конверты).

Правила:
- поля провайдера в snake_case, лишние поля игнорируются
- subscription / payment_intent приходят строкой id или развёрнутым объектом с id
- битый payload падает на разборе (pydantic.ValidationError) до любых мутаций
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, StrictStr, field_validator

PRORATION_LINE_TYPE = "seat_proration"
RENEWAL_BILLING_REASON = "subscription_cycle"


def _expandable_id(value: Any) -> Any:
    """
    Развёрнутый объект провайдера ({"id": ..., ...}) сворачиваем до id.
    """
    if isinstance(value, dict):
        return value.get("id")
    return value


class _ProviderModel(BaseModel):
    model_config = ConfigDict(extra="ignore")


class LinePeriod(_ProviderModel):
    start: int | None = None
    end: int | None = None


class InvoiceLineItem(_ProviderModel):
    id: str | None = None
    metadata: dict[str, str] = Field(default_factory=dict)
    period: LinePeriod | None = None
    subscription_item: str | None = None
    quantity: int | None = None
    amount: int | None = None

    @field_validator("subscription_item", mode="before")
    @classmethod
    def _collapse_item(cls, v: Any) -> Any:
        return _expandable_id(v)

    @property
    def is_proration(self) -> bool:
        return self.metadata.get("type") == PRORATION_LINE_TYPE

    @property
    def proration_id(self) -> str | None:
        return self.metadata.get("prorationId") or None


class InvoiceLines(_ProviderModel):
    data: list[InvoiceLineItem] = Field(default_factory=list)


class InvoiceObject(_ProviderModel):
    id: str | None = None
    customer: str | None = None
    subscription: str | None = None
    payment_intent: str | None = None
    status: str | None = None
    billing_reason: str | None = None
    lines: InvoiceLines = Field(default_factory=InvoiceLines)

    @field_validator("subscription", "payment_intent", "customer", mode="before")
    @classmethod
    def _collapse_expandable(cls, v: Any) -> Any:
        return _expandable_id(v)

    def first_period_start(self) -> int | None:
        if not self.lines.data:
            return None
        period = self.lines.data[0].period
        return period.start if period else None


class InvoicePaidObject(InvoiceObject):
    """
    Строгая схема для invoice.paid: обязательны subscription, customer и lines.
    """

    customer: StrictStr
    subscription: StrictStr
    billing_reason: StrictStr | None
    lines: InvoiceLines


class EventData(_ProviderModel):
    object: dict[str, Any]


class BillingEvent(_ProviderModel):
    id: str
    type: str
    created: int | None = None
    livemode: bool = False
    data: EventData
