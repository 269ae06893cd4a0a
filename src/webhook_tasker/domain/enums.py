"""
Доменные перечисления (enum).

Используются во всей системе:
- типы событий вебхуков (triggerEvent)
- режимы биллинга подписки
- статусы записей пророции
"""

from __future__ import annotations

import enum


class WebhookTriggerEvent(str, enum.Enum):
    """
    Тег события, по которому подписчик фильтрует вебхуки.
    """

    BOOKING_CREATED = "BOOKING_CREATED"
    BOOKING_CANCELLED = "BOOKING_CANCELLED"
    BOOKING_RESCHEDULED = "BOOKING_RESCHEDULED"
    BOOKING_REQUESTED = "BOOKING_REQUESTED"
    BOOKING_REJECTED = "BOOKING_REJECTED"
    BOOKING_PAYMENT_INITIATED = "BOOKING_PAYMENT_INITIATED"
    BOOKING_PAID = "BOOKING_PAID"
    BOOKING_NO_SHOW_UPDATED = "BOOKING_NO_SHOW_UPDATED"
    FORM_SUBMITTED = "FORM_SUBMITTED"
    RECORDING_READY = "RECORDING_READY"
    OOO_CREATED = "OOO_CREATED"
    INVOICE_PAID = "INVOICE_PAID"
    INVOICE_PAYMENT_FAILED = "INVOICE_PAYMENT_FAILED"
    INVOICE_PAYMENT_SUCCEEDED = "INVOICE_PAYMENT_SUCCEEDED"
    INVOICE_UPCOMING = "INVOICE_UPCOMING"


BOOKING_LIFECYCLE_EVENTS = frozenset(
    {
        WebhookTriggerEvent.BOOKING_CREATED,
        WebhookTriggerEvent.BOOKING_CANCELLED,
        WebhookTriggerEvent.BOOKING_RESCHEDULED,
        WebhookTriggerEvent.BOOKING_REQUESTED,
        WebhookTriggerEvent.BOOKING_REJECTED,
    }
)

PAYMENT_EVENTS = frozenset(
    {
        WebhookTriggerEvent.BOOKING_PAYMENT_INITIATED,
        WebhookTriggerEvent.BOOKING_PAID,
    }
)

INVOICE_EVENTS = frozenset(
    {
        WebhookTriggerEvent.INVOICE_PAID,
        WebhookTriggerEvent.INVOICE_PAYMENT_FAILED,
        WebhookTriggerEvent.INVOICE_PAYMENT_SUCCEEDED,
        WebhookTriggerEvent.INVOICE_UPCOMING,
    }
)


class WebhookVersion(str, enum.Enum):
    V_2021_10_20 = "2021-10-20"


DEFAULT_WEBHOOK_VERSION = WebhookVersion.V_2021_10_20


class BillingMode(str, enum.Enum):
    """
    Как тарифицируется подписка.
    """

    flat_seats = "flat_seats"
    active_users = "active_users"


class BillingPeriod(str, enum.Enum):
    monthly = "monthly"
    annually = "annually"


class ProrationStatus(str, enum.Enum):
    pending = "pending"
    charged = "charged"
    failed = "failed"


class PaymentOutcome(str, enum.Enum):
    """
    Исход оплаты инвойса, пришедший из вебхука провайдера.
    """

    succeeded = "succeeded"
    failed = "failed"


class SeatChangeType(str, enum.Enum):
    addition = "addition"
    removal = "removal"
    sync = "sync"
