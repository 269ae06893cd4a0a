"""
Контракты payload'ов задач доставки вебхуков.

Правила:
- payload JSON-совместим, на проводе camelCase (alias), в Python snake_case
- набор полей варианта фиксирован для версии схемы
- тег варианта: triggerEvent
"""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator
from pydantic.alias_generators import to_camel

from webhook_tasker.common.ids import new_operation_id
from webhook_tasker.common.time import utc_now_iso

from .versions import QUEUE_SCHEMA_VERSION


class _WireModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
        frozen=True,
    )

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class _BasePayload(_WireModel):
    operation_id: str = Field(default_factory=new_operation_id)
    timestamp: str = Field(default_factory=utc_now_iso)
    schema_version: str = QUEUE_SCHEMA_VERSION


class _SubscriberScope(_WireModel):
    """
    Идентификаторы для фильтрации подписчиков.
    """

    user_id: int | None = None
    event_type_id: int | None = None
    team_id: int | None = None
    org_id: int | None = None
    o_auth_client_id: str | None = Field(default=None, alias="oAuthClientId")


def _require_uid(value: str) -> str:
    value = (value or "").strip()
    if not value:
        raise ValueError("correlation id must be a non-empty string")
    return value


class _BookingBase(_BasePayload, _SubscriberScope):
    booking_uid: str

    @field_validator("booking_uid")
    @classmethod
    def _booking_uid_not_empty(cls, v: str) -> str:
        return _require_uid(v)


class BookingLifecyclePayload(_BookingBase):
    trigger_event: Literal[
        "BOOKING_CREATED",
        "BOOKING_CANCELLED",
        "BOOKING_RESCHEDULED",
        "BOOKING_REQUESTED",
        "BOOKING_REJECTED",
    ]
    # Доп. метаданные; в тело вебхука попадают только для BOOKING_REQUESTED
    metadata: dict[str, Any] | None = None


class BookingPaymentPayload(_BookingBase):
    trigger_event: Literal[
        "BOOKING_PAYMENT_INITIATED",
        "BOOKING_PAID",
    ]
    payment_id: int | None = None


class BookingNoShowPayload(_BookingBase):
    trigger_event: Literal["BOOKING_NO_SHOW_UPDATED"]
    attendees: list[dict[str, Any]] | None = None


class FormSubmittedPayload(_BasePayload, _SubscriberScope):
    trigger_event: Literal["FORM_SUBMITTED"]
    form_id: str
    response_id: int

    @field_validator("form_id")
    @classmethod
    def _form_id_not_empty(cls, v: str) -> str:
        return _require_uid(v)


class RecordingReadyPayload(_BookingBase):
    trigger_event: Literal["RECORDING_READY"]
    recording_id: str | None = None
    download_link: str | None = None


class OOOCreatedPayload(_BasePayload, _SubscriberScope):
    trigger_event: Literal["OOO_CREATED"]
    ooo_entry_id: int
    user_id: int


class InvoiceEventPayload(_BasePayload, _SubscriberScope):
    trigger_event: Literal[
        "INVOICE_PAID",
        "INVOICE_PAYMENT_FAILED",
        "INVOICE_PAYMENT_SUCCEEDED",
        "INVOICE_UPCOMING",
    ]
    subscription_id: str
    invoice_id: str | None = None
    lines: list[dict[str, Any]] = Field(default_factory=list)


WebhookTaskPayload = Annotated[
    BookingLifecyclePayload
    | BookingPaymentPayload
    | BookingNoShowPayload
    | FormSubmittedPayload
    | RecordingReadyPayload
    | OOOCreatedPayload
    | InvoiceEventPayload,
    Field(discriminator="trigger_event"),
]

_PAYLOAD_ADAPTER: TypeAdapter[WebhookTaskPayload] = TypeAdapter(WebhookTaskPayload)


def parse_webhook_payload(data: dict[str, Any]) -> WebhookTaskPayload:
    """
    Разбор payload'а задачи (из очереди или от продюсера).
    Бросает pydantic.ValidationError на неизвестный triggerEvent или битые поля.
    """
    return _PAYLOAD_ADAPTER.validate_python(data)


class IncrementUsagePayload(_WireModel):
    """
    Задача очереди platform-billing: инкремент usage по подписке.
    """

    subscription_id: str
    quantity: int = Field(default=1, ge=1)
    organization_id: int | None = None
    operation_id: str = Field(default_factory=new_operation_id)

    @field_validator("subscription_id")
    @classmethod
    def _subscription_id_not_empty(cls, v: str) -> str:
        return _require_uid(v)
