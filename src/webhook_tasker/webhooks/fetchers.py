"""
Загрузчики данных события для консьюмера вебхуков.

Назначение:
- каждый загрузчик сам знает, какие триггеры он обслуживает (can_handle)
- fetch_event_data подтягивает актуальные данные из внешнего источника
  (бронирования, формы, OOO) на момент доставки
- None от источника = данных нет, доставку пропускаем

Если источник не подключён, телом события служат поля самого payload'а.
"""

from __future__ import annotations

from typing import Any, Protocol

from webhook_tasker.contracts.payloads import BookingNoShowPayload, WebhookTaskPayload
from webhook_tasker.domain.enums import (
    BOOKING_LIFECYCLE_EVENTS,
    INVOICE_EVENTS,
    PAYMENT_EVENTS,
    WebhookTriggerEvent,
)

# Служебные поля задачи, которые не уходят подписчику
_BOOKKEEPING_FIELDS = ("operationId", "timestamp", "schemaVersion", "triggerEvent")


class BookingDataSource(Protocol):
    def get_booking(self, booking_uid: str) -> dict[str, Any] | None: ...


class FormResponseSource(Protocol):
    def get_form_response(self, form_id: str, response_id: int) -> dict[str, Any] | None: ...


class OOOEntrySource(Protocol):
    def get_ooo_entry(self, ooo_entry_id: int) -> dict[str, Any] | None: ...


class WebhookDataFetcher(Protocol):
    def can_handle(self, trigger_event: str) -> bool: ...

    def fetch_event_data(self, payload: WebhookTaskPayload) -> dict[str, Any] | None: ...


def _payload_fields(payload: WebhookTaskPayload) -> dict[str, Any]:
    data = payload.to_wire()
    for key in _BOOKKEEPING_FIELDS:
        data.pop(key, None)
    return data


class _TriggerFetcher:
    triggers: frozenset[str] = frozenset()

    def can_handle(self, trigger_event: str) -> bool:
        return str(trigger_event) in self.triggers


def _values(events) -> frozenset[str]:
    return frozenset(e.value for e in events)


class BookingWebhookDataFetcher(_TriggerFetcher):
    triggers = _values(BOOKING_LIFECYCLE_EVENTS | {WebhookTriggerEvent.BOOKING_NO_SHOW_UPDATED})

    def __init__(self, source: BookingDataSource | None = None) -> None:
        self.source = source

    def fetch_event_data(self, payload: WebhookTaskPayload) -> dict[str, Any] | None:
        fields = _payload_fields(payload)
        requested = payload.trigger_event == WebhookTriggerEvent.BOOKING_REQUESTED.value
        extra_metadata = fields.pop("metadata", None) or {}

        if self.source is None:
            data = fields
        else:
            booking = self.source.get_booking(payload.booking_uid)
            if booking is None:
                return None
            data = {**booking, "bookingUid": payload.booking_uid}
            if isinstance(payload, BookingNoShowPayload) and payload.attendees is not None:
                data["attendees"] = payload.attendees

        if requested:
            base_metadata = data.get("metadata")
            if not isinstance(base_metadata, dict):
                base_metadata = {}
            data["metadata"] = {**base_metadata, **extra_metadata}
        return data


class PaymentWebhookDataFetcher(_TriggerFetcher):
    triggers = _values(PAYMENT_EVENTS)

    def __init__(self, source: BookingDataSource | None = None) -> None:
        self.source = source

    def fetch_event_data(self, payload: WebhookTaskPayload) -> dict[str, Any] | None:
        fields = _payload_fields(payload)
        if self.source is None:
            return fields
        booking = self.source.get_booking(payload.booking_uid)
        if booking is None:
            return None
        data = {**booking, "bookingUid": payload.booking_uid}
        if payload.payment_id is not None:
            data["paymentId"] = payload.payment_id
        return data


class RecordingWebhookDataFetcher(_TriggerFetcher):
    triggers = frozenset({WebhookTriggerEvent.RECORDING_READY.value})

    def __init__(self, source: BookingDataSource | None = None) -> None:
        self.source = source

    def fetch_event_data(self, payload: WebhookTaskPayload) -> dict[str, Any] | None:
        fields = _payload_fields(payload)
        if self.source is None:
            return fields
        booking = self.source.get_booking(payload.booking_uid)
        if booking is None:
            return None
        return {
            **booking,
            "bookingUid": payload.booking_uid,
            "recordingId": payload.recording_id,
            "downloadLink": payload.download_link,
        }


class FormWebhookDataFetcher(_TriggerFetcher):
    triggers = frozenset({WebhookTriggerEvent.FORM_SUBMITTED.value})

    def __init__(self, source: FormResponseSource | None = None) -> None:
        self.source = source

    def fetch_event_data(self, payload: WebhookTaskPayload) -> dict[str, Any] | None:
        if self.source is None:
            return _payload_fields(payload)
        response = self.source.get_form_response(payload.form_id, payload.response_id)
        if response is None:
            return None
        return {**response, "formId": payload.form_id, "responseId": payload.response_id}


class OOOWebhookDataFetcher(_TriggerFetcher):
    triggers = frozenset({WebhookTriggerEvent.OOO_CREATED.value})

    def __init__(self, source: OOOEntrySource | None = None) -> None:
        self.source = source

    def fetch_event_data(self, payload: WebhookTaskPayload) -> dict[str, Any] | None:
        if self.source is None:
            return _payload_fields(payload)
        entry = self.source.get_ooo_entry(payload.ooo_entry_id)
        if entry is None:
            return None
        return {"oooEntry": entry}


class InvoiceWebhookDataFetcher(_TriggerFetcher):
    """
    Данные инвойса уже лежат в payload'е: внешний источник не нужен.
    """

    triggers = _values(INVOICE_EVENTS)

    def fetch_event_data(self, payload: WebhookTaskPayload) -> dict[str, Any] | None:
        return _payload_fields(payload)


def default_fetchers(
    *,
    bookings: BookingDataSource | None = None,
    forms: FormResponseSource | None = None,
    ooo: OOOEntrySource | None = None,
) -> list[WebhookDataFetcher]:
    return [
        BookingWebhookDataFetcher(bookings),
        PaymentWebhookDataFetcher(bookings),
        RecordingWebhookDataFetcher(bookings),
        FormWebhookDataFetcher(forms),
        OOOWebhookDataFetcher(ooo),
        InvoiceWebhookDataFetcher(),
    ]
