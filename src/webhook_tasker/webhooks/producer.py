"""
Продюсер вебхуков.

Назначение:
- типизированные вызовы queue_<event>_webhook из бизнес-логики
- валидация correlation id через схему payload'а
- поиск подписчиков и постановка одной задачи доставки на подписчика

Важно:
- ошибки валидации, поиска подписчиков и постановки логируются и глотаются:
  бронирование не должно падать из-за того, что не удалось поставить вебхук
- возвращаются id поставленных задач (пустой список, если подписчиков нет)
"""

from __future__ import annotations

from typing import Any

import pydantic

from webhook_tasker.common.logging import get_project_logger
from webhook_tasker.contracts.payloads import (
    BookingLifecyclePayload,
    BookingNoShowPayload,
    BookingPaymentPayload,
    FormSubmittedPayload,
    OOOCreatedPayload,
    RecordingReadyPayload,
)
from webhook_tasker.domain.enums import WebhookTriggerEvent
from webhook_tasker.queue.dispatcher import WebhookTasker

from .subscribers import SubscriberContext, WebhookSubscriberRepository

log = get_project_logger()


class WebhookProducer:
    def __init__(self, *, subscribers: WebhookSubscriberRepository, tasker: WebhookTasker) -> None:
        self.subscribers = subscribers
        self.tasker = tasker

    # -------------------------------------------------------------------------
    # Бронирования
    # -------------------------------------------------------------------------
    def queue_booking_created_webhook(self, **params: Any) -> list[str]:
        return self._queue_booking(WebhookTriggerEvent.BOOKING_CREATED, **params)

    def queue_booking_cancelled_webhook(self, **params: Any) -> list[str]:
        return self._queue_booking(WebhookTriggerEvent.BOOKING_CANCELLED, **params)

    def queue_booking_rescheduled_webhook(self, **params: Any) -> list[str]:
        return self._queue_booking(WebhookTriggerEvent.BOOKING_RESCHEDULED, **params)

    def queue_booking_requested_webhook(self, **params: Any) -> list[str]:
        return self._queue_booking(WebhookTriggerEvent.BOOKING_REQUESTED, **params)

    def queue_booking_rejected_webhook(self, **params: Any) -> list[str]:
        return self._queue_booking(WebhookTriggerEvent.BOOKING_REJECTED, **params)

    def _queue_booking(
        self,
        trigger: WebhookTriggerEvent,
        *,
        booking_uid: str | None = None,
        event_type_id: int | None = None,
        user_id: int | None = None,
        team_id: int | None = None,
        org_id: int | None = None,
        oauth_client_id: str | None = None,
        metadata: dict[str, Any] | None = None,
        operation_id: str | None = None,
    ) -> list[str]:
        return self._queue(
            BookingLifecyclePayload,
            trigger_event=trigger.value,
            booking_uid=booking_uid,
            event_type_id=event_type_id,
            user_id=user_id,
            team_id=team_id,
            org_id=org_id,
            o_auth_client_id=oauth_client_id,
            metadata=metadata,
            operation_id=operation_id,
        )

    # -------------------------------------------------------------------------
    # Оплата / no-show
    # -------------------------------------------------------------------------
    def queue_booking_payment_initiated_webhook(self, **params: Any) -> list[str]:
        return self._queue_payment(WebhookTriggerEvent.BOOKING_PAYMENT_INITIATED, **params)

    def queue_booking_paid_webhook(self, **params: Any) -> list[str]:
        return self._queue_payment(WebhookTriggerEvent.BOOKING_PAID, **params)

    def _queue_payment(
        self,
        trigger: WebhookTriggerEvent,
        *,
        booking_uid: str | None = None,
        payment_id: int | None = None,
        event_type_id: int | None = None,
        user_id: int | None = None,
        team_id: int | None = None,
        org_id: int | None = None,
        oauth_client_id: str | None = None,
        operation_id: str | None = None,
    ) -> list[str]:
        return self._queue(
            BookingPaymentPayload,
            trigger_event=trigger.value,
            booking_uid=booking_uid,
            payment_id=payment_id,
            event_type_id=event_type_id,
            user_id=user_id,
            team_id=team_id,
            org_id=org_id,
            o_auth_client_id=oauth_client_id,
            operation_id=operation_id,
        )

    def queue_booking_no_show_updated_webhook(
        self,
        *,
        booking_uid: str | None = None,
        attendees: list[dict[str, Any]] | None = None,
        event_type_id: int | None = None,
        user_id: int | None = None,
        team_id: int | None = None,
        org_id: int | None = None,
        oauth_client_id: str | None = None,
        operation_id: str | None = None,
    ) -> list[str]:
        return self._queue(
            BookingNoShowPayload,
            trigger_event=WebhookTriggerEvent.BOOKING_NO_SHOW_UPDATED.value,
            booking_uid=booking_uid,
            attendees=attendees,
            event_type_id=event_type_id,
            user_id=user_id,
            team_id=team_id,
            org_id=org_id,
            o_auth_client_id=oauth_client_id,
            operation_id=operation_id,
        )

    # -------------------------------------------------------------------------
    # Формы / записи / OOO
    # -------------------------------------------------------------------------
    def queue_form_submitted_webhook(
        self,
        *,
        form_id: str | None = None,
        response_id: int | None = None,
        user_id: int | None = None,
        team_id: int | None = None,
        org_id: int | None = None,
        operation_id: str | None = None,
    ) -> list[str]:
        return self._queue(
            FormSubmittedPayload,
            trigger_event=WebhookTriggerEvent.FORM_SUBMITTED.value,
            form_id=form_id,
            response_id=response_id,
            user_id=user_id,
            team_id=team_id,
            org_id=org_id,
            operation_id=operation_id,
        )

    def queue_recording_ready_webhook(
        self,
        *,
        booking_uid: str | None = None,
        recording_id: str | None = None,
        download_link: str | None = None,
        event_type_id: int | None = None,
        user_id: int | None = None,
        team_id: int | None = None,
        org_id: int | None = None,
        oauth_client_id: str | None = None,
        operation_id: str | None = None,
    ) -> list[str]:
        return self._queue(
            RecordingReadyPayload,
            trigger_event=WebhookTriggerEvent.RECORDING_READY.value,
            booking_uid=booking_uid,
            recording_id=recording_id,
            download_link=download_link,
            event_type_id=event_type_id,
            user_id=user_id,
            team_id=team_id,
            org_id=org_id,
            o_auth_client_id=oauth_client_id,
            operation_id=operation_id,
        )

    def queue_ooo_created_webhook(
        self,
        *,
        ooo_entry_id: int | None = None,
        user_id: int | None = None,
        team_id: int | None = None,
        org_id: int | None = None,
        operation_id: str | None = None,
    ) -> list[str]:
        return self._queue(
            OOOCreatedPayload,
            trigger_event=WebhookTriggerEvent.OOO_CREATED.value,
            ooo_entry_id=ooo_entry_id,
            user_id=user_id,
            team_id=team_id,
            org_id=org_id,
            operation_id=operation_id,
        )

    # -------------------------------------------------------------------------
    # Общая постановка
    # -------------------------------------------------------------------------
    def _queue(self, model: type[pydantic.BaseModel], **fields: Any) -> list[str]:
        trigger_event = fields["trigger_event"]
        fields = {k: v for k, v in fields.items() if v is not None}
        try:
            event = model(**fields)
        except pydantic.ValidationError as e:
            log.error(
                "webhook_payload_invalid",
                extra={"payload": {"trigger_event": trigger_event, "err": str(e)[:300]}},
            )
            return []

        ctx = SubscriberContext(
            trigger_event=trigger_event,
            user_id=getattr(event, "user_id", None),
            event_type_id=getattr(event, "event_type_id", None),
            team_id=getattr(event, "team_id", None),
            org_id=getattr(event, "org_id", None),
            oauth_client_id=getattr(event, "o_auth_client_id", None),
        )
        try:
            subscribers = self.subscribers.get_subscribers(ctx)
        except Exception as e:
            log.error(
                "webhook_subscribers_resolve_failed",
                extra={
                    "payload": {
                        "trigger_event": trigger_event,
                        "operation_id": event.operation_id,
                        "err": str(e)[:200],
                    }
                },
            )
            return []

        wire = event.to_wire()
        task_ids: list[str] = []
        for subscriber in subscribers:
            try:
                task_ids.append(self.tasker.deliver_webhook(wire, subscriber.id))
            except Exception as e:
                log.error(
                    "webhook_enqueue_failed",
                    extra={
                        "payload": {
                            "trigger_event": trigger_event,
                            "operation_id": event.operation_id,
                            "subscriber_id": subscriber.id,
                            "err": str(e)[:200],
                        }
                    },
                )

        log.info(
            "webhook_tasks_queued",
            extra={
                "payload": {
                    "trigger_event": trigger_event,
                    "operation_id": event.operation_id,
                    "subscribers": len(subscribers),
                    "tasks": len(task_ids),
                }
            },
        )
        return task_ids
