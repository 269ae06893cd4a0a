from __future__ import annotations

import pytest

from webhook_tasker.queue.config import Q_WEBHOOK_DELIVERY
from webhook_tasker.queue.dispatcher import WebhookTasker
from webhook_tasker.webhooks.producer import WebhookProducer
from webhook_tasker.webhooks.subscribers import SubscriberContext, WebhookSubscriber


class _Subscribers:
    def __init__(self, subscribers: list[WebhookSubscriber], fail: bool = False) -> None:
        self.subscribers = subscribers
        self.fail = fail
        self.contexts: list[SubscriberContext] = []

    def get_subscribers(self, ctx):
        self.contexts.append(ctx)
        if self.fail:
            raise RuntimeError("db down")
        return [s for s in self.subscribers if s.listens_to(ctx.trigger_event)]

    def get_subscriber(self, subscriber_id):
        return next((s for s in self.subscribers if s.id == subscriber_id), None)


def _sub(sid: str, *triggers: str) -> WebhookSubscriber:
    return WebhookSubscriber(id=sid, subscriber_url=f"https://hooks.local/{sid}", event_triggers=triggers)


def _claim_all(backend):
    return backend.claim_due(Q_WEBHOOK_DELIVERY, "small-1x", limit=100)


CASES = [
    ("queue_booking_created_webhook", "BOOKING_CREATED", {"booking_uid": "b-1", "user_id": 1}),
    ("queue_booking_cancelled_webhook", "BOOKING_CANCELLED", {"booking_uid": "b-1", "user_id": 1}),
    ("queue_booking_rescheduled_webhook", "BOOKING_RESCHEDULED", {"booking_uid": "b-1", "user_id": 1}),
    ("queue_booking_requested_webhook", "BOOKING_REQUESTED", {"booking_uid": "b-1", "user_id": 1}),
    ("queue_booking_rejected_webhook", "BOOKING_REJECTED", {"booking_uid": "b-1", "user_id": 1}),
    ("queue_booking_payment_initiated_webhook", "BOOKING_PAYMENT_INITIATED", {"booking_uid": "b-1", "payment_id": 3, "user_id": 1}),
    ("queue_booking_paid_webhook", "BOOKING_PAID", {"booking_uid": "b-1", "payment_id": 3, "user_id": 1}),
    ("queue_booking_no_show_updated_webhook", "BOOKING_NO_SHOW_UPDATED", {"booking_uid": "b-1", "attendees": [{"email": "a@x.io", "noShow": True}], "user_id": 1}),
    ("queue_form_submitted_webhook", "FORM_SUBMITTED", {"form_id": "f-1", "response_id": 9, "user_id": 1}),
    ("queue_recording_ready_webhook", "RECORDING_READY", {"booking_uid": "b-1", "recording_id": "r-1", "user_id": 1}),
    ("queue_ooo_created_webhook", "OOO_CREATED", {"ooo_entry_id": 4, "user_id": 1}),
]


@pytest.mark.parametrize("method, trigger, params", CASES)
def test_one_task_per_matching_subscriber(backend, method, trigger, params):
    subscribers = _Subscribers([_sub("wh_a", trigger), _sub("wh_b", trigger), _sub("wh_other", "OOO_CREATED" if trigger != "OOO_CREATED" else "BOOKING_PAID")])
    producer = WebhookProducer(subscribers=subscribers, tasker=WebhookTasker(backend=backend, mode="redis"))

    task_ids = getattr(producer, method)(**params)

    tasks = _claim_all(backend)
    assert len(task_ids) == 2
    assert sorted(t.payload["subscriberId"] for t in tasks) == ["wh_a", "wh_b"]
    assert all(t.payload["event"]["triggerEvent"] == trigger for t in tasks)
    assert subscribers.contexts[0].user_id == 1


@pytest.mark.parametrize("method, trigger, params", CASES)
def test_no_tasks_without_subscribers(backend, method, trigger, params):
    producer = WebhookProducer(subscribers=_Subscribers([]), tasker=WebhookTasker(backend=backend, mode="redis"))
    assert getattr(producer, method)(**params) == []
    assert _claim_all(backend) == []


def test_wire_payload_is_camel_case(backend):
    producer = WebhookProducer(
        subscribers=_Subscribers([_sub("wh_a", "BOOKING_CREATED")]),
        tasker=WebhookTasker(backend=backend, mode="redis"),
    )
    producer.queue_booking_created_webhook(booking_uid="b-9", event_type_id=12, oauth_client_id="oc-1")

    event = _claim_all(backend)[0].payload["event"]
    assert event["bookingUid"] == "b-9"
    assert event["eventTypeId"] == 12
    assert event["oAuthClientId"] == "oc-1"
    assert event["schemaVersion"] == "v1"
    assert event["operationId"]
    assert "userId" not in event


def test_invalid_payload_is_logged_and_swallowed(backend):
    subscribers = _Subscribers([_sub("wh_a", "BOOKING_CREATED")])
    producer = WebhookProducer(subscribers=subscribers, tasker=WebhookTasker(backend=backend, mode="redis"))

    assert producer.queue_booking_created_webhook(booking_uid="   ", user_id=1) == []
    assert producer.queue_booking_created_webhook(user_id=1) == []
    assert producer.queue_ooo_created_webhook(user_id=1) == []
    assert subscribers.contexts == []
    assert _claim_all(backend) == []


def test_subscriber_lookup_failure_is_swallowed(backend):
    producer = WebhookProducer(
        subscribers=_Subscribers([], fail=True), tasker=WebhookTasker(backend=backend, mode="redis")
    )
    assert producer.queue_booking_paid_webhook(booking_uid="b-1", user_id=1) == []


def test_enqueue_failure_for_one_subscriber_keeps_others(backend):
    class _FlakyTasker:
        def __init__(self) -> None:
            self.calls = 0

        def deliver_webhook(self, event, subscriber_id):
            self.calls += 1
            if subscriber_id == "wh_a":
                raise RuntimeError("redis down")
            return f"task-{subscriber_id}"

    tasker = _FlakyTasker()
    producer = WebhookProducer(
        subscribers=_Subscribers([_sub("wh_a", "BOOKING_CREATED"), _sub("wh_b", "BOOKING_CREATED")]),
        tasker=tasker,
    )

    assert producer.queue_booking_created_webhook(booking_uid="b-1", user_id=1) == ["task-wh_b"]
    assert tasker.calls == 2
