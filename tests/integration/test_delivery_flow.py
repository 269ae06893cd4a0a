"""
Сквозные сценарии через собранный AppContext: SQLite + fake Redis + фейковые внешние клиенты.
"""

from __future__ import annotations

import json

from webhook_tasker.container import build_context
from webhook_tasker.domain.enums import BillingPeriod, ProrationStatus
from webhook_tasker.queue.config import (
    KIND_DELIVER_WEBHOOK,
    KIND_INCREMENT_USAGE,
    Q_PLATFORM_BILLING,
    Q_WEBHOOK_DELIVERY,
    get_queue_config,
)
from webhook_tasker.queue.worker import QueueWorker
from webhook_tasker.storage.models import ProrationEntry, WebhookSubscription
from webhook_tasker.storage.repositories import (
    ProrationEntryRepository,
    SubscriptionBillingStateRepository,
    WebhookRepository,
)
from webhook_tasker.webhooks.sender import ok_result


class _Sender:
    def __init__(self) -> None:
        self.sent: list[dict] = []

    def send(self, *, subscriber, trigger_event, body, content_type="application/json"):
        self.sent.append({"url": subscriber.subscriber_url, "body": body, "content_type": content_type})
        return ok_result("fake", 200)


class _Provider:
    def __init__(self) -> None:
        self.usage: list[dict] = []

    def get_payment_intent_failure_reason(self, payment_intent_id):
        return None

    def get_subscription(self, subscription_id):
        return None

    def update_subscription_quantity(self, *, subscription_id, subscription_item_id, quantity):
        raise AssertionError("not expected")

    def increment_usage(self, *, subscription_id, quantity, identifier=None):
        self.usage.append({"subscription_id": subscription_id, "quantity": quantity, "identifier": identifier})


def _context(sqlite_scope, backend):
    sender, provider = _Sender(), _Provider()
    ctx = build_context(
        session_scope=sqlite_scope, backend=backend, provider=provider, sender=sender, mode="redis"
    )
    return ctx, sender, provider


def _drain(worker: QueueWorker, queue: str, machine: str = "small-1x") -> list[str]:
    return [worker.execute(task) for task in worker.backend.claim_due(queue, machine)]


def test_booking_event_is_queued_and_delivered(sqlite_scope, backend):
    with sqlite_scope() as session:
        WebhookRepository(session).save(
            WebhookSubscription(
                id="wh_1",
                subscriber_url="https://hooks.local/1",
                user_id=1,
                event_triggers=["BOOKING_CREATED"],
            )
        )
    ctx, sender, _ = _context(sqlite_scope, backend)

    task_ids = ctx.producer.queue_booking_created_webhook(booking_uid="b-1", user_id=1)
    assert len(task_ids) == 1

    worker = QueueWorker(
        get_queue_config(Q_WEBHOOK_DELIVERY),
        ctx.backend,
        {KIND_DELIVER_WEBHOOK: ctx.webhook_consumer.handle_task},
    )
    assert _drain(worker, Q_WEBHOOK_DELIVERY) == ["success"]
    worker.shutdown()

    assert len(sender.sent) == 1
    body = json.loads(sender.sent[0]["body"])
    assert sender.sent[0]["url"] == "https://hooks.local/1"
    assert body["triggerEvent"] == "BOOKING_CREATED"
    assert body["payload"]["bookingUid"] == "b-1"


def test_usage_increment_flows_through_billing_queue(sqlite_scope, backend):
    ctx, _, provider = _context(sqlite_scope, backend)

    ctx.billing_tasker.increment_usage({"subscriptionId": "sub_1", "quantity": 2, "operationId": "op-1"})

    worker = QueueWorker(
        get_queue_config(Q_PLATFORM_BILLING), ctx.backend, {KIND_INCREMENT_USAGE: ctx.usage.handle_task}
    )
    assert _drain(worker, Q_PLATFORM_BILLING) == ["success"]
    worker.shutdown()
    assert provider.usage == [{"subscription_id": "sub_1", "quantity": 2, "identifier": "op-1"}]


def test_paid_proration_invoice_applies_seats_once(sqlite_scope, backend, add_state, inline_mode):
    add_state(seat_count=7, paid_seats=5, billing_period=BillingPeriod.annually)
    with sqlite_scope() as session:
        ProrationEntryRepository(session).add(
            ProrationEntry(
                id="pr_1", subscription_id="sub_1", seats_delta=2, amount_cents=3000, status=ProrationStatus.pending
            )
        )
    ctx, _, _ = _context(sqlite_scope, backend)
    envelope = {
        "id": "evt_1",
        "type": "invoice.payment_succeeded",
        "data": {
            "object": {
                "id": "in_1",
                "subscription": "sub_1",
                "lines": {"data": [{"id": "il_1", "metadata": {"type": "seat_proration", "prorationId": "pr_1"}}]},
            }
        },
    }

    assert ctx.billing_handlers.handle_billing_event(envelope).handled is True
    assert ctx.billing_handlers.handle_billing_event(dict(envelope, id="evt_2")).handled is False

    with sqlite_scope() as session:
        assert ProrationEntryRepository(session).get("pr_1").status == ProrationStatus.charged
        assert SubscriptionBillingStateRepository(session).get("sub_1").paid_seats == 7
