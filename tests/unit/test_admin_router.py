from __future__ import annotations

from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from apps.api_gateway.deps import app_context_dep
from apps.api_gateway.main import app
from webhook_tasker.common.config import get_settings
from webhook_tasker.queue.backend import DeliveryTask
from webhook_tasker.queue.config import (
    KIND_DELIVER_WEBHOOK,
    Q_CALENDARS,
    Q_PLATFORM_BILLING,
    Q_WEBHOOK_DELIVERY,
    get_queue_config,
)


class _BrokenBackend:
    def depth(self, queue: str, *, machine: str) -> int:
        if queue == Q_CALENDARS:
            raise RuntimeError("WRONGTYPE Operation against a key holding the wrong kind of value")
        return 0

    def in_flight(self, queue: str, *, machine: str) -> int:
        return 0

    def dlq_depth(self, queue: str) -> int:
        return 0


@pytest.fixture()
def client_for(monkeypatch):
    monkeypatch.setattr(get_settings(), "service_api_keys", "")
    monkeypatch.setattr(get_settings(), "app_env", "dev")

    def _client(backend) -> TestClient:
        app.dependency_overrides[app_context_dep] = lambda: SimpleNamespace(backend=backend)
        return TestClient(app)

    yield _client
    app.dependency_overrides.clear()


def test_admin_queues_reports_depth_per_machine(client_for, backend) -> None:
    config = get_queue_config(Q_WEBHOOK_DELIVERY)
    backend.enqueue(DeliveryTask(queue="", kind=KIND_DELIVER_WEBHOOK, payload={}), config)
    backend.enqueue(
        DeliveryTask(queue="", kind=KIND_DELIVER_WEBHOOK, payload={}, machine="medium-1x"), config
    )
    backend.dead_letter(DeliveryTask(queue=Q_WEBHOOK_DELIVERY, kind=KIND_DELIVER_WEBHOOK, payload={}))

    r = client_for(backend).get("/v1/admin/queues")
    assert r.status_code == 200
    queues = {q["queue"]: q for q in r.json()["queues"]}

    assert set(queues) == {Q_WEBHOOK_DELIVERY, Q_CALENDARS, Q_PLATFORM_BILLING}
    delivery = queues[Q_WEBHOOK_DELIVERY]
    assert delivery["concurrency_limit"] == 25
    assert delivery["depth"] == {"small-1x": 1, "medium-1x": 1}
    assert delivery["in_flight"] == {"small-1x": 0, "medium-1x": 0}
    assert delivery["dlq_depth"] == 1
    assert delivery["error"] is None


def test_admin_queues_isolates_broken_queue(client_for) -> None:
    r = client_for(_BrokenBackend()).get("/v1/admin/queues")
    assert r.status_code == 200
    queues = {q["queue"]: q for q in r.json()["queues"]}
    assert "WRONGTYPE" in queues[Q_CALENDARS]["error"]
    assert queues[Q_CALENDARS]["depth"] == {}
    assert queues[Q_PLATFORM_BILLING]["error"] is None


def test_admin_dlq_lists_dead_letters(client_for, backend) -> None:
    for i in range(3):
        backend.dead_letter(
            DeliveryTask(
                queue=Q_PLATFORM_BILLING,
                kind="increment-usage",
                payload={"subscriptionId": f"sub_{i}"},
                attempts=3,
            ),
            error="rate limited",
        )

    r = client_for(backend).get(f"/v1/admin/queues/{Q_PLATFORM_BILLING}/dlq", params={"limit": 2})
    assert r.status_code == 200
    body = r.json()
    assert body["queue"] == Q_PLATFORM_BILLING
    assert body["total"] == 3
    assert len(body["items"]) == 2
    assert body["items"][0]["payload"] == {"subscriptionId": "sub_2"}
    assert body["items"][0]["last_error"] == "rate limited"
    assert body["items"][0]["attempts"] == 3


def test_admin_dlq_unknown_queue_is_404(client_for, backend) -> None:
    r = client_for(backend).get("/v1/admin/queues/nope/dlq")
    assert r.status_code == 404
    assert r.json()["detail"]["code"] == "not_found"


def test_admin_requires_service_key_when_configured(client_for, backend, monkeypatch) -> None:
    monkeypatch.setattr(get_settings(), "service_api_keys", "k-1, k-2")
    client = client_for(backend)

    denied = client.get("/v1/admin/queues")
    assert denied.status_code == 401
    assert denied.json()["detail"]["code"] == "unauthorized"

    assert client.get("/v1/admin/queues", headers={"X-API-Key": "bad"}).status_code == 401
    assert client.get("/v1/admin/queues", headers={"X-API-Key": "k-2"}).status_code == 200


def test_admin_is_closed_in_prod_without_keys(client_for, backend, monkeypatch) -> None:
    monkeypatch.setattr(get_settings(), "app_env", "prod")
    assert client_for(backend).get("/v1/admin/queues").status_code == 401
