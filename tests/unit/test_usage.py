from __future__ import annotations

import pytest

from webhook_tasker.billing.usage import UsageIncrementService, is_expected_billing_error
from webhook_tasker.common.errors import ErrCode, ExpectedTaskError, ProviderError, ValidationError
from webhook_tasker.queue.backend import DeliveryTask
from webhook_tasker.queue.config import KIND_INCREMENT_USAGE, Q_PLATFORM_BILLING, get_queue_config
from webhook_tasker.queue.dispatcher import PlatformBillingTasker
from webhook_tasker.queue.worker import QueueWorker


@pytest.mark.parametrize(
    "message, expected",
    [
        ("No such subscription: 'sub_temp_123'", True),
        ("no such subscription in SANDBOX mode", True),
        ("Subscription sub_1 is not usage based", True),
        ("No such subscription: 'sub_123'", False),
        ("Card declined", False),
        ("temp sandbox outage", False),
    ],
)
def test_expected_error_classification(message, expected):
    assert is_expected_billing_error(message) is expected
    assert is_expected_billing_error(RuntimeError(message)) is expected


class _Provider:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.calls: list[dict] = []

    def increment_usage(self, *, subscription_id, quantity, identifier=None):
        self.calls.append({"subscription_id": subscription_id, "quantity": quantity, "identifier": identifier})
        if self.error:
            raise self.error


def test_usage_is_incremented_with_operation_id():
    provider = _Provider()
    UsageIncrementService(provider).increment_usage(
        {"subscriptionId": "sub_1", "quantity": 3, "operationId": "op-1"}
    )
    assert provider.calls == [{"subscription_id": "sub_1", "quantity": 3, "identifier": "op-1"}]


def test_expected_error_is_raised_as_expected_task_error():
    provider = _Provider(ProviderError(ErrCode.BILLING_PROVIDER_ERROR, "No such subscription: sub_temp_1"))
    with pytest.raises(ExpectedTaskError):
        UsageIncrementService(provider).increment_usage({"subscriptionId": "sub_temp_1"})
    assert len(provider.calls) == 1


def test_expected_error_completes_task_without_retry(backend):
    config = get_queue_config(Q_PLATFORM_BILLING)
    provider = _Provider(ProviderError(ErrCode.BILLING_PROVIDER_ERROR, "Subscription sub_1 is not usage based"))
    service = UsageIncrementService(provider)
    worker = QueueWorker(config, backend, {KIND_INCREMENT_USAGE: service.handle_task})
    backend.enqueue(DeliveryTask(queue=config.name, kind=KIND_INCREMENT_USAGE, payload={"subscriptionId": "sub_1"}), config)

    assert worker.execute(backend.claim_due(config.name, config.machine)[0]) == "skipped"
    assert backend.depth(config.name, machine=config.machine) == 0
    assert backend.dlq_depth(config.name) == 0
    worker.shutdown()


def test_expected_error_in_inline_mode_does_not_reach_caller(backend):
    provider = _Provider(ProviderError(ErrCode.BILLING_PROVIDER_ERROR, "no such subscription in sandbox"))
    tasker = PlatformBillingTasker(backend=backend, usage=UsageIncrementService(provider), mode="inline")
    assert tasker.increment_usage({"subscriptionId": "sub_sandbox_1"})
    assert len(provider.calls) == 1


def test_unexpected_error_propagates_for_retry():
    provider = _Provider(ProviderError(ErrCode.BILLING_PROVIDER_ERROR, "rate limited"))
    with pytest.raises(ProviderError):
        UsageIncrementService(provider).increment_usage({"subscriptionId": "sub_1"})


def test_invalid_payload_raises_validation_error():
    with pytest.raises(ValidationError):
        UsageIncrementService(_Provider()).increment_usage({"quantity": 0})


def test_handle_task_reads_task_payload():
    provider = _Provider()
    task = DeliveryTask(queue=Q_PLATFORM_BILLING, kind=KIND_INCREMENT_USAGE, payload={"subscriptionId": "sub_9"})
    UsageIncrementService(provider).handle_task(task)
    assert provider.calls[0]["subscription_id"] == "sub_9"
