from __future__ import annotations

from datetime import UTC, datetime, timedelta

from webhook_tasker.billing.proration import (
    BillingPeriodService,
    ProrationService,
    SeatChangeContext,
)
from webhook_tasker.domain.enums import PaymentOutcome, ProrationStatus, SeatChangeType
from webhook_tasker.storage.models import ProrationEntry
from webhook_tasker.storage.repositories import (
    ProrationEntryRepository,
    SubscriptionBillingStateRepository,
)

MID_PERIOD = datetime(2024, 1, 16, tzinfo=UTC)


def _state(scope, sub_id="sub_1"):
    with scope() as session:
        return SubscriptionBillingStateRepository(session).get(sub_id)


def _entry(scope, entry_id):
    with scope() as session:
        return ProrationEntryRepository(session).get(entry_id)


def _add_entry(scope, entry_id="pr_1", status=ProrationStatus.pending, seats_delta=2):
    with scope() as session:
        ProrationEntryRepository(session).add(
            ProrationEntry(id=entry_id, subscription_id="sub_1", seats_delta=seats_delta, amount_cents=100, status=status)
        )


def test_seat_addition_creates_pending_proration(sqlite_scope, add_state):
    add_state(seat_count=5, price_per_seat_cents=3000)
    service = ProrationService(sqlite_scope)

    entry_id = service.record_seat_change(
        SeatChangeContext(subscription_id="sub_1", membership_count=7, change_type=SeatChangeType.addition),
        now=MID_PERIOD,
    )

    entry = _entry(sqlite_scope, entry_id)
    assert entry.status == ProrationStatus.pending
    assert entry.seats_delta == 2
    # 15 из 30 дней осталось: 2 места * 3000 * 0.5
    assert entry.amount_cents == 3000
    assert _state(sqlite_scope).seat_count == 7


def test_seat_removal_and_sync_create_nothing(sqlite_scope, add_state):
    add_state(seat_count=5)
    service = ProrationService(sqlite_scope)

    for change in (SeatChangeType.removal, SeatChangeType.sync):
        ctx = SeatChangeContext(subscription_id="sub_1", membership_count=9, change_type=change)
        assert service.record_seat_change(ctx, now=MID_PERIOD) is None

    with sqlite_scope() as session:
        assert ProrationEntryRepository(session).list_for_subscription("sub_1") == []


def test_payment_success_applies_seats_exactly_once(sqlite_scope, add_state):
    add_state(paid_seats=5)
    _add_entry(sqlite_scope, seats_delta=2)
    service = ProrationService(sqlite_scope)

    assert service.apply_payment_outcome("pr_1", PaymentOutcome.succeeded) is True
    assert service.apply_payment_outcome("pr_1", PaymentOutcome.succeeded) is False

    assert _entry(sqlite_scope, "pr_1").status == ProrationStatus.charged
    assert _entry(sqlite_scope, "pr_1").charged_at is not None
    assert _state(sqlite_scope).paid_seats == 7


def test_failed_then_retried_payment_is_charged(sqlite_scope, add_state):
    add_state(paid_seats=5)
    _add_entry(sqlite_scope, seats_delta=1)
    service = ProrationService(sqlite_scope)

    assert service.apply_payment_outcome("pr_1", PaymentOutcome.failed, reason="card_declined") is True
    assert _entry(sqlite_scope, "pr_1").failure_reason == "card_declined"
    assert service.apply_payment_outcome("pr_1", PaymentOutcome.failed, reason="card_declined") is False

    assert service.apply_payment_outcome("pr_1", PaymentOutcome.succeeded) is True
    assert _state(sqlite_scope).paid_seats == 6


def test_failure_after_charge_is_ignored(sqlite_scope, add_state):
    add_state()
    _add_entry(sqlite_scope, status=ProrationStatus.charged)

    assert ProrationService(sqlite_scope).apply_payment_outcome("pr_1", PaymentOutcome.failed) is False
    assert _entry(sqlite_scope, "pr_1").status == ProrationStatus.charged


def test_unknown_proration_is_not_handled(sqlite_scope):
    assert ProrationService(sqlite_scope).apply_payment_outcome("pr_x", PaymentOutcome.succeeded) is False


def test_period_advances_and_keeps_length(sqlite_scope, add_state):
    add_state()
    new_start = datetime(2024, 1, 31, tzinfo=UTC)

    assert BillingPeriodService(sqlite_scope).advance_period("sub_1", new_start) is True

    state = _state(sqlite_scope)
    assert state.period_start.replace(tzinfo=UTC) == new_start
    assert state.period_end.replace(tzinfo=UTC) == new_start + timedelta(days=30)


def test_same_period_start_is_noop(sqlite_scope, add_state):
    add_state()
    service = BillingPeriodService(sqlite_scope)
    new_start = datetime(2024, 1, 31, tzinfo=UTC)

    assert service.advance_period("sub_1", new_start) is True
    assert service.advance_period("sub_1", new_start) is False


def test_older_period_start_is_ignored(sqlite_scope, add_state):
    add_state()
    service = BillingPeriodService(sqlite_scope)

    assert service.advance_period("sub_1", datetime(2023, 12, 1, tzinfo=UTC)) is False
    assert _state(sqlite_scope).period_start.replace(tzinfo=UTC) == datetime(2024, 1, 1, tzinfo=UTC)


def test_period_without_window_uses_billing_period_length(sqlite_scope, add_state):
    add_state(period_start=None, period_end=None)
    new_start = datetime(2024, 3, 1, tzinfo=UTC)

    assert BillingPeriodService(sqlite_scope).advance_period("sub_1", new_start) is True
    assert _state(sqlite_scope).period_end.replace(tzinfo=UTC) == new_start + timedelta(days=30)
