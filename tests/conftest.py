from __future__ import annotations

import fnmatch
from datetime import UTC, datetime
from typing import Any

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from webhook_tasker.common.config import get_settings
from webhook_tasker.domain.enums import BillingMode, BillingPeriod
from webhook_tasker.queue import idempotency
from webhook_tasker.queue.backend import RedisTaskBackend
from webhook_tasker.storage.db import scope_for
from webhook_tasker.storage.models import Base, SubscriptionBillingState


class FakeRedis:
    """
    Минимальный in-memory Redis: hash, sorted set, list, string с NX.
    """

    def __init__(self) -> None:
        self.hashes: dict[str, dict[str, str]] = {}
        self.zsets: dict[str, dict[str, float]] = {}
        self.lists: dict[str, list[str]] = {}
        self.strings: dict[str, str] = {}

    # hash
    def hset(self, name: str, key: str, value: str) -> int:
        self.hashes.setdefault(name, {})[key] = value
        return 1

    def hget(self, name: str, key: str) -> str | None:
        return self.hashes.get(name, {}).get(key)

    def hdel(self, name: str, *keys: str) -> int:
        bucket = self.hashes.get(name, {})
        return sum(1 for k in keys if bucket.pop(k, None) is not None)

    # sorted set
    def zadd(self, name: str, mapping: dict[str, float], nx: bool = False) -> int:
        bucket = self.zsets.setdefault(name, {})
        added = 0
        for member, score in mapping.items():
            if member not in bucket:
                added += 1
            elif nx:
                continue
            bucket[member] = score
        return added

    def zrangebyscore(self, name: str, min: Any, max: Any, start: int = 0, num: int | None = None):
        lo = float("-inf") if min == "-inf" else float(min)
        hi = float("inf") if max == "+inf" else float(max)
        items = sorted(
            ((m, s) for m, s in self.zsets.get(name, {}).items() if lo <= s <= hi),
            key=lambda x: x[1],
        )
        members = [m for m, _ in items][start:]
        return members if num is None else members[:num]

    def zrem(self, name: str, *members: str) -> int:
        bucket = self.zsets.get(name, {})
        return sum(1 for m in members if bucket.pop(m, None) is not None)

    def zcard(self, name: str) -> int:
        return len(self.zsets.get(name, {}))

    def zscore(self, name: str, member: str) -> float | None:
        return self.zsets.get(name, {}).get(member)

    # list
    def lpush(self, name: str, *values: str) -> int:
        bucket = self.lists.setdefault(name, [])
        for v in values:
            bucket.insert(0, v)
        return len(bucket)

    def llen(self, name: str) -> int:
        return len(self.lists.get(name, []))

    def lrange(self, name: str, start: int, end: int) -> list[str]:
        bucket = self.lists.get(name, [])
        return bucket[start:] if end == -1 else bucket[start : end + 1]

    # string
    def set(self, name: str, value: str, nx: bool = False, ex: int | None = None) -> bool | None:
        if nx and name in self.strings:
            return None
        self.strings[name] = value
        return True

    def delete(self, *names: str) -> int:
        return sum(1 for n in names if self.strings.pop(n, None) is not None)

    def keys(self, pattern: str = "*") -> list[str]:
        return [k for k in self.strings if fnmatch.fnmatch(k, pattern)]

    def pipeline(self) -> _FakePipeline:
        return _FakePipeline(self)


class _FakePipeline:
    def __init__(self, r: FakeRedis) -> None:
        self._r = r
        self._ops: list[tuple[str, tuple, dict]] = []

    def __getattr__(self, name: str):
        def _queue(*args, **kwargs):
            self._ops.append((name, args, kwargs))
            return self

        return _queue

    def execute(self) -> list[Any]:
        results = [getattr(self._r, n)(*a, **kw) for n, a, kw in self._ops]
        self._ops.clear()
        return results


@pytest.fixture()
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture()
def backend(fake_redis: FakeRedis) -> RedisTaskBackend:
    return RedisTaskBackend(client=fake_redis)


@pytest.fixture()
def sqlite_scope():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)
    try:
        yield scope_for(factory)
    finally:
        engine.dispose()


@pytest.fixture()
def inline_mode(monkeypatch):
    monkeypatch.setattr(get_settings(), "queue_mode", "inline")
    monkeypatch.setattr(idempotency, "_LOCAL_IDEM_KEYS", {})


PERIOD_START = datetime(2024, 1, 1, tzinfo=UTC)
PERIOD_END = datetime(2024, 1, 31, tzinfo=UTC)


def add_billing_state(scope, subscription_id: str = "sub_1", **overrides: Any) -> None:
    values: dict[str, Any] = {
        "subscription_id": subscription_id,
        "subscription_item_id": "si_1",
        "team_id": 7,
        "billing_mode": BillingMode.flat_seats,
        "billing_period": BillingPeriod.monthly,
        "price_per_seat_cents": 3000,
        "seat_count": 5,
        "paid_seats": 5,
        "period_start": PERIOD_START,
        "period_end": PERIOD_END,
    }
    values.update(overrides)
    with scope() as session:
        session.add(SubscriptionBillingState(**values))


@pytest.fixture()
def add_state(sqlite_scope):
    def _add(subscription_id: str = "sub_1", **overrides: Any) -> None:
        add_billing_state(sqlite_scope, subscription_id, **overrides)

    return _add
