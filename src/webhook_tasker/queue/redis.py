"""
Общий Redis-клиент процесса: расписание задач, DLQ, ключи идемпотентности.
"""

from __future__ import annotations

import redis

from webhook_tasker.common.config import get_settings

_client: redis.Redis | None = None


def redis_client() -> redis.Redis:
    global _client
    if _client is None:
        s = get_settings()
        # Зависший Redis не должен держать слот воркера дольше таймаута
        _client = redis.Redis.from_url(
            s.redis_url,
            decode_responses=True,
            socket_timeout=s.redis_socket_timeout_sec,
            socket_connect_timeout=s.redis_socket_timeout_sec,
            health_check_interval=30,
        )
    return _client
