"""
Идемпотентность (дедупликация) событий.

Зачем нужно:
- биллинг-провайдер доставляет вебхуки at-least-once и может прислать дубль
- один и тот же event id не должен обрабатываться дважды параллельно

Реализация:
- хранение ключей в Redis с TTL (SET NX)
- в inline-режиме: локальная map в памяти процесса
- ключ формируется как "idem:<scope>:<idempotency_key>"
"""

from __future__ import annotations

import time

from webhook_tasker.common.config import get_settings

from .redis import redis_client

_LOCAL_IDEM_KEYS: dict[str, float] = {}

# TTL по умолчанию (сек) для идемпотентных ключей
DEFAULT_TTL_SEC = 60 * 60 * 24  # 24 часа


def _key(scope: str, idem_key: str) -> str:
    return f"idem:{scope}:{idem_key}"


def _inline_mode() -> bool:
    return (get_settings().queue_mode or "").strip().lower() == "inline"


def check_and_set(scope: str, idem_key: str, ttl_sec: int = DEFAULT_TTL_SEC) -> bool:
    """
    Возвращает True, если ключ НОВЫЙ (т.е. можно обрабатывать),
    и False, если ключ уже был (дедуп).
    """
    key = _key(scope, idem_key)
    if _inline_mode():
        now = time.monotonic()
        expires = _LOCAL_IDEM_KEYS.get(key, 0.0)
        if expires > now:
            return False
        _LOCAL_IDEM_KEYS[key] = now + max(1, int(ttl_sec))
        if len(_LOCAL_IDEM_KEYS) > 20_000:
            for k, exp in list(_LOCAL_IDEM_KEYS.items()):
                if exp <= now:
                    _LOCAL_IDEM_KEYS.pop(k, None)
        return True

    ok = redis_client().set(name=key, value="1", nx=True, ex=ttl_sec)
    return bool(ok)


def release(scope: str, idem_key: str) -> None:
    """
    Снять ключ, если обработка упала: провайдер пришлёт событие повторно.
    """
    key = _key(scope, idem_key)
    if _inline_mode():
        _LOCAL_IDEM_KEYS.pop(key, None)
        return
    redis_client().delete(key)
