"""
Логирование сервисов (api-gateway, worker-webhooks, worker-billing).

- JSON в stdout, одна строка на событие; text-формат для локальной отладки
- сообщение = имя события в snake_case, данные в extra={"payload": {...}}
- в каждой строке имя сервиса: воркеры разных очередей пишут в один поток
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from typing import Any

from webhook_tasker.common.config import get_settings

ROOT_LOGGER = "webhook-tasker"

# Сторонние логгеры, которые на INFO шумят по каждому запросу
_NOISY_LOGGERS = ("uvicorn.access", "stripe", "urllib3")


class JsonFormatter(logging.Formatter):
    def __init__(self, service: str) -> None:
        super().__init__()
        self.service = service

    def format(self, record: logging.LogRecord) -> str:
        line: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, UTC).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "service": self.service,
            "logger": record.name,
            "event": record.getMessage(),
        }
        payload = getattr(record, "payload", None)
        if isinstance(payload, dict):
            line["payload"] = payload
        if record.exc_info:
            line["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(line, ensure_ascii=False, default=str)


def setup_logging(service: str | None = None) -> None:
    s = get_settings()
    service = service or s.service_name
    level = logging.getLevelNamesMapping().get((s.log_level or "").upper(), logging.INFO)

    if (s.log_format or "").lower() == "text":
        formatter: logging.Formatter = logging.Formatter(
            fmt=f"%(asctime)s %(levelname)s [{service}] %(name)s: %(message)s %(payload)s",
            defaults={"payload": ""},
        )
    else:
        formatter = JsonFormatter(service)

    root = logging.getLogger()
    root.setLevel(level)
    # Повторный вызов (reload, тесты) не должен дублировать строки
    for h in list(root.handlers):
        if getattr(h, "_webhook_tasker", False):
            root.removeHandler(h)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    handler._webhook_tasker = True  # type: ignore[attr-defined]
    root.addHandler(handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


def get_project_logger(component: str | None = None) -> logging.Logger:
    return logging.getLogger(f"{ROOT_LOGGER}.{component}" if component else ROOT_LOGGER)


def get_billing_logger() -> logging.Logger:
    return get_project_logger("billing")
