"""
Версионированная сборка тела вебхука.

Назначение:
- стабильный набор полей для каждой версии контракта
- версия 2021-10-20: {triggerEvent, createdAt, payload}
- legacy-подписчики видят assignmentReason только в старом формате:
  список [{reasonEnum, reasonString}], строка, null или отсутствие поля;
  внутренняя форма {category, details} вырезается
- кастомный шаблон подписчика рендерится через Jinja2
"""

from __future__ import annotations

import json
from typing import Any, Protocol

from jinja2 import StrictUndefined, TemplateError
from jinja2.sandbox import SandboxedEnvironment

from webhook_tasker.common.errors import ValidationError
from webhook_tasker.domain.enums import WebhookVersion


def sanitize_assignment_reason(data: dict[str, Any]) -> dict[str, Any]:
    """
    Убирает assignmentReason, если он в форме {category, details}.
    Остальные поля не трогает.
    """
    if "assignmentReason" not in data:
        return data
    value = data["assignmentReason"]
    if value is None or isinstance(value, str | list):
        return data
    cleaned = dict(data)
    cleaned.pop("assignmentReason", None)
    return cleaned


class PayloadBuilder(Protocol):
    version: str

    def build(self, *, trigger_event: str, created_at: str, data: dict[str, Any]) -> dict[str, Any]: ...


class V20211020PayloadBuilder:
    version = WebhookVersion.V_2021_10_20.value

    def build(self, *, trigger_event: str, created_at: str, data: dict[str, Any]) -> dict[str, Any]:
        return {
            "triggerEvent": trigger_event,
            "createdAt": created_at,
            "payload": sanitize_assignment_reason(data),
        }


class PayloadBuilderFactory:
    def __init__(self, builders: list[PayloadBuilder] | None = None) -> None:
        items = builders or [V20211020PayloadBuilder()]
        self._builders = {b.version: b for b in items}

    def get_builder(self, version: str | None) -> PayloadBuilder:
        builder = self._builders.get(version or "")
        if builder is None:
            raise ValidationError(
                "Неподдерживаемая версия вебхука", details={"version": version}
            )
        return builder


# =============================================================================
# КАСТОМНЫЕ ШАБЛОНЫ
# =============================================================================
_TEMPLATE_ENV = SandboxedEnvironment(undefined=StrictUndefined, autoescape=False)
_TEMPLATE_ENV.filters["tojson"] = lambda v: json.dumps(v, ensure_ascii=False, default=str)


def render_payload_template(template: str, body: dict[str, Any]) -> str:
    """
    Рендер шаблона подписчика.

    В контексте доступны triggerEvent, createdAt и все поля payload
    на верхнем уровне. Результат отправляется как есть.
    """
    context = {**body.get("payload", {}), **{k: v for k, v in body.items() if k != "payload"}}
    try:
        return _TEMPLATE_ENV.from_string(template).render(context)
    except TemplateError as e:
        raise ValidationError(
            "Не удалось отрендерить шаблон вебхука", details={"err": str(e)[:200]}
        ) from e
