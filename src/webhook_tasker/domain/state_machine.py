"""
Машина состояний записи пророции (ProrationEntry).

Назначение:
- Централизованные правила переходов pending/charged/failed
- Идемпотентность: повтор того же события не меняет состояние
- Порядок прихода событий провайдера не важен
"""

from __future__ import annotations

from dataclasses import dataclass

from .enums import PaymentOutcome, ProrationStatus


# =============================================================================
# РЕЗУЛЬТАТ ПЕРЕХОДА
# =============================================================================
@dataclass
class TransitionResult:
    ok: bool
    status: ProrationStatus
    reason: str | None = None


# =============================================================================
# ДОПУСТИМЫЕ ПЕРЕХОДЫ
# =============================================================================
_TRANSITIONS: dict[PaymentOutcome, tuple[frozenset[ProrationStatus], ProrationStatus]] = {
    # failed -> charged: провайдер повторил списание по тому же инвойсу и оно прошло
    PaymentOutcome.succeeded: (
        frozenset({ProrationStatus.pending, ProrationStatus.failed}),
        ProrationStatus.charged,
    ),
    PaymentOutcome.failed: (
        frozenset({ProrationStatus.pending}),
        ProrationStatus.failed,
    ),
}


def allowed_sources(outcome: PaymentOutcome) -> frozenset[ProrationStatus]:
    """
    Из каких статусов возможен переход по данному исходу оплаты.
    Используется репозиторием для условного UPDATE.
    """
    return _TRANSITIONS[outcome][0]


def target_status(outcome: PaymentOutcome) -> ProrationStatus:
    return _TRANSITIONS[outcome][1]


def transition(current: ProrationStatus, outcome: PaymentOutcome) -> TransitionResult:
    """
    Правила перехода:
    - pending + succeeded → charged
    - pending + failed    → failed
    - failed  + succeeded → charged
    - charged терминальный, любые события игнорируются
    - повтор события, уже приведшего к целевому статусу → no-op
    """
    sources, target = _TRANSITIONS[outcome]
    if current == target:
        return TransitionResult(ok=False, status=current, reason="already_applied")
    if current not in sources:
        return TransitionResult(ok=False, status=current, reason="terminal_state")
    return TransitionResult(ok=True, status=target)
