"""
Единые ошибки и коды ошибок.

Назначение:
- предсказуемые коды для HTTP/очередей/DLQ
- разделение ошибок задач на retryable и expected
"""

from __future__ import annotations

from dataclasses import dataclass


class ErrCode:
    # Общие
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    UNAUTHORIZED = "unauthorized"

    # Доставка / очереди
    WEBHOOK_DELIVERY_FAILED = "webhook_delivery_failed"
    TASK_HANDLER_MISSING = "task_handler_missing"
    TASK_EXPECTED_FAILURE = "task_expected_failure"
    TASK_OUT_OF_MEMORY = "task_out_of_memory"
    TASK_LEASE_EXPIRED = "task_lease_expired"

    # Провайдеры
    BILLING_PROVIDER_ERROR = "billing_provider_error"


@dataclass
class AppError(Exception):
    """
    Базовая ошибка приложения.
    - code: стабильный код ошибки
    - message: безопасное сообщение
    - details: доп. данные (без секретов/PII)
    """

    code: str
    message: str
    details: dict | None = None

    def __str__(self) -> str:  # pragma: no cover
        return f"{self.code}: {self.message}"


class ValidationError(AppError):
    def __init__(self, message: str = "Ошибка валидации", details: dict | None = None) -> None:
        super().__init__(ErrCode.VALIDATION, message, details)


class NotFoundError(AppError):
    def __init__(self, message: str = "Не найдено", details: dict | None = None) -> None:
        super().__init__(ErrCode.NOT_FOUND, message, details)


class ProviderError(AppError):
    def __init__(self, code: str, message: str, details: dict | None = None) -> None:
        super().__init__(code, message, details)


class RetryableTaskError(AppError):
    """
    Транзиентная ошибка задачи: воркер перепланирует её с backoff.
    """

    def __init__(self, code: str, message: str, details: dict | None = None) -> None:
        super().__init__(code, message, details)


class WebhookDeliveryError(RetryableTaskError):
    def __init__(self, message: str, details: dict | None = None) -> None:
        super().__init__(ErrCode.WEBHOOK_DELIVERY_FAILED, message, details)


class ExpectedTaskError(AppError):
    """
    Ожидаемая ошибка: задача завершается без ретрая и без алерта.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        super().__init__(ErrCode.TASK_EXPECTED_FAILURE, message, details)
