"""
Идентификаторы задач, событий и пророций.
"""

from __future__ import annotations

import secrets
import uuid
from datetime import UTC, datetime


def new_task_id() -> str:
    """
    task_<UTCYYYYMMDDHHMMSS>_<rand>: сортируется по времени создания,
    удобно читать в DLQ.
    """
    ts = datetime.now(UTC).strftime("%Y%m%d%H%M%S")
    return f"task_{ts}_{secrets.token_hex(6)}"


def new_operation_id() -> str:
    # Уходит подписчикам и в meter events провайдера как ключ идемпотентности
    return str(uuid.uuid4())


def new_proration_id() -> str:
    # Попадает в metadata строки инвойса (prorationId)
    return f"pr_{secrets.token_hex(12)}"
