"""
Версии контрактов (queue/HTTP).

Назначение:
- единая точка истинных версий
"""

from __future__ import annotations

QUEUE_SCHEMA_VERSION = "v1"
HTTP_API_VERSION = "v1"
